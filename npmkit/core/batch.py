"""
Bounded-concurrency execution of independent commands.

Commands are dispatched in submission order into a fixed number of worker
slots. Results are returned index-aligned with the submitted commands
regardless of completion order.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from npmkit.core.exceptions import InvalidRequestError, SpawnError
from npmkit.core.executor import (
    CancellationToken,
    ExecutionRequest,
    ExecutionResult,
    ProcessExecutor,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4

STOPPED_ON_ERROR = "execution stopped due to previous error"
BATCH_CANCELLED = "batch cancelled"


@dataclass(frozen=True)
class BatchRequest:
    """
    Commands to run together.

    Attributes:
        commands: Requests, run in submission order
        max_concurrency: Worker slots (executor default if None)
        stop_on_error: Stop dispatching after the first failed command
    """

    commands: Sequence[ExecutionRequest] = ()
    max_concurrency: Optional[int] = None
    stop_on_error: bool = False

    def __post_init__(self):
        object.__setattr__(self, "commands", tuple(self.commands))


@dataclass(frozen=True)
class BatchResult:
    results: Tuple[ExecutionResult, ...] = field(default_factory=tuple)
    duration: float = 0.0

    @property
    def failed_count(self) -> int:
        """Commands that ran and did not succeed."""
        return sum(
            1 for r in self.results if not r.success and not self._was_skipped(r)
        )

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if self._was_skipped(r))

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @staticmethod
    def _was_skipped(result: ExecutionResult) -> bool:
        return bool(result.error) and result.error.startswith("skipped:")


class BatchExecutor:
    """
    Runs batches of commands on a ProcessExecutor.

    Example:
        >>> batch = BatchExecutor()
        >>> result = batch.run_batch(BatchRequest([
        ...     ExecutionRequest("npm", ["--version"]),
        ...     ExecutionRequest("node", ["--version"]),
        ... ], max_concurrency=2))
        >>> [r.exit_code for r in result.results]
        [0, 0]
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_concurrency < 1:
            max_concurrency = 1
        self.executor = executor or ProcessExecutor()
        self.max_concurrency = max_concurrency

    def run_batch(
        self,
        batch: BatchRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """
        Run every command of a batch.

        Args:
            batch: Commands and scheduling options
            cancel_token: Stops dispatch and terminates running commands

        Returns:
            BatchResult with one result per submitted command

        Raises:
            InvalidRequestError: If any request is malformed (nothing is run)
        """
        for index, request in enumerate(batch.commands):
            try:
                request.validate()
            except InvalidRequestError as e:
                raise InvalidRequestError(f"Command {index}: {e}") from e

        total = len(batch.commands)
        if total == 0:
            return BatchResult()

        requested = batch.max_concurrency or self.max_concurrency
        slots = max(1, min(requested, total))
        results: List[Optional[ExecutionResult]] = [None] * total

        state_lock = threading.Lock()
        cursor = 0
        stop_reason: Optional[str] = None

        def next_index() -> Optional[int]:
            nonlocal cursor, stop_reason
            with state_lock:
                if stop_reason is None and cancel_token is not None:
                    if cancel_token.cancelled:
                        stop_reason = BATCH_CANCELLED
                if stop_reason is not None or cursor >= total:
                    return None
                index = cursor
                cursor += 1
                return index

        def worker() -> None:
            nonlocal stop_reason
            while True:
                index = next_index()
                if index is None:
                    return
                result = self._run_one(batch.commands[index], cancel_token)
                # Each index is handed out once, so this slot has one writer
                results[index] = result
                if not result.success and batch.stop_on_error:
                    with state_lock:
                        if stop_reason is None:
                            logger.info(
                                f"Command {index} failed, stopping batch dispatch"
                            )
                            stop_reason = STOPPED_ON_ERROR

        logger.debug(f"Running batch of {total} command(s) on {slots} slot(s)")
        start = time.monotonic()
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=slots, thread_name_prefix="npmkit-batch"
        ) as pool:
            futures = [pool.submit(worker) for _ in range(slots)]
            for future in concurrent.futures.as_completed(futures):
                future.result()
        duration = time.monotonic() - start

        final = tuple(
            result
            if result is not None
            else ExecutionResult.not_run(
                batch.commands[index], stop_reason or STOPPED_ON_ERROR
            )
            for index, result in enumerate(results)
        )
        batch_result = BatchResult(results=final, duration=duration)
        logger.debug(
            f"Batch finished in {duration:.2f}s: "
            f"{batch_result.failed_count} failed, {batch_result.skipped_count} skipped"
        )
        return batch_result

    def _run_one(
        self, request: ExecutionRequest, cancel_token: Optional[CancellationToken]
    ) -> ExecutionResult:
        try:
            return self.executor.run(request, cancel_token)
        except SpawnError as e:
            logger.warning(str(e))
            return ExecutionResult(
                command=request.argv, exit_code=-1, error=str(e)
            )
