"""
Process execution for npmkit.

Runs a single external command to completion, timeout or cancellation.
The child is started in its own process group so that termination reaches
any descendants it spawned. Output can be captured, streamed line by line
to a callback, or both.

Example:
    >>> executor = ProcessExecutor()
    >>> result = executor.run(ExecutionRequest("npm", ["--version"]))
    >>> if result.success:
    ...     print(result.stdout.strip())
"""

import dataclasses
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

from npmkit.core.exceptions import InvalidRequestError, SpawnError

logger = logging.getLogger(__name__)

# callback(stream_name, line) where stream_name is "stdout" or "stderr"
OutputCallback = Callable[[str, str], None]

DEFAULT_TIMEOUT = 30.0
DEFAULT_KILL_GRACE_PERIOD = 5.0

_POLL_INTERVAL = 0.05
_IS_WINDOWS = os.name == "nt"


def _freeze_env(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in dict(env or {}).items()})


@dataclass(frozen=True)
class ExecutionRequest:
    """
    A single command to run.

    Attributes:
        command: Executable name or path
        args: Argument list
        working_dir: Working directory (executor default if None)
        env: Environment overrides, layered over the executor defaults
        stdin: Text written to the child's stdin, which is then closed
        timeout: Seconds before the child is terminated (executor default if None)
        capture_output: Buffer stdout/stderr and return them in the result
        stream_output: Deliver output lines to output_callback as they arrive
        output_callback: Called as callback(stream_name, line)
    """

    command: str
    args: Sequence[str] = ()
    working_dir: Optional[Union[str, Path]] = None
    env: Mapping[str, str] = field(default_factory=dict)
    stdin: Optional[str] = None
    timeout: Optional[float] = None
    capture_output: bool = True
    stream_output: bool = False
    output_callback: Optional[OutputCallback] = field(
        default=None, compare=False, repr=False
    )

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "env", _freeze_env(self.env))
        if self.working_dir is not None:
            object.__setattr__(self, "working_dir", Path(self.working_dir))

    @property
    def argv(self) -> Tuple[str, ...]:
        return (self.command,) + tuple(self.args)

    def validate(self) -> None:
        """
        Check the request before it is run.

        Raises:
            InvalidRequestError: If the request cannot be run
        """
        if not self.command or not self.command.strip():
            raise InvalidRequestError("Command name must not be empty")
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidRequestError(
                f"Timeout must be a positive number of seconds, got {self.timeout}"
            )
        if self.stream_output and self.output_callback is None:
            raise InvalidRequestError("stream_output requires an output_callback")


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of one ExecutionRequest.

    stdout and stderr are None unless output capture was requested.
    A timed out command is also reported as cancelled.
    """

    command: Tuple[str, ...]
    exit_code: int
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    duration: float = 0.0
    cancelled: bool = False
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.cancelled

    @classmethod
    def not_run(cls, request: ExecutionRequest, reason: str) -> "ExecutionResult":
        """Result for a request that was never started."""
        return cls(
            command=request.argv,
            exit_code=-1,
            cancelled=True,
            error=f"skipped: {reason}",
        )


@dataclass(frozen=True)
class ExecutorConfig:
    """
    Defaults applied to every request that does not override them.

    Attributes:
        default_timeout: Seconds, or None for no timeout
        default_working_dir: Working directory, or None for the current one
        default_env: Environment entries layered over os.environ
        kill_grace_period: Seconds to wait after SIGTERM before SIGKILL
    """

    default_timeout: Optional[float] = DEFAULT_TIMEOUT
    default_working_dir: Optional[Path] = None
    default_env: Mapping[str, str] = field(default_factory=dict)
    kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD

    def __post_init__(self):
        if self.default_timeout is not None and self.default_timeout <= 0:
            raise ValueError(
                f"default_timeout must be positive or None, got {self.default_timeout}"
            )
        if self.kill_grace_period < 0:
            raise ValueError("kill_grace_period must not be negative")
        object.__setattr__(self, "default_env", _freeze_env(self.default_env))
        if self.default_working_dir is not None:
            object.__setattr__(
                self, "default_working_dir", Path(self.default_working_dir)
            )

    def replace(self, **changes) -> "ExecutorConfig":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


class CancellationToken:
    """One-shot, thread-safe cancellation signal shared with running commands."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class ProcessExecutor:
    """
    Runs external commands.

    The executor holds no state besides its configuration and may be
    shared between threads.
    """

    def __init__(self, config: Optional[ExecutorConfig] = None):
        self.config = config or ExecutorConfig()

    def run(
        self,
        request: ExecutionRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Run a command and wait for it to end.

        A non-zero exit, a timeout and a cancellation are all reported in
        the returned result.

        Args:
            request: Command to run
            cancel_token: Optional token; cancelling it terminates the child

        Returns:
            ExecutionResult

        Raises:
            InvalidRequestError: If the request is malformed
            SpawnError: If the process cannot be started
        """
        request.validate()

        env = self._build_env(request)
        cwd = request.working_dir or self.config.default_working_dir
        timeout = (
            request.timeout
            if request.timeout is not None
            else self.config.default_timeout
        )
        argv = [self._resolve_command(request.command, env)] + list(request.args)
        pipe_output = request.capture_output or request.stream_output
        output_target = subprocess.PIPE if pipe_output else subprocess.DEVNULL

        logger.debug(
            f"Running: {' '.join(request.argv)}" + (f" (cwd: {cwd})" if cwd else "")
        )

        start = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd else None,
                env=env,
                stdin=(
                    subprocess.PIPE
                    if request.stdin is not None
                    else subprocess.DEVNULL
                ),
                stdout=output_target,
                stderr=output_target,
                text=True,
                encoding="utf-8",
                errors="replace",
                **self._process_group_kwargs(),
            )
        except OSError as e:
            raise SpawnError(request.command, e.strerror or str(e)) from e

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []
        emit_lock = threading.Lock()
        threads = []

        if pipe_output:
            for pipe, name, chunks in (
                (process.stdout, "stdout", stdout_chunks),
                (process.stderr, "stderr", stderr_chunks),
            ):
                thread = threading.Thread(
                    target=self._drain,
                    args=(pipe, name, chunks, request, emit_lock),
                    daemon=True,
                )
                thread.start()
                threads.append(thread)

        if request.stdin is not None:
            writer = threading.Thread(
                target=self._feed, args=(process.stdin, request.stdin), daemon=True
            )
            writer.start()
            threads.append(writer)

        outcome = self._wait(process, timeout, cancel_token)
        if outcome is not None:
            logger.debug(
                f"Terminating '{request.command}' (pid {process.pid}): {outcome}"
            )
            self._terminate(process)

        for thread in threads:
            thread.join(timeout=max(self.config.kill_grace_period, 1.0))
            if thread.is_alive():
                logger.debug(
                    f"Output of '{request.command}' still open after exit; "
                    "a descendant may hold the pipe"
                )

        duration = time.monotonic() - start
        exit_code = process.returncode

        if outcome == "timeout":
            error = f"Command timed out after {timeout:g}s"
        elif outcome == "cancelled":
            error = "Command cancelled"
        elif exit_code != 0:
            error = f"Command exited with code {exit_code}"
        else:
            error = None

        result = ExecutionResult(
            command=request.argv,
            exit_code=exit_code,
            stdout="".join(stdout_chunks) if request.capture_output else None,
            stderr="".join(stderr_chunks) if request.capture_output else None,
            duration=duration,
            cancelled=outcome is not None,
            timed_out=outcome == "timeout",
            error=error,
        )
        logger.debug(
            f"'{request.command}' finished in {duration:.2f}s "
            f"(exit code {exit_code}, success={result.success})"
        )
        return result

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def run_simple(self, command: str, *args: str) -> ExecutionResult:
        """Run a command with captured output and default settings."""
        return self.run(ExecutionRequest(command, args))

    def run_with_timeout(
        self, timeout: float, command: str, *args: str
    ) -> ExecutionResult:
        return self.run(ExecutionRequest(command, args, timeout=timeout))

    def run_in_dir(
        self, working_dir: Union[str, Path], command: str, *args: str
    ) -> ExecutionResult:
        return self.run(ExecutionRequest(command, args, working_dir=working_dir))

    def run_with_input(self, stdin: str, command: str, *args: str) -> ExecutionResult:
        return self.run(ExecutionRequest(command, args, stdin=stdin))

    def run_streaming(
        self,
        callback: OutputCallback,
        command: str,
        *args: str,
        capture_output: bool = False,
    ) -> ExecutionResult:
        """Run a command delivering each output line to callback."""
        return self.run(
            ExecutionRequest(
                command,
                args,
                capture_output=capture_output,
                stream_output=True,
                output_callback=callback,
            )
        )

    def get_command_path(self, command: str) -> Optional[str]:
        """Resolve a command against the PATH the executor would use."""
        env = self._build_env(ExecutionRequest(command))
        return shutil.which(command, path=env.get("PATH"))

    def is_command_available(self, command: str) -> bool:
        return self.get_command_path(command) is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_env(self, request: ExecutionRequest) -> dict:
        env = os.environ.copy()
        env.update(self.config.default_env)
        env.update(request.env)
        return env

    @staticmethod
    def _resolve_command(command: str, env: Mapping[str, str]) -> str:
        if os.path.dirname(command):
            return command
        return shutil.which(command, path=env.get("PATH")) or command

    @staticmethod
    def _process_group_kwargs() -> dict:
        if _IS_WINDOWS:
            return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        return {"start_new_session": True}

    @staticmethod
    def _drain(pipe, stream_name, chunks, request, emit_lock) -> None:
        try:
            for line in iter(pipe.readline, ""):
                if request.capture_output:
                    chunks.append(line)
                if request.stream_output:
                    with emit_lock:
                        try:
                            request.output_callback(stream_name, line.rstrip("\r\n"))
                        except Exception as e:
                            logger.warning(f"Output callback failed: {e}")
        finally:
            pipe.close()

    @staticmethod
    def _feed(pipe, payload: str) -> None:
        try:
            pipe.write(payload)
            pipe.close()
        except OSError as e:
            # Child exited or closed stdin before reading everything
            logger.debug(f"Could not write stdin: {e}")
            try:
                pipe.close()
            except OSError:
                logger.debug("stdin already broken on close")

    @staticmethod
    def _wait(
        process: subprocess.Popen,
        timeout: Optional[float],
        cancel_token: Optional[CancellationToken],
    ) -> Optional[str]:
        """Block until exit; return "timeout" or "cancelled" if cut short."""
        if timeout is None and cancel_token is None:
            process.wait()
            return None

        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            interval = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None if process.poll() is not None else "timeout"
                interval = min(interval, remaining)
            try:
                process.wait(timeout=interval)
                return None
            except subprocess.TimeoutExpired:
                pass
            if cancel_token is not None and cancel_token.cancelled:
                return "cancelled"

    def _terminate(self, process: subprocess.Popen) -> None:
        self._signal(process, force=False)
        try:
            process.wait(timeout=self.config.kill_grace_period)
        except subprocess.TimeoutExpired:
            logger.debug(f"pid {process.pid} ignored termination, killing")
        # Sweep descendants that survived the leader, then reap
        self._signal(process, force=True)
        process.wait()

    @staticmethod
    def _signal(process: subprocess.Popen, force: bool) -> None:
        if _IS_WINDOWS:
            if process.poll() is not None:
                return
            if force:
                process.kill()
            else:
                process.terminate()
            return

        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return  # whole group already gone
        except PermissionError:
            if process.poll() is None:
                process.send_signal(sig)
