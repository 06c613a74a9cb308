"""
Installation strategy selector.

Drives an ordered list of InstallStrategy values with one generic
attempt-and-record loop:

    PENDING -> ATTEMPTING(strategy 1) -> ATTEMPTING(strategy 2) -> ...
            -> SUCCESS    (first attempt that succeeds)
            -> EXHAUSTED  (every attempt failed; StrategyExhaustedError)

No step is retried. Every command that ran is recorded with its exit code
so a failed provisioning run can be reported in full.
"""

import logging
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from npmkit.core.download import download_file
from npmkit.core.exceptions import (
    DownloadError,
    NpmKitError,
    SpawnError,
    StrategyExhaustedError,
)
from npmkit.core.executor import ExecutionRequest, ProcessExecutor
from npmkit.core.filesystem import temporary_directory
from npmkit.core.platform import PlatformInfo, detect_platform
from npmkit.npm.detector import NpmDetector
from npmkit.provision.nodejs import NodeDistribution, normalize_version
from npmkit.provision.portable import PortableVersionManager
from npmkit.provision.registry import PortableInstallRecord
from npmkit.provision.strategy import (
    InstallMethod,
    InstallStrategy,
    StrategyStep,
    build_strategies,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT = 900.0


class SelectorState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class StepRecord:
    """One command run during an attempt."""

    description: str
    command: tuple
    exit_code: Optional[int]
    success: bool
    duration: float = 0.0
    error: Optional[str] = None


@dataclass
class AttemptRecord:
    """Outcome of trying one strategy."""

    strategy: InstallStrategy
    steps: List[StepRecord] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None
    install_record: Optional[PortableInstallRecord] = None

    def summary(self) -> str:
        status = "succeeded" if self.success else "failed"
        header = f"{self.strategy}: {status}"
        if self.error:
            header += f" ({self.error})"
        lines = [header]
        for step in self.steps:
            code = "n/a" if step.exit_code is None else step.exit_code
            lines.append(f"  $ {' '.join(step.command)} -> exit {code}")
        return "\n".join(lines)


@dataclass
class ProvisionResult:
    state: SelectorState
    strategy: Optional[InstallStrategy] = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    duration: float = 0.0
    already_installed: bool = False
    npm_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.state == SelectorState.SUCCESS


class InstallationSelector:
    """
    Provisions npm by trying strategies in order.

    Args:
        executor: Runs strategy commands
        platform: Target platform (detected when first needed if None)
        portable_manager: Enables the portable strategy
        distribution: Node.js release locations
        detector: Checks for an existing npm
        step_timeout: Seconds allowed per strategy command

    Example:
        >>> selector = InstallationSelector(portable_manager=PortableVersionManager())
        >>> result = selector.provision(version="20.11.0")
        >>> result.strategy.name
        'apt-get'
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        platform: Optional[PlatformInfo] = None,
        portable_manager: Optional[PortableVersionManager] = None,
        distribution: Optional[NodeDistribution] = None,
        detector: Optional[NpmDetector] = None,
        step_timeout: float = DEFAULT_STEP_TIMEOUT,
    ):
        self.executor = executor or ProcessExecutor()
        self._platform = platform
        self.portable_manager = portable_manager
        self.distribution = distribution or (
            portable_manager.distribution if portable_manager else NodeDistribution()
        )
        self.detector = detector or NpmDetector(self.executor)
        self.step_timeout = step_timeout
        self.state = SelectorState.PENDING

    @property
    def platform(self) -> PlatformInfo:
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform

    def plan(
        self,
        version: Optional[str] = None,
        method: Optional[Union[InstallMethod, str]] = None,
    ) -> List[InstallStrategy]:
        """
        Ordered strategies for the current platform.

        Without an explicit version the latest LTS is looked up when a
        strategy needs one; if that lookup fails those strategies are left
        out of the plan.
        """
        needs_version = self.platform.is_windows or self.platform.is_macos
        needs_version = needs_version or self.portable_manager is not None
        if version is None and needs_version:
            try:
                version = self.distribution.resolve_latest()
            except DownloadError as e:
                logger.warning(f"Could not resolve the latest Node.js release: {e}")
        elif version is not None:
            version = normalize_version(version)

        strategies = build_strategies(
            self.platform,
            version=version,
            distribution=self.distribution,
            include_portable=self.portable_manager is not None,
        )
        if method is not None:
            method = InstallMethod(method)
            strategies = [s for s in strategies if s.method == method]
        return strategies

    def provision(
        self,
        strategies: Optional[Sequence[InstallStrategy]] = None,
        method: Optional[Union[InstallMethod, str]] = None,
        version: Optional[str] = None,
        force: bool = False,
    ) -> ProvisionResult:
        """
        Make npm available.

        Args:
            strategies: Explicit strategy list (default: plan())
            method: Only try strategies of this kind
            version: Node.js version for strategies that can pin one
            force: Install even if npm is already available

        Returns:
            ProvisionResult in state SUCCESS

        Raises:
            StrategyExhaustedError: If every strategy failed
        """
        start = time.monotonic()

        if not force and self.detector.is_available():
            logger.info("npm is already installed")
            self.state = SelectorState.SUCCESS
            return ProvisionResult(
                state=SelectorState.SUCCESS,
                already_installed=True,
                npm_path=self.detector.find_npm(),
                duration=time.monotonic() - start,
            )

        if strategies is None:
            strategies = self.plan(version=version, method=method)
        elif method is not None:
            strategies = [s for s in strategies if s.method == InstallMethod(method)]

        attempts: List[AttemptRecord] = []
        for strategy in strategies:
            self.state = SelectorState.ATTEMPTING
            logger.info(f"Trying {strategy}")
            attempt = self.attempt(strategy)
            attempts.append(attempt)

            if attempt.success:
                self.state = SelectorState.SUCCESS
                logger.info(f"npm provisioned with {strategy}")
                return ProvisionResult(
                    state=SelectorState.SUCCESS,
                    strategy=strategy,
                    attempts=attempts,
                    duration=time.monotonic() - start,
                    npm_path=(
                        attempt.install_record.npm_path
                        if attempt.install_record
                        else None
                    ),
                )
            logger.warning(f"{strategy} failed: {attempt.error}")

        self.state = SelectorState.EXHAUSTED
        raise StrategyExhaustedError(attempts)

    def attempt(self, strategy: InstallStrategy) -> AttemptRecord:
        """Try one strategy and record what happened."""
        attempt = AttemptRecord(strategy=strategy)

        if strategy.method == InstallMethod.PORTABLE:
            self._attempt_portable(strategy, attempt)
        elif strategy.method == InstallMethod.MANUAL:
            attempt.error = strategy.instructions or "manual installation required"
        elif strategy.artifact is not None:
            self._attempt_with_artifact(strategy, attempt)
        else:
            self._run_steps(strategy.steps, attempt)
        return attempt

    def _attempt_portable(
        self, strategy: InstallStrategy, attempt: AttemptRecord
    ) -> None:
        if self.portable_manager is None:
            attempt.error = "no portable version manager configured"
            return
        try:
            record = self.portable_manager.install(strategy.version)
        except NpmKitError as e:
            attempt.error = str(e)
            return
        attempt.install_record = record
        attempt.success = True

    def _attempt_with_artifact(
        self, strategy: InstallStrategy, attempt: AttemptRecord
    ) -> None:
        artifact = strategy.artifact
        parent = Path(tempfile.gettempdir())
        try:
            with temporary_directory(parent, prefix="npmkit-installer-") as tmp:
                expected = None
                if artifact.version:
                    expected = self.distribution.checksum_for(
                        artifact.version, artifact.filename
                    )
                path = download_file(
                    artifact.url, tmp / artifact.filename, expected_sha256=expected
                )
                self._run_steps(strategy.steps, attempt, artifact=path)
        except (NpmKitError, OSError) as e:
            attempt.error = str(e)

    def _run_steps(
        self,
        steps: Sequence[StrategyStep],
        attempt: AttemptRecord,
        artifact: Optional[Path] = None,
    ) -> None:
        if not steps:
            attempt.error = "strategy has no commands"
            return

        for step in steps:
            args = step.render_args(artifact)
            argv = (step.command,) + args
            request = ExecutionRequest(
                step.command, args, timeout=step.timeout or self.step_timeout
            )
            try:
                result = self.executor.run(request)
            except SpawnError as e:
                attempt.steps.append(
                    StepRecord(step.description, argv, None, False, error=str(e))
                )
                attempt.error = f"{step.description}: {e.reason}"
                return

            ok = result.exit_code in step.accept_exit_codes and not result.cancelled
            attempt.steps.append(
                StepRecord(
                    step.description,
                    argv,
                    result.exit_code,
                    ok,
                    duration=result.duration,
                    error=None if ok else result.error,
                )
            )
            if not ok:
                attempt.error = f"{step.description}: {result.error or 'failed'}"
                return

        attempt.success = True
