"""
Core functionality for npmkit.

This package contains the process execution, platform detection, download
and file system modules that the provisioning layer builds on.
"""

from .executor import (
    CancellationToken,
    ExecutionRequest,
    ExecutionResult,
    ExecutorConfig,
    ProcessExecutor,
)

from .batch import (
    BatchExecutor,
    BatchRequest,
    BatchResult,
)

from .platform import (
    PlatformDetector,
    PlatformInfo,
    detect_platform,
    map_distribution,
)

from .locking import LockManager

from .exceptions import (
    NpmKitError,
    ExecutionError,
    InvalidRequestError,
    SpawnError,
    DetectionError,
    UnsupportedPlatformError,
    DownloadError,
    IntegrityError,
    ArchiveError,
    FilesystemError,
    RegistryError,
    RegistryLockTimeout,
    InstallLockTimeout,
    PortableInstallError,
    VersionNotInstalledError,
    StrategyExhaustedError,
    NpmError,
    NpmNotFoundError,
    NpmCommandError,
    ManifestError,
    ConfigError,
)

__all__ = [
    # Execution
    "CancellationToken",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorConfig",
    "ProcessExecutor",
    "BatchExecutor",
    "BatchRequest",
    "BatchResult",
    # Platform
    "PlatformDetector",
    "PlatformInfo",
    "detect_platform",
    "map_distribution",
    # Locking
    "LockManager",
    # Exceptions
    "NpmKitError",
    "ExecutionError",
    "InvalidRequestError",
    "SpawnError",
    "DetectionError",
    "UnsupportedPlatformError",
    "DownloadError",
    "IntegrityError",
    "ArchiveError",
    "FilesystemError",
    "RegistryError",
    "RegistryLockTimeout",
    "InstallLockTimeout",
    "PortableInstallError",
    "VersionNotInstalledError",
    "StrategyExhaustedError",
    "NpmError",
    "NpmNotFoundError",
    "NpmCommandError",
    "ManifestError",
    "ConfigError",
]
