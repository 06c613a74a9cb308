"""
Centralized exception hierarchy for npmkit.

Every error raised by npmkit derives from NpmKitError so callers can
catch the whole family with one clause. Ordinary command failures
(non-zero exit, timeout) are never exceptions: they are reported in
ExecutionResult.
"""

from typing import List, Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class NpmKitError(Exception):
    """Base exception for all npmkit errors."""

    pass


# ============================================================================
# Process Execution Exceptions
# ============================================================================


class ExecutionError(NpmKitError):
    """Base exception for process execution errors."""

    pass


class InvalidRequestError(ExecutionError):
    """Raised when an execution request is malformed (e.g. empty command)."""

    pass


class SpawnError(ExecutionError):
    """Raised when the child process cannot be created."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start '{command}': {reason}")


# ============================================================================
# Platform Exceptions
# ============================================================================


class DetectionError(NpmKitError):
    """Raised when the host operating system cannot be identified at all."""

    pass


class UnsupportedPlatformError(NpmKitError):
    """Raised when no Node.js distribution exists for the host platform."""

    def __init__(self, platform_string: str, detail: str = ""):
        self.platform_string = platform_string
        msg = f"Unsupported platform: {platform_string}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


# ============================================================================
# Download and Archive Exceptions
# ============================================================================


class DownloadError(NpmKitError):
    """Raised on a non-2xx response or a transport failure."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Download failed for {url}: {reason}")


class IntegrityError(NpmKitError):
    """Raised when a downloaded file does not match its expected checksum."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )


class FilesystemError(NpmKitError):
    """Raised when a guarded file system operation fails."""

    pass


class ArchiveError(NpmKitError):
    """Raised when an archive cannot be extracted."""

    pass


# ============================================================================
# Registry and Portable Install Exceptions
# ============================================================================


class RegistryError(NpmKitError):
    """Base exception for version registry errors."""

    pass


class RegistryLockTimeout(RegistryError):
    """Raised when registry lock cannot be acquired within timeout."""

    pass


class InstallLockTimeout(NpmKitError):
    """Raised when another process holds the install lock for a version."""

    pass


class PortableInstallError(NpmKitError):
    """Raised when an extracted archive does not contain a usable toolchain."""

    pass


class VersionNotInstalledError(NpmKitError):
    """Raised when a portable version is not present in the registry."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Node.js {version} is not installed; install it first"
        )


# ============================================================================
# Provisioning Exceptions
# ============================================================================


class StrategyExhaustedError(NpmKitError):
    """
    Raised when every installation strategy failed.

    Attributes:
        attempts: AttemptRecord list, one per strategy tried, in order
    """

    def __init__(self, attempts: List, message: Optional[str] = None):
        self.attempts = list(attempts)
        if message is None:
            tried = ", ".join(a.strategy.name for a in self.attempts) or "none"
            message = f"All installation strategies failed (tried: {tried})"
        super().__init__(message)


# ============================================================================
# npm Exceptions
# ============================================================================


class NpmError(NpmKitError):
    """Base exception for npm related errors."""

    pass


class NpmNotFoundError(NpmError):
    """Raised when no npm executable can be located."""

    pass


class NpmCommandError(NpmError):
    """Raised when an npm command exits unsuccessfully."""

    def __init__(
        self,
        operation: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        package: str = "",
    ):
        self.operation = operation
        self.exit_code = exit_code
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.package = package

        target = f" {package}" if package else ""
        msg = f"npm {operation}{target} failed with exit code {exit_code}"
        detail = self.stderr.strip()
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ManifestError(NpmError):
    """Raised when package.json cannot be read, parsed or validated."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigError(NpmKitError):
    """Raised when the npmkit configuration file is invalid."""

    pass
