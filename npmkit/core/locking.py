"""
Cross-process locking for the portable install root.

Two kinds of lock are used, both backed by `filelock` so they work across
threads, processes and platforms:

- the registry lock guards each read-modify-write of registry.json
- a per-version lock keeps two installers of the same version apart

Usage:
    from npmkit.core.locking import LockManager

    locks = LockManager(root / "lock")
    with locks.registry_lock(timeout=30):
        ...  # read, modify and write the registry
"""

import logging
import re
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout as LockTimeout

from npmkit.core.exceptions import InstallLockTimeout, RegistryLockTimeout

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_TIMEOUT = 30
DEFAULT_INSTALL_TIMEOUT = 600

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LockManager:
    """
    Hands out scoped file locks stored in one directory.

    Attributes:
        lock_dir: Directory holding the lock files
    """

    def __init__(self, lock_dir: Path):
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def registry_lock(self, timeout: float = DEFAULT_REGISTRY_TIMEOUT):
        """
        Hold the registry lock for the duration of the block.

        Raises:
            RegistryLockTimeout: If the lock is not acquired within timeout
        """
        lock_path = self.lock_dir / "registry.lock"
        try:
            with FileLock(lock_path, timeout=timeout):
                logger.debug(f"Acquired registry lock: {lock_path}")
                yield
                logger.debug(f"Released registry lock: {lock_path}")
        except LockTimeout as e:
            raise RegistryLockTimeout(
                f"Could not acquire registry lock after {timeout}s. "
                "Another npmkit process may be running."
            ) from e

    @contextmanager
    def version_lock(self, version: str, timeout: float = DEFAULT_INSTALL_TIMEOUT):
        """
        Hold the install lock of one version.

        The default timeout is long because the holder may be downloading.

        Raises:
            InstallLockTimeout: If the lock is not acquired within timeout
        """
        safe_version = _UNSAFE_CHARS.sub("-", version)
        lock_path = self.lock_dir / f"install-{safe_version}.lock"
        try:
            with FileLock(lock_path, timeout=timeout):
                logger.debug(f"Acquired install lock: {lock_path}")
                yield
                logger.debug(f"Released install lock: {lock_path}")
        except LockTimeout as e:
            raise InstallLockTimeout(
                f"Could not acquire install lock for Node.js {version} after "
                f"{timeout}s. Another process may be installing it."
            ) from e
