"""
Portable Node.js version manager.

Installs self-contained Node.js distributions under one root directory,
outside any system package manager:

    <root>/
        versions/node-v20.11.0/   extracted distribution
        downloads/                in-flight downloads (always cleaned up)
        lock/                     registry and per-version install locks
        registry.json             installed version records

Install pipeline: resolve URL, download, verify checksum, extract into a
hidden staging directory, locate executables, rename into place, then
record in the registry. A version only appears in the registry once its
directory is complete, and the final directory only appears through the
rename.
"""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from npmkit.core.directory import (
    DOWNLOADS_DIR,
    LOCK_DIR,
    VERSIONS_DIR,
    get_portable_root,
    version_dir_name,
)
from npmkit.core.download import DownloadProgress, download_file
from npmkit.core.exceptions import PortableInstallError, VersionNotInstalledError
from npmkit.core.executor import ProcessExecutor
from npmkit.core.filesystem import (
    extract_archive,
    find_file,
    make_executable,
    normalize_root,
    safe_rmtree,
    temporary_directory,
)
from npmkit.core.locking import DEFAULT_INSTALL_TIMEOUT, LockManager
from npmkit.core.platform import PlatformInfo, detect_platform
from npmkit.npm.client import NpmClient
from npmkit.provision.nodejs import NodeDistribution, normalize_version
from npmkit.provision.registry import PortableInstallRecord, VersionRegistry

logger = logging.getLogger(__name__)

_WINDOWS_EXECUTABLES = (("node.exe",), ("npm.cmd", "npm.exe"))
_POSIX_EXECUTABLES = (("bin/node",), ("bin/npm",))


class PortableVersionManager:
    """
    Manages portable Node.js installations under a root directory.

    Args:
        root_dir: Install root (default: ~/.npmkit/portable)
        platform: Target platform (detected on first use if None)
        distribution: Where releases are downloaded from
        executor: Base executor for clients created by create_client()
        verify_checksums: Verify archives against SHASUMS256.txt
        lock_timeout: Seconds to wait for another installer of the same version
        download_timeout: HTTP timeout in seconds
        max_retries: Download attempts for transport failures

    Example:
        >>> manager = PortableVersionManager()
        >>> record = manager.install("20.11.0")
        >>> client = manager.create_client("20.11.0")
        >>> client.version()
        '10.2.4'
    """

    def __init__(
        self,
        root_dir: Optional[Path] = None,
        platform: Optional[PlatformInfo] = None,
        distribution: Optional[NodeDistribution] = None,
        executor: Optional[ProcessExecutor] = None,
        verify_checksums: bool = True,
        lock_timeout: float = DEFAULT_INSTALL_TIMEOUT,
        download_timeout: float = 30,
        max_retries: int = 3,
    ):
        self.root_dir = Path(root_dir) if root_dir else get_portable_root()
        self.versions_dir = self.root_dir / VERSIONS_DIR
        self.downloads_dir = self.root_dir / DOWNLOADS_DIR
        self._platform = platform
        self.distribution = distribution or NodeDistribution()
        self.executor = executor or ProcessExecutor()
        self.verify_checksums = verify_checksums
        self.lock_timeout = lock_timeout
        self.download_timeout = download_timeout
        self.max_retries = max_retries

        self.registry = VersionRegistry(self.root_dir)
        self.locks = LockManager(self.root_dir / LOCK_DIR)

    @property
    def platform(self) -> PlatformInfo:
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform

    def version_dir(self, version: str) -> Path:
        return self.versions_dir / version_dir_name(normalize_version(version))

    # ------------------------------------------------------------------
    # Install / uninstall
    # ------------------------------------------------------------------

    def install(
        self,
        version: Optional[str] = None,
        force: bool = False,
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> PortableInstallRecord:
        """
        Install a Node.js version.

        Installing a registered version returns its existing record
        without downloading anything, unless force is set.

        Args:
            version: Version such as '20.11.0' or 'v20.11.0'; latest LTS if None
            force: Reinstall even if already registered
            progress_callback: Receives download progress

        Returns:
            PortableInstallRecord of the installed version

        Raises:
            UnsupportedPlatformError: No distribution for this platform
            DownloadError: Download failed
            IntegrityError: Checksum mismatch
            ArchiveError: Archive could not be extracted
            PortableInstallError: Archive lacks node or npm, or a file
                system operation on the install root failed
            InstallLockTimeout: Another process holds the version lock
        """
        if version is None:
            version = self.distribution.resolve_latest()
            logger.info(f"Latest LTS release is Node.js {version}")
        version = normalize_version(version)

        if not force:
            existing = self.registry.get(version)
            if existing is not None:
                logger.info(
                    f"Node.js {version} already installed at {existing.install_path}"
                )
                return existing

        with self.locks.version_lock(version, timeout=self.lock_timeout):
            if not force:
                # Another process may have finished while we waited
                existing = self.registry.get(version)
                if existing is not None:
                    return existing
            try:
                return self._install_locked(version, progress_callback)
            except OSError as e:
                message = f"Cannot install Node.js {version}: {e}"
                raise PortableInstallError(message) from e

    def _install_locked(
        self,
        version: str,
        progress_callback: Optional[Callable[[DownloadProgress], None]],
    ) -> PortableInstallRecord:
        archive_name = self.distribution.archive_name(version, self.platform)
        url = f"{self.distribution.release_url(version)}/{archive_name}"
        expected_sha256 = (
            self.distribution.checksum_for(version, archive_name)
            if self.verify_checksums
            else None
        )
        final_dir = self.version_dir(version)

        self.versions_dir.mkdir(parents=True, exist_ok=True)
        self._remove_stale_staging(version)

        target = self.platform.platform_string()
        logger.info(f"Installing Node.js {version} for {target}")

        previous = None
        with temporary_directory(self.downloads_dir, prefix=f"node-v{version}-") as tmp:
            archive_path = download_file(
                url,
                tmp / archive_name,
                expected_sha256=expected_sha256,
                progress_callback=progress_callback,
                timeout=self.download_timeout,
                max_retries=self.max_retries,
            )

            staging = Path(
                tempfile.mkdtemp(dir=self.versions_dir, prefix=f".node-v{version}-")
            )
            try:
                extract_archive(archive_path, staging)
                content_root = normalize_root(staging)
                node_rel, npm_rel = self._locate_executables(content_root)
                previous = self._swap_in(content_root, final_dir, staging)
            finally:
                safe_rmtree(staging, require_prefix=self.versions_dir)

        record = PortableInstallRecord(
            version=version,
            install_path=final_dir,
            installed_at=datetime.now().isoformat(timespec="seconds"),
            node_path=final_dir / node_rel,
            npm_path=final_dir / npm_rel,
            source_url=url,
            sha256=expected_sha256,
        )
        try:
            self.registry.add(record)
        except BaseException:
            safe_rmtree(final_dir, require_prefix=self.versions_dir)
            if previous is not None:
                previous.rename(final_dir)
            raise

        if previous is not None:
            safe_rmtree(previous, require_prefix=self.versions_dir)
        logger.info(f"Installed Node.js {version} to {final_dir}")
        return record

    def _swap_in(
        self, content_root: Path, final_dir: Path, staging: Path
    ) -> Optional[Path]:
        """
        Rename the new tree to final_dir.

        An existing final_dir (the installed copy on force, or an
        unregistered leftover) is moved aside and returned; the caller
        deletes it once the new record is registered.
        """
        previous = None
        if final_dir.exists():
            previous = staging.with_name(f"{staging.name}-previous")
            final_dir.rename(previous)
        try:
            content_root.rename(final_dir)
        except OSError:
            if previous is not None:
                previous.rename(final_dir)
            raise
        return previous

    def _locate_executables(self, content_root: Path) -> Tuple[Path, Path]:
        """Return node and npm paths relative to the distribution root."""
        node_names, npm_names = (
            _WINDOWS_EXECUTABLES if self.platform.is_windows else _POSIX_EXECUTABLES
        )
        node = find_file(content_root, node_names)
        npm = find_file(content_root, npm_names)
        if node is None or npm is None:
            missing = "node" if node is None else "npm"
            raise PortableInstallError(
                f"Extracted archive has no {missing} executable"
            )
        if not self.platform.is_windows:
            make_executable(node)
        return node.relative_to(content_root), npm.relative_to(content_root)

    def _remove_stale_staging(self, version: str) -> None:
        for leftover in self.versions_dir.glob(f".node-v{version}-*"):
            logger.debug(f"Removing interrupted install: {leftover}")
            safe_rmtree(leftover, require_prefix=self.versions_dir)

    def uninstall(self, version: str) -> None:
        """
        Remove an installed version.

        Raises:
            VersionNotInstalledError: If the version is not registered
        """
        version = normalize_version(version)
        with self.locks.version_lock(version, timeout=self.lock_timeout):
            record = self.registry.remove(version)
            if record is None:
                raise VersionNotInstalledError(version)
            safe_rmtree(record.install_path, require_prefix=self.versions_dir)
        logger.info(f"Uninstalled Node.js {version}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_versions(self) -> List[PortableInstallRecord]:
        return self.registry.list_records()

    def is_installed(self, version: str) -> bool:
        return self.registry.contains(normalize_version(version))

    def get_record(self, version: str) -> PortableInstallRecord:
        """
        Raises:
            VersionNotInstalledError: If the version is not registered
        """
        version = normalize_version(version)
        record = self.registry.get(version)
        if record is None:
            raise VersionNotInstalledError(version)
        return record

    def set_default(self, version: str) -> None:
        record = self.get_record(version)
        self.registry.set_default(record.version)
        logger.info(f"Default Node.js version set to {record.version}")

    def get_default(self) -> Optional[PortableInstallRecord]:
        version = self.registry.get_default()
        return self.registry.get(version) if version else None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def create_executor(self, version: Optional[str] = None) -> ProcessExecutor:
        """
        Executor whose PATH starts with an installed version's bin directory.

        Args:
            version: Installed version; the default version if None

        Raises:
            VersionNotInstalledError: If the version is not installed
        """
        return self._bound_executor(self._resolve_record(version))

    def create_client(self, version: Optional[str] = None) -> NpmClient:
        """
        Create an npm client bound to an installed version.

        The node binary directory is put first on PATH so npm's own
        scripts run on the same Node.js.

        Args:
            version: Installed version; the default version if None

        Raises:
            VersionNotInstalledError: If the version is not installed
        """
        record = self._resolve_record(version)
        return NpmClient(
            npm_path=record.npm_path, executor=self._bound_executor(record)
        )

    def _resolve_record(self, version: Optional[str]) -> PortableInstallRecord:
        if version is not None:
            return self.get_record(version)
        record = self.get_default()
        if record is None:
            raise VersionNotInstalledError("default")
        return record

    def _bound_executor(self, record: PortableInstallRecord) -> ProcessExecutor:
        bin_dir = str(record.node_path.parent)
        base = self.executor.config
        path = base.default_env.get("PATH", os.environ.get("PATH", ""))
        env = dict(base.default_env)
        env["PATH"] = os.pathsep.join(p for p in (bin_dir, path) if p)
        return ProcessExecutor(base.replace(default_env=env))
