"""
Unit tests for the portable version manager.

Releases are served by `responses` from an in-memory archive, so the
whole pipeline (download, checksum, extraction, registration) runs
without network access.
"""

import os
from unittest.mock import patch

import pytest
import responses

from npmkit.core.exceptions import (
    ArchiveError,
    DownloadError,
    IntegrityError,
    PortableInstallError,
    VersionNotInstalledError,
)
from npmkit.core.executor import ExecutorConfig, ProcessExecutor
from npmkit.provision.nodejs import NodeDistribution
from npmkit.provision.portable import PortableVersionManager

MIRROR = "https://mirror.test/dist"
VERSION = "20.11.0"
ARCHIVE = f"node-v{VERSION}-linux-x64.tar.xz"
ARCHIVE_URL = f"{MIRROR}/v{VERSION}/{ARCHIVE}"
SHASUMS_URL = f"{MIRROR}/v{VERSION}/SHASUMS256.txt"


@pytest.fixture
def manager(portable_root, linux_platform):
    return PortableVersionManager(
        root_dir=portable_root,
        platform=linux_platform,
        distribution=NodeDistribution(MIRROR),
        lock_timeout=5,
        max_retries=1,
    )


@pytest.fixture
def release(node_tarball, make_shasums):
    """Serve a valid release with its checksum list."""
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
        mock.add(
            responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: node_tarball})
        )
        yield mock


def leftovers(root):
    """Hidden staging directories and in-flight downloads."""
    versions = root / "versions"
    downloads = root / "downloads"
    staged = list(versions.glob(".node-v*")) if versions.exists() else []
    pending = list(downloads.iterdir()) if downloads.exists() else []
    return staged + pending


class TestInstall:
    """Test PortableVersionManager.install()."""

    def test_install(self, manager, portable_root, release):
        record = manager.install(VERSION)

        final = portable_root / "versions" / f"node-v{VERSION}"
        assert record.version == VERSION
        assert record.install_path == final
        assert record.node_path == final / "bin" / "node"
        assert record.npm_path == final / "bin" / "npm"
        assert record.node_path.is_file()
        assert record.source_url == ARCHIVE_URL
        assert record.sha256 is not None
        assert manager.is_installed(VERSION)
        assert manager.get_record(f"v{VERSION}") == record
        assert leftovers(portable_root) == []

    @pytest.mark.skipif(os.name == "nt", reason="unix permission bits")
    def test_node_is_executable(self, manager, release):
        record = manager.install(VERSION)
        assert os.access(record.node_path, os.X_OK)

    def test_second_install_is_a_no_op(self, manager, release):
        """Test an installed version is returned without any download."""
        first = manager.install(VERSION)
        calls = len(release.calls)

        second = manager.install(f"v{VERSION}")

        assert second == first
        assert len(release.calls) == calls

    def test_force_reinstalls(self, manager, release):
        manager.install(VERSION)
        calls = len(release.calls)

        record = manager.install(VERSION, force=True)

        assert len(release.calls) > calls
        assert record.node_path.is_file()
        assert [r.version for r in manager.list_versions()] == [VERSION]

    def test_failed_force_keeps_working_install(
        self, manager, portable_root, node_tarball, make_shasums
    ):
        """Test a forced reinstall that fails leaves the old install registered."""
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            mock.add(
                responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: node_tarball})
            )
            original = manager.install(VERSION)
        manager.set_default(VERSION)

        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, status=503)
            mock.add(
                responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: node_tarball})
            )
            with pytest.raises(DownloadError, match="HTTP 503"):
                manager.install(VERSION, force=True)

        assert manager.get_record(VERSION) == original
        assert original.node_path.is_file()
        assert manager.get_default().version == VERSION
        assert leftovers(portable_root) == []

    def test_force_keeps_default(self, manager, portable_root, release):
        manager.install(VERSION)
        manager.set_default(VERSION)

        record = manager.install(VERSION, force=True)

        assert manager.get_default().version == VERSION
        assert record.node_path.is_file()
        assert leftovers(portable_root) == []

    def test_force_replaces_whole_entry(self, manager, node_tarball, make_shasums):
        """Test a reinstall without checksums drops the previous digest."""
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            mock.add(
                responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: node_tarball})
            )
            assert manager.install(VERSION).sha256 is not None

        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            mock.add(responses.GET, SHASUMS_URL, status=404)
            manager.install(VERSION, force=True)

        assert manager.get_record(VERSION).sha256 is None

    def test_os_error_becomes_install_error(self, manager, portable_root, release):
        """Test a file system failure is reported as PortableInstallError."""
        with patch(
            "npmkit.provision.portable.normalize_root",
            side_effect=PermissionError("denied"),
        ):
            with pytest.raises(PortableInstallError, match="denied"):
                manager.install(VERSION)

        assert not manager.is_installed(VERSION)
        assert leftovers(portable_root) == []

    def test_removes_interrupted_staging(self, manager, portable_root, release):
        """Test a staging directory left by a killed install is cleaned up."""
        stale = portable_root / "versions" / f".node-v{VERSION}-dead"
        (stale / "bin").mkdir(parents=True)

        manager.install(VERSION)

        assert not stale.exists()

    def test_unregistered_leftover_replaced(self, manager, portable_root, release):
        """Test a final directory without a registry entry is overwritten."""
        leftover = portable_root / "versions" / f"node-v{VERSION}"
        leftover.mkdir(parents=True)
        (leftover / "junk").write_text("x")

        record = manager.install(VERSION)

        assert not (leftover / "junk").exists()
        assert record.node_path.is_file()

    def test_progress_callback(self, manager, release):
        reports = []
        manager.install(VERSION, progress_callback=reports.append)
        assert reports

    def test_latest_lts_when_no_version(self, manager, release):
        release.add(
            responses.GET,
            f"{MIRROR}/index.json",
            json=[
                {"version": "v21.6.1", "lts": False},
                {"version": "v20.11.0", "lts": "Iron"},
            ],
        )
        assert manager.install().version == VERSION

    def test_checksum_mismatch_leaves_nothing(
        self, manager, portable_root, node_tarball
    ):
        """Test a corrupt download installs nothing and registers nothing."""
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            mock.add(responses.GET, SHASUMS_URL, body=f"{'0' * 64}  {ARCHIVE}\n")

            with pytest.raises(IntegrityError):
                manager.install(VERSION)

        assert not (portable_root / "versions" / f"node-v{VERSION}").exists()
        assert not manager.is_installed(VERSION)
        assert leftovers(portable_root) == []

    def test_missing_checksums_still_installs(self, manager, node_tarball):
        """Test a release without SHASUMS256.txt installs unverified."""
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            mock.add(responses.GET, SHASUMS_URL, status=404)

            record = manager.install(VERSION)

        assert record.sha256 is None
        assert manager.is_installed(VERSION)

    def test_checksums_disabled(self, portable_root, linux_platform, node_tarball):
        manager = PortableVersionManager(
            root_dir=portable_root,
            platform=linux_platform,
            distribution=NodeDistribution(MIRROR),
            verify_checksums=False,
        )
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=node_tarball)
            manager.install(VERSION)
            assert [c.request.url for c in mock.calls] == [ARCHIVE_URL]

    def test_extraction_failure_leaves_nothing(
        self, manager, portable_root, make_shasums
    ):
        """Test a broken archive leaves no final directory and no entry."""
        junk = b"this is not an xz archive"
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=junk)
            mock.add(responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: junk}))

            with pytest.raises(ArchiveError):
                manager.install(VERSION)

        assert not (portable_root / "versions" / f"node-v{VERSION}").exists()
        assert not manager.is_installed(VERSION)
        assert leftovers(portable_root) == []

    def test_archive_without_npm(
        self, manager, portable_root, make_node_tarball, make_shasums
    ):
        archive = make_node_tarball(include_npm=False)
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, ARCHIVE_URL, body=archive)
            mock.add(responses.GET, SHASUMS_URL, body=make_shasums({ARCHIVE: archive}))

            with pytest.raises(PortableInstallError, match="npm"):
                manager.install(VERSION)

        assert not manager.is_installed(VERSION)
        assert leftovers(portable_root) == []

    def test_windows_zip(
        self, portable_root, windows_platform, make_node_zip, make_shasums
    ):
        """Test the Windows layout (node.exe and npm.cmd at the top level)."""
        archive_name = f"node-v{VERSION}-win-x64.zip"
        archive = make_node_zip()
        manager = PortableVersionManager(
            root_dir=portable_root,
            platform=windows_platform,
            distribution=NodeDistribution(MIRROR),
        )
        with responses.RequestsMock() as mock:
            mock.add(responses.GET, f"{MIRROR}/v{VERSION}/{archive_name}", body=archive)
            mock.add(
                responses.GET, SHASUMS_URL, body=make_shasums({archive_name: archive})
            )
            record = manager.install(VERSION)

        assert record.node_path.name == "node.exe"
        assert record.npm_path.name == "npm.cmd"
        assert record.node_path.parent == record.install_path

    def test_invalid_version(self, manager):
        with pytest.raises(ValueError):
            manager.install("twenty")


class TestManagement:
    """Test uninstall, listing and default selection."""

    def test_uninstall(self, manager, release):
        record = manager.install(VERSION)

        manager.uninstall(VERSION)

        assert not record.install_path.exists()
        assert not manager.is_installed(VERSION)
        assert manager.list_versions() == []

    def test_uninstall_unknown(self, manager):
        with pytest.raises(VersionNotInstalledError):
            manager.uninstall("18.19.0")

    def test_default_version(self, manager, release):
        assert manager.get_default() is None
        manager.install(VERSION)

        manager.set_default(f"v{VERSION}")

        assert manager.get_default().version == VERSION

    def test_default_requires_install(self, manager):
        with pytest.raises(VersionNotInstalledError):
            manager.set_default(VERSION)


class TestClients:
    """Test clients and executors bound to an installed version."""

    def test_create_client(self, manager, release):
        record = manager.install(VERSION)

        client = manager.create_client(VERSION)

        assert client.npm_path == str(record.npm_path)
        path = client.executor.config.default_env["PATH"]
        assert path.split(os.pathsep)[0] == str(record.node_path.parent)

    def test_client_keeps_executor_settings(
        self, portable_root, linux_platform, release
    ):
        base = ProcessExecutor(
            ExecutorConfig(default_timeout=99, default_env={"NPM_CONFIG_FUND": "false"})
        )
        manager = PortableVersionManager(
            root_dir=portable_root,
            platform=linux_platform,
            distribution=NodeDistribution(MIRROR),
            executor=base,
        )
        manager.install(VERSION)

        executor = manager.create_executor(VERSION)

        assert executor.config.default_timeout == 99
        assert executor.config.default_env["NPM_CONFIG_FUND"] == "false"
        assert "PATH" not in base.config.default_env

    def test_default_client(self, manager, release):
        manager.install(VERSION)
        manager.set_default(VERSION)
        assert manager.create_client().npm_path.endswith("npm")

    def test_no_default(self, manager):
        with pytest.raises(VersionNotInstalledError):
            manager.create_client()

    @pytest.mark.skipif(os.name == "nt", reason="fake binaries are shell scripts")
    def test_client_runs_installed_npm(self, manager, release):
        """Test the installed npm is the one the client executes."""
        manager.install(VERSION)
        assert manager.create_client(VERSION).version() == "10.2.4"
