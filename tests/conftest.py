"""
Pytest configuration and shared fixtures for npmkit tests.
"""

import hashlib
import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from npmkit.core.platform import PlatformInfo

NODE_VERSION = "20.11.0"
MIRROR = "https://mirror.test/dist"


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests that require network access",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --integration flag is provided."""
    if config.getoption("--integration"):
        return
    skip_integration = pytest.mark.skip(reason="need --integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (requires --integration)",
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# ============================================================================
# Platform fixtures
# ============================================================================


@pytest.fixture
def linux_platform() -> PlatformInfo:
    return PlatformInfo("linux", "x64", "ubuntu", "22.04", ("debian",))


@pytest.fixture
def macos_platform() -> PlatformInfo:
    return PlatformInfo("macos", "arm64")


@pytest.fixture
def windows_platform() -> PlatformInfo:
    return PlatformInfo("windows", "x64")


# ============================================================================
# Fake Node.js distributions
# ============================================================================


def _add_tar_file(tar: tarfile.TarFile, name: str, content: bytes, mode: int):
    info = tarfile.TarInfo(name)
    info.size = len(content)
    info.mode = mode
    tar.addfile(info, io.BytesIO(content))


def build_node_tarball(
    version: str = NODE_VERSION,
    platform_tag: str = "linux-x64",
    compression: str = "xz",
    include_npm: bool = True,
) -> bytes:
    """In-memory tar archive laid out like a nodejs.org release."""
    top = f"node-v{version}-{platform_tag}"
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=f"w:{compression}") as tar:
        node_script = b"#!/bin/sh\necho v" + version.encode() + b"\n"
        _add_tar_file(tar, f"{top}/bin/node", node_script, 0o755)
        if include_npm:
            _add_tar_file(tar, f"{top}/bin/npm", b"#!/bin/sh\necho 10.2.4\n", 0o755)
        _add_tar_file(tar, f"{top}/README.md", b"Node.js\n", 0o644)
    return buffer.getvalue()


def build_node_zip(version: str = NODE_VERSION, arch: str = "x64") -> bytes:
    """In-memory zip laid out like a Windows nodejs.org release."""
    top = f"node-v{version}-win-{arch}"
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(f"{top}/node.exe", b"MZ")
        zf.writestr(f"{top}/npm.cmd", b"@echo 10.2.4\r\n")
    return buffer.getvalue()


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def shasums_for(files) -> str:
    """SHASUMS256.txt content for a {filename: bytes} mapping."""
    return "".join(f"{sha256_of(data)}  {name}\n" for name, data in files.items())


@pytest.fixture
def node_tarball() -> bytes:
    return build_node_tarball()


@pytest.fixture
def make_node_tarball():
    """Factory for fake release tarballs."""
    return build_node_tarball


@pytest.fixture
def make_node_zip():
    """Factory for fake Windows release zips."""
    return build_node_zip


@pytest.fixture
def make_shasums():
    """Factory for SHASUMS256.txt content."""
    return shasums_for


@pytest.fixture
def portable_root(tmp_path: Path) -> Path:
    root = tmp_path / "portable"
    root.mkdir()
    return root


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch) -> Path:
    """Point NPMKIT_HOME at a temporary directory."""
    home = tmp_path / "npmkit-home"
    monkeypatch.setenv("NPMKIT_HOME", str(home))
    return home
