"""
Unit tests for file system helpers.
"""

import io
import os
import tarfile
import zipfile
from pathlib import Path

import pytest

from npmkit.core.exceptions import ArchiveError, NpmKitError
from npmkit.core.filesystem import (
    FilesystemError,
    InsecureArchiveError,
    atomic_write,
    extract_archive,
    find_file,
    make_executable,
    normalize_root,
    safe_rmtree,
    temporary_directory,
)


def write_tar(path: Path, members, mode="w:gz"):
    with tarfile.open(path, mode) as tar:
        for name, content in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(content))
    return path


class TestExtractArchive:
    """Test archive extraction."""

    @pytest.mark.parametrize(
        "suffix, mode",
        [(".tar.gz", "w:gz"), (".tgz", "w:gz"), (".tar.xz", "w:xz")],
    )
    def test_tar_formats(self, tmp_path, suffix, mode):
        archive = write_tar(tmp_path / f"a{suffix}", {"top/file.txt": b"data"}, mode)
        dest = tmp_path / "out"

        extract_archive(archive, dest)

        assert (dest / "top" / "file.txt").read_bytes() == b"data"

    def test_zip(self, tmp_path):
        archive = tmp_path / "a.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("top/file.txt", "data")

        extract_archive(archive, tmp_path / "out")

        assert (tmp_path / "out" / "top" / "file.txt").read_text() == "data"

    @pytest.mark.skipif(os.name == "nt", reason="unix permission bits")
    def test_zip_keeps_permissions(self, tmp_path):
        """Test execute bits stored in a zip survive extraction."""
        archive = tmp_path / "a.zip"
        info = zipfile.ZipInfo("bin/tool")
        info.external_attr = 0o755 << 16
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr(info, "#!/bin/sh\n")

        extract_archive(archive, tmp_path / "out")

        assert os.access(tmp_path / "out" / "bin" / "tool", os.X_OK)

    def test_progress_callback(self, tmp_path):
        archive = tmp_path / "a.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("a.txt", "1")
            zf.writestr("b.txt", "2")
        calls = []

        extract_archive(archive, tmp_path / "out", lambda c, t: calls.append((c, t)))

        assert calls[-1] == (2, 2)

    def test_traversal_blocked(self, tmp_path):
        """Test members escaping the destination are rejected before writing."""
        archive = write_tar(tmp_path / "evil.tar.gz", {"../escape.txt": b"x"})

        with pytest.raises(InsecureArchiveError):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()

    def test_unsupported_format(self, tmp_path):
        archive = tmp_path / "a.rar"
        archive.write_bytes(b"Rar!")
        with pytest.raises(ArchiveError, match="Unsupported archive format"):
            extract_archive(archive, tmp_path / "out")

    def test_corrupt_archive(self, tmp_path):
        """Test a damaged archive is reported as ArchiveError."""
        archive = tmp_path / "broken.tar.xz"
        archive.write_bytes(b"definitely not xz")
        with pytest.raises(ArchiveError, match="Failed to extract"):
            extract_archive(archive, tmp_path / "out")

    def test_missing_archive(self, tmp_path):
        with pytest.raises(ArchiveError, match="not found"):
            extract_archive(tmp_path / "nope.zip", tmp_path / "out")


class TestLayoutHelpers:
    def test_normalize_root_single_directory(self, tmp_path):
        (tmp_path / "node-v20.11.0-linux-x64" / "bin").mkdir(parents=True)
        assert normalize_root(tmp_path) == tmp_path / "node-v20.11.0-linux-x64"

    def test_normalize_root_flat(self, tmp_path):
        (tmp_path / "bin").mkdir()
        (tmp_path / "README.md").write_text("")
        assert normalize_root(tmp_path) == tmp_path

    def test_find_file_candidates_in_order(self, tmp_path):
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "node").write_text("")
        (tmp_path / "node").write_text("")
        assert find_file(tmp_path, ["bin/node", "node"]) == tmp_path / "bin" / "node"

    def test_find_file_recursive_fallback(self, tmp_path):
        """Test a file in an unexpected location is still found by name."""
        nested = tmp_path / "deep" / "er"
        nested.mkdir(parents=True)
        (nested / "npm").write_text("")
        assert find_file(tmp_path, ["bin/npm"]) == nested / "npm"

    def test_find_file_missing(self, tmp_path):
        assert find_file(tmp_path, ["bin/node"]) is None

    @pytest.mark.skipif(os.name == "nt", reason="unix permission bits")
    def test_make_executable(self, tmp_path):
        path = tmp_path / "tool"
        path.write_text("")
        path.chmod(0o644)
        make_executable(path)
        assert os.access(path, os.X_OK)


class TestSafeFileOperations:
    def test_atomic_write_text_and_bytes(self, tmp_path):
        target = tmp_path / "sub" / "file.json"
        atomic_write(target, "{}")
        assert target.read_text() == "{}"
        atomic_write(target, b"\x00\x01")
        assert target.read_bytes() == b"\x00\x01"
        assert [p.name for p in target.parent.iterdir()] == ["file.json"]

    def test_safe_rmtree(self, tmp_path):
        victim = tmp_path / "victim"
        (victim / "a").mkdir(parents=True)
        safe_rmtree(victim, require_prefix=tmp_path)
        assert not victim.exists()

    def test_safe_rmtree_missing_is_ignored(self, tmp_path):
        safe_rmtree(tmp_path / "missing")

    def test_safe_rmtree_outside_prefix(self, tmp_path):
        """Test deletion outside the required prefix is refused."""
        outside = tmp_path / "outside"
        outside.mkdir()
        with pytest.raises(ValueError, match="Refusing to delete"):
            safe_rmtree(outside, require_prefix=tmp_path / "root")
        assert outside.exists()

    def test_safe_rmtree_file(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("")
        with pytest.raises(FilesystemError):
            safe_rmtree(path)

    def test_filesystem_error_is_npmkit_error(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("")
        with pytest.raises(NpmKitError):
            safe_rmtree(path)

    def test_temporary_directory_removed(self, tmp_path):
        with temporary_directory(tmp_path, prefix="scratch-") as scratch:
            (scratch / "f").write_text("x")
            assert scratch.name.startswith("scratch-")
        assert not scratch.exists()

    def test_temporary_directory_removed_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with temporary_directory(tmp_path) as scratch:
                raise RuntimeError("boom")
        assert not scratch.exists()
