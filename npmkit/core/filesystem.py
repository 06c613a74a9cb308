"""
File system helpers for npmkit.

- Archive extraction (zip, tar.gz, tar.xz) with traversal protection
- Atomic file writes and guarded directory removal
- Locating executables inside an extracted tree
"""

import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from npmkit.core.exceptions import ArchiveError, FilesystemError

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

SUPPORTED_ARCHIVES = (".zip", ".tar.gz", ".tgz", ".tar.xz")


class InsecureArchiveError(ArchiveError):
    """Raised when an archive member would land outside the destination."""

    pass


def is_relative_to(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


# ============================================================================
# Archive Extraction
# ============================================================================


def _validate_archive_path(member: str, destination: Path) -> None:
    target = (destination / member).resolve()
    if not is_relative_to(target, destination.resolve()):
        raise InsecureArchiveError(
            f"Archive member '{member}' attempts directory traversal; "
            "extraction blocked"
        )


def extract_archive(
    archive_path: Union[str, Path],
    destination: Union[str, Path],
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """
    Extract an archive into a directory.

    The format is chosen from the file name. Every member path is checked
    before anything is written.

    Args:
        archive_path: Archive file (.zip, .tar.gz, .tgz or .tar.xz)
        destination: Directory to extract into (created if missing)
        progress_callback: Optional callback(current, total)

    Raises:
        ArchiveError: If the format is unsupported or extraction fails
        InsecureArchiveError: If a member attempts directory traversal
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.is_file():
        raise ArchiveError(f"Archive not found: {archive_path}")

    destination.mkdir(parents=True, exist_ok=True)
    name = archive_path.name.lower()

    try:
        if name.endswith(".zip"):
            _extract_zip(archive_path, destination, progress_callback)
        elif name.endswith((".tar.gz", ".tgz")):
            _extract_tar(archive_path, destination, "r:gz", progress_callback)
        elif name.endswith(".tar.xz"):
            _extract_tar(archive_path, destination, "r:xz", progress_callback)
        else:
            raise ArchiveError(
                f"Unsupported archive format: {archive_path.name} "
                f"(supported: {', '.join(SUPPORTED_ARCHIVES)})"
            )
    except ArchiveError:
        raise
    except (OSError, EOFError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to extract {archive_path.name}: {e}") from e


def _extract_zip(archive_path, destination, progress_callback) -> None:
    with zipfile.ZipFile(archive_path, "r") as zf:
        members = zf.infolist()
        for member in members:
            _validate_archive_path(member.filename, destination)

        for i, member in enumerate(members):
            extracted = Path(zf.extract(member, destination))
            # Keep unix permission bits recorded by zip tools
            mode = (member.external_attr >> 16) & 0o777
            if mode and not IS_WINDOWS and extracted.is_file():
                extracted.chmod(mode)
            if progress_callback:
                progress_callback(i + 1, len(members))


def _extract_tar(archive_path, destination, mode, progress_callback) -> None:
    with tarfile.open(archive_path, mode) as tar:
        members = tar.getmembers()
        for member in members:
            _validate_archive_path(member.name, destination)

        if hasattr(tarfile, "data_filter"):
            tar.extractall(destination, filter="data")
        else:
            tar.extractall(destination)

        if progress_callback:
            progress_callback(len(members), len(members))


def normalize_root(extract_dir: Path) -> Path:
    """
    Return the directory holding an archive's actual contents.

    Archives usually wrap everything in one top-level directory
    (node-v20.11.0-linux-x64/); in that case the wrapper is returned.
    """
    entries = [p for p in extract_dir.iterdir() if not p.name.startswith(".")]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return extract_dir


# ============================================================================
# Executables
# ============================================================================


def find_file(root: Path, candidates: Iterable[str]) -> Optional[Path]:
    """
    Find the first candidate relative path under root.

    Falls back to a recursive search by file name when none of the
    expected locations exist.
    """
    candidates = list(candidates)
    for relative in candidates:
        path = root / relative
        if path.is_file():
            return path

    names = {Path(c).name for c in candidates}
    for path in sorted(root.rglob("*")):
        if path.name in names and path.is_file():
            return path
    return None


def make_executable(path: Path) -> None:
    """Add execute bits for everyone who can read the file (no-op on Windows)."""
    if IS_WINDOWS:
        return
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write a file through a temporary file and a rename.

    Readers see either the old content or the new content, never a
    partial write.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_name)
    try:
        if isinstance(content, str):
            with open(fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(fd, "wb") as f:
                f.write(content)
        temp_path.replace(file_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Remove a directory tree.

    Args:
        path: Directory to remove; missing directories are ignored
        require_prefix: If given, path must be located under it

    Raises:
        ValueError: If path is outside require_prefix
        FilesystemError: If removal fails
    """
    path = Path(path)
    if require_prefix is not None:
        resolved = path.resolve()
        prefix = Path(require_prefix).resolve()
        if not is_relative_to(resolved, prefix):
            raise ValueError(
                f"Refusing to delete '{resolved}': not under '{prefix}'"
            )

    if not path.exists() and not path.is_symlink():
        return
    if not path.is_dir() or path.is_symlink():
        raise FilesystemError(f"Not a directory: {path}")

    def _clear_readonly(func, failed_path, exc_info):
        # Windows refuses to delete read-only files
        os.chmod(failed_path, stat.S_IWRITE)
        func(failed_path)

    try:
        shutil.rmtree(path, onerror=_clear_readonly if IS_WINDOWS else None)
    except OSError as e:
        raise FilesystemError(f"Failed to remove '{path}': {e}") from e


@contextmanager
def temporary_directory(parent: Union[str, Path], prefix: str = "npmkit-"):
    """
    Create a scratch directory under parent and always remove it.

    Keeping scratch space under the install root keeps renames on one
    file system.
    """
    parent = Path(parent)
    parent.mkdir(parents=True, exist_ok=True)
    temp_dir = Path(tempfile.mkdtemp(dir=parent, prefix=prefix))
    try:
        yield temp_dir
    finally:
        try:
            safe_rmtree(temp_dir)
        except FilesystemError as e:
            logger.warning(f"Could not remove temporary directory: {e}")
