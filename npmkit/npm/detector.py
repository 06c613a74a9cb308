"""
Detection of an existing npm installation.

Looks for npm on PATH first, then in the usual install locations of the
official installers and package managers, and asks it for its version.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from npmkit.core.exceptions import NpmNotFoundError, SpawnError
from npmkit.core.executor import ExecutionRequest, ProcessExecutor

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"v?(\d+\.\d+\.\d+)")


def _common_locations() -> List[Path]:
    if os.name == "nt":
        locations = []
        for var, suffix in (
            ("ProgramFiles", "nodejs"),
            ("ProgramFiles(x86)", "nodejs"),
            ("APPDATA", "npm"),
        ):
            base = os.environ.get(var)
            if base:
                locations.append(Path(base) / suffix / "npm.cmd")
        return locations

    return [
        Path("/usr/local/bin/npm"),
        Path("/usr/bin/npm"),
        Path("/opt/homebrew/bin/npm"),
        Path("/opt/local/bin/npm"),
        Path.home() / ".npm-global" / "bin" / "npm",
    ]


def parse_version(output: str) -> Optional[str]:
    """
    Extract X.Y.Z from version output.

    Example:
        >>> parse_version("v20.11.0\\n")
        '20.11.0'
    """
    match = _VERSION_RE.search(output or "")
    return match.group(1) if match else None


@dataclass(frozen=True)
class NpmInstallation:
    npm_path: Path
    npm_version: str
    node_path: Optional[Path] = None
    node_version: Optional[str] = None


class NpmDetector:
    """
    Finds a usable npm.

    Args:
        executor: Executor used to query versions
        extra_locations: Additional npm paths to check after PATH
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        extra_locations: Iterable[Path] = (),
    ):
        self.executor = executor or ProcessExecutor()
        self.extra_locations = [Path(p) for p in extra_locations]

    def find_npm(self) -> Optional[Path]:
        """Path of the first npm found, or None."""
        on_path = self.executor.get_command_path("npm")
        if on_path:
            return Path(on_path)

        for candidate in self.extra_locations + _common_locations():
            if candidate.is_file():
                return candidate
        return None

    def detect(self) -> NpmInstallation:
        """
        Locate npm and node and read their versions.

        Raises:
            NpmNotFoundError: If no working npm is found
        """
        npm_path = self.find_npm()
        if npm_path is None:
            raise NpmNotFoundError("npm was not found on PATH or in common locations")

        npm_version = self._query_version(npm_path)
        if npm_version is None:
            raise NpmNotFoundError(f"npm at {npm_path} did not report a version")

        node_path = self.executor.get_command_path("node")
        if node_path is None:
            sibling = npm_path.parent / ("node.exe" if os.name == "nt" else "node")
            node_path = str(sibling) if sibling.is_file() else None
        node_version = self._query_version(Path(node_path)) if node_path else None

        installation = NpmInstallation(
            npm_path=npm_path,
            npm_version=npm_version,
            node_path=Path(node_path) if node_path else None,
            node_version=node_version,
        )
        logger.debug(f"Found npm {npm_version} at {npm_path}")
        return installation

    def is_available(self) -> bool:
        try:
            self.detect()
            return True
        except NpmNotFoundError:
            return False

    def _query_version(self, executable: Path) -> Optional[str]:
        try:
            result = self.executor.run(
                ExecutionRequest(str(executable), ["--version"], timeout=30)
            )
        except SpawnError as e:
            logger.debug(f"Cannot run {executable}: {e}")
            return None
        if not result.success:
            return None
        return parse_version(result.stdout)
