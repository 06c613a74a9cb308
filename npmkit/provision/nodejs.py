"""
Node.js distribution metadata.

Knows how nodejs.org (or a mirror with the same layout) names its
archives and installers, reads the published SHASUMS256.txt, and looks up
the latest release from index.json.
"""

import json
import logging
import re
from typing import Dict, Optional

from npmkit.core.download import fetch_text
from npmkit.core.exceptions import DownloadError, UnsupportedPlatformError
from npmkit.core.platform import PlatformInfo

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://nodejs.org/dist"

_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

_LINUX_ARCHES = {
    "x64": "x64",
    "arm64": "arm64",
    "arm": "armv7l",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}
_MACOS_ARCHES = {"x64": "x64", "arm64": "arm64"}
_WINDOWS_ARCHES = {"x64": "x64", "x86": "x86", "arm64": "arm64"}


def normalize_version(version: str) -> str:
    """
    Strip whitespace and a leading 'v'.

    Raises:
        ValueError: If the result is not MAJOR.MINOR.PATCH

    Example:
        >>> normalize_version("v20.11.0")
        '20.11.0'
    """
    value = (version or "").strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    if not _VERSION_PATTERN.match(value):
        raise ValueError(f"Invalid Node.js version: {version!r} (expected X.Y.Z)")
    return value


def parse_shasums(content: str) -> Dict[str, str]:
    """Parse SHASUMS256.txt lines of the form '<sha256>  <filename>'."""
    checksums = {}
    for line in content.splitlines():
        parts = line.split()
        if len(parts) == 2 and len(parts[0]) == 64:
            checksums[parts[1].lstrip("*")] = parts[0].lower()
    return checksums


class NodeDistribution:
    """
    Resolves download locations for Node.js releases.

    Args:
        base_url: Distribution root (nodejs.org/dist or a mirror)
        timeout: HTTP timeout for metadata requests
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def release_url(self, version: str) -> str:
        return f"{self.base_url}/v{version}"

    def archive_name(self, version: str, platform: PlatformInfo) -> str:
        """
        File name of the portable archive for a platform.

        Raises:
            UnsupportedPlatformError: If nodejs.org publishes no such archive
        """
        if platform.is_windows:
            arch = self._arch(_WINDOWS_ARCHES, platform)
            return f"node-v{version}-win-{arch}.zip"
        if platform.is_macos:
            arch = self._arch(_MACOS_ARCHES, platform)
            return f"node-v{version}-darwin-{arch}.tar.gz"
        if platform.is_linux:
            arch = self._arch(_LINUX_ARCHES, platform)
            return f"node-v{version}-linux-{arch}.tar.xz"
        raise UnsupportedPlatformError(
            platform.platform_string(), "no portable Node.js build for this OS"
        )

    def archive_url(self, version: str, platform: PlatformInfo) -> str:
        return f"{self.release_url(version)}/{self.archive_name(version, platform)}"

    def installer_name(self, version: str, platform: PlatformInfo) -> str:
        """
        File name of the official installer (.msi on Windows, .pkg on macOS).

        Raises:
            UnsupportedPlatformError: On platforms without an official installer
        """
        if platform.is_windows:
            arch = self._arch(_WINDOWS_ARCHES, platform)
            return f"node-v{version}-{arch}.msi"
        if platform.is_macos:
            return f"node-v{version}.pkg"
        raise UnsupportedPlatformError(
            platform.platform_string(), "no official Node.js installer for this OS"
        )

    def installer_url(self, version: str, platform: PlatformInfo) -> str:
        return f"{self.release_url(version)}/{self.installer_name(version, platform)}"

    def fetch_checksums(self, version: str) -> Dict[str, str]:
        """
        Download and parse SHASUMS256.txt of a release.

        Raises:
            DownloadError: If the file cannot be fetched
        """
        url = f"{self.release_url(version)}/SHASUMS256.txt"
        return parse_shasums(fetch_text(url, timeout=self.timeout))

    def checksum_for(self, version: str, filename: str) -> Optional[str]:
        """
        Published SHA-256 of a release file, or None when unavailable.

        Unavailability is logged; the caller decides whether to continue.
        """
        try:
            checksums = self.fetch_checksums(version)
        except DownloadError as e:
            logger.warning(f"Checksums for Node.js {version} unavailable: {e}")
            return None

        checksum = checksums.get(filename)
        if checksum is None:
            logger.warning(f"No published checksum for {filename}")
        return checksum

    def resolve_latest(self, lts_only: bool = True) -> str:
        """
        Newest release listed in index.json.

        Args:
            lts_only: Only consider long-term-support releases

        Raises:
            DownloadError: If the index cannot be fetched or parsed
        """
        url = f"{self.base_url}/index.json"
        text = fetch_text(url, timeout=self.timeout)
        try:
            releases = json.loads(text)
        except json.JSONDecodeError as e:
            raise DownloadError(url, f"invalid JSON: {e}") from e

        for release in releases:
            if lts_only and not release.get("lts"):
                continue
            try:
                return normalize_version(release.get("version", ""))
            except ValueError:
                continue
        raise DownloadError(url, "no matching release found")

    @staticmethod
    def _arch(table: Dict[str, str], platform: PlatformInfo) -> str:
        try:
            return table[platform.arch]
        except KeyError:
            raise UnsupportedPlatformError(
                platform.platform_string(),
                f"no Node.js build for architecture '{platform.arch}'",
            ) from None
