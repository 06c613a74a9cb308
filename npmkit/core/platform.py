"""
Platform detection for npmkit.

Identifies the host operating system, CPU architecture and, on Linux, the
distribution family. The result decides which Node.js archive to download
and which system package manager to try.

Detection is not cached: every call to detect_platform() reads the
environment again.

Usage:
    from npmkit.core.platform import detect_platform

    info = detect_platform()
    print(info)                      # linux/x64 (ubuntu 22.04)
    print(info.platform_string())    # linux-x64
"""

import logging
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from npmkit.core.exceptions import DetectionError

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

KNOWN_DISTRIBUTIONS = (
    "ubuntu",
    "debian",
    "centos",
    "rhel",
    "fedora",
    "suse",
    "arch",
    "alpine",
)

_DISTRIBUTION_ALIASES = {
    "ubuntu": "ubuntu",
    "debian": "debian",
    "centos": "centos",
    "rhel": "rhel",
    "redhat": "rhel",
    "fedora": "fedora",
    "suse": "suse",
    "opensuse": "suse",
    "sles": "suse",
    "arch": "arch",
    "archlinux": "arch",
    "alpine": "alpine",
}

# Distribution fingerprints commonly found in kernel release/version strings
_KERNEL_MARKERS = (
    (re.compile(r"ubuntu"), "ubuntu"),
    (re.compile(r"debian"), "debian"),
    (re.compile(r"\.el\d+"), "rhel"),
    (re.compile(r"\.fc\d+"), "fedora"),
    (re.compile(r"-arch\d*"), "arch"),
)


@dataclass(frozen=True)
class PlatformInfo:
    """
    Snapshot of the host platform.

    Attributes:
        os: 'windows', 'macos', 'linux' or 'other'
        arch: 'x64', 'x86', 'arm64', 'arm', or the raw machine name
        distribution: Linux distribution family, raw ID, or 'unknown' (empty off Linux)
        distribution_version: Distribution version string, may be empty
        distribution_like: Related distribution IDs (os-release ID_LIKE)
        kernel: Kernel release string
    """

    os: str
    arch: str
    distribution: str = ""
    distribution_version: str = ""
    distribution_like: Tuple[str, ...] = field(default_factory=tuple)
    kernel: str = ""

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def is_macos(self) -> bool:
        return self.os == "macos"

    @property
    def is_linux(self) -> bool:
        return self.os == "linux"

    @property
    def is_arm(self) -> bool:
        return self.arch in ("arm", "arm64")

    @property
    def is_x86(self) -> bool:
        return self.arch in ("x86", "x64")

    def platform_string(self) -> str:
        """
        Get canonical platform string.

        Example:
            >>> PlatformInfo("linux", "x64", "ubuntu", "22.04").platform_string()
            'linux-x64'
        """
        return f"{self.os}-{self.arch}"

    def __str__(self) -> str:
        text = f"{self.os}/{self.arch}"
        if self.distribution:
            detail = " ".join(
                p for p in (self.distribution, self.distribution_version) if p
            )
            text += f" ({detail})"
        return text


def map_distribution(raw_id: str) -> str:
    """
    Map a distribution ID onto a known family.

    Matching is case-insensitive, exact first, then by prefix. Unrecognized
    IDs are returned unchanged.

    Example:
        >>> map_distribution("opensuse-leap")
        'suse'
        >>> map_distribution("linuxmint")
        'linuxmint'
    """
    value = (raw_id or "").strip()
    if not value:
        return UNKNOWN

    key = value.lower()
    if key in _DISTRIBUTION_ALIASES:
        return _DISTRIBUTION_ALIASES[key]

    for alias in sorted(_DISTRIBUTION_ALIASES, key=len, reverse=True):
        if key.startswith(alias):
            return _DISTRIBUTION_ALIASES[alias]

    return value


def parse_key_value_file(content: str) -> Dict[str, str]:
    """
    Parse shell-style KEY=value lines (os-release, lsb-release).

    Comments and blank lines are skipped, surrounding quotes removed.
    """
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        values[key.strip()] = value
    return values


class PlatformDetector:
    """
    Detects the host platform.

    Args:
        os_release_path: Primary machine-readable release descriptor
        lsb_release_path: Legacy release descriptor used when the primary is absent
    """

    def __init__(
        self,
        os_release_path: Path = Path("/etc/os-release"),
        lsb_release_path: Path = Path("/etc/lsb-release"),
    ):
        self.os_release_path = Path(os_release_path)
        self.lsb_release_path = Path(lsb_release_path)

    def detect(self) -> PlatformInfo:
        """
        Detect the current platform.

        Returns:
            PlatformInfo

        Raises:
            DetectionError: If the operating system cannot be determined at all
        """
        os_name = self._detect_os()
        arch = self._detect_architecture()
        kernel = platform.release()

        if os_name != "linux":
            info = PlatformInfo(os=os_name, arch=arch, kernel=kernel)
        else:
            distribution, version, like = self._detect_distribution()
            info = PlatformInfo(
                os=os_name,
                arch=arch,
                distribution=distribution,
                distribution_version=version,
                distribution_like=like,
                kernel=kernel,
            )

        logger.debug(f"Detected platform: {info}")
        return info

    def _detect_os(self) -> str:
        system = platform.system().strip().lower()
        if not system:
            raise DetectionError("Unable to determine the host operating system")

        if system == "windows" or system.startswith(("cygwin", "msys", "mingw")):
            return "windows"
        if system == "darwin":
            return "macos"
        if system == "linux":
            return "linux"
        return "other"

    def _detect_architecture(self) -> str:
        machine = platform.machine().strip().lower()

        if machine in ("x86_64", "amd64", "x64"):
            return "x64"
        elif machine in ("aarch64", "arm64", "armv8l"):
            return "arm64"
        elif machine in ("i386", "i686", "x86"):
            return "x86"
        elif machine.startswith("arm"):
            return "arm"
        elif not machine:
            return UNKNOWN
        return machine

    def _detect_distribution(self) -> Tuple[str, str, Tuple[str, ...]]:
        """Return (family, version, like) from the first source that exists."""
        values = self._read_descriptor(self.os_release_path)
        if values is not None and values.get("ID"):
            like = tuple(values.get("ID_LIKE", "").split())
            return map_distribution(values["ID"]), values.get("VERSION_ID", ""), like

        values = self._read_descriptor(self.lsb_release_path)
        if values is not None and values.get("DISTRIB_ID"):
            return (
                map_distribution(values["DISTRIB_ID"]),
                values.get("DISTRIB_RELEASE", ""),
                (),
            )

        return self._distribution_from_kernel(), "", ()

    @staticmethod
    def _read_descriptor(path: Path) -> Optional[Dict[str, str]]:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Cannot read {path}: {e}")
            return None
        return parse_key_value_file(content)

    @staticmethod
    def _distribution_from_kernel() -> str:
        identifiers = f"{platform.release()} {platform.version()}".lower()
        for pattern, family in _KERNEL_MARKERS:
            if pattern.search(identifiers):
                return family
        return UNKNOWN


def detect_platform() -> PlatformInfo:
    """
    Detect the current platform with the default descriptor locations.

    Returns:
        PlatformInfo

    Example:
        >>> info = detect_platform()
        >>> print(f"Running on {info.platform_string()}")
        Running on linux-x64
    """
    return PlatformDetector().detect()
