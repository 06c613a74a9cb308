"""
Installation strategies for Node.js/npm.

A strategy is plain data: which mechanism it uses and the commands to run.
The ordered list for a platform is built by build_strategies() and driven
by InstallationSelector.

Default order:
    1. System package managers available for the platform
    2. Official installer (.msi on Windows, .pkg on macOS)
    3. Portable download (when a portable manager is configured)
    4. Manual instructions
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Optional, Sequence, Tuple

from npmkit.core.exceptions import UnsupportedPlatformError
from npmkit.core.platform import PlatformInfo, map_distribution
from npmkit.provision.nodejs import NodeDistribution

logger = logging.getLogger(__name__)

ARTIFACT_PLACEHOLDER = "{artifact}"
NODEJS_DOWNLOAD_PAGE = "https://nodejs.org/en/download"

# msiexec reports 3010 when the install worked but wants a reboot
MSI_SUCCESS_CODES = frozenset({0, 3010})


class InstallMethod(str, Enum):
    PACKAGE_MANAGER = "package_manager"
    OFFICIAL_INSTALLER = "official_installer"
    PORTABLE = "portable"
    MANUAL = "manual"


@dataclass(frozen=True)
class StrategyStep:
    """
    One command of a strategy.

    Attributes:
        description: Human readable purpose ("check", "install", ...)
        command: Executable
        args: Arguments; ARTIFACT_PLACEHOLDER is replaced by the downloaded file
        accept_exit_codes: Exit codes that count as success
        timeout: Seconds, or None for the selector's step timeout
    """

    description: str
    command: str
    args: Sequence[str] = ()
    accept_exit_codes: FrozenSet[int] = frozenset({0})
    timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "accept_exit_codes", frozenset(self.accept_exit_codes))

    def render_args(self, artifact: Optional[Path] = None) -> Tuple[str, ...]:
        if artifact is None:
            return tuple(self.args)
        return tuple(a.replace(ARTIFACT_PLACEHOLDER, str(artifact)) for a in self.args)

    @property
    def needs_artifact(self) -> bool:
        return any(ARTIFACT_PLACEHOLDER in a for a in self.args)


@dataclass(frozen=True)
class InstallerArtifact:
    """A file downloaded before an installer strategy's steps run."""

    url: str
    filename: str
    version: Optional[str] = None


@dataclass(frozen=True)
class InstallStrategy:
    """
    One way of provisioning Node.js/npm.

    Attributes:
        method: Mechanism kind
        name: Short identifier ("apt-get", "brew", "msi", "portable", ...)
        steps: Commands run in order; the first failing step fails the attempt
        artifact: Installer to download first (official installer only)
        version: Node.js version requested, if the mechanism can pin one
        instructions: Text shown for the manual strategy
    """

    method: InstallMethod
    name: str
    steps: Tuple[StrategyStep, ...] = field(default_factory=tuple)
    artifact: Optional[InstallerArtifact] = None
    version: Optional[str] = None
    instructions: str = ""

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))

    def __str__(self) -> str:
        return f"{self.method.value}:{self.name}"


# ============================================================================
# Package manager templates
# ============================================================================


@dataclass(frozen=True)
class _ManagerTemplate:
    name: str
    check: Tuple[str, ...]
    commands: Tuple[Tuple[str, ...], ...]
    needs_root: bool = True
    version_flag: Optional[str] = None


_MANAGERS = {
    "choco": _ManagerTemplate(
        "choco",
        ("choco", "--version"),
        (("choco", "install", "nodejs", "-y"),),
        needs_root=False,
        version_flag="--version",
    ),
    "winget": _ManagerTemplate(
        "winget",
        ("winget", "--version"),
        (
            (
                "winget", "install", "--id", "OpenJS.NodeJS", "-e", "--silent",
                "--accept-package-agreements", "--accept-source-agreements",
            ),
        ),
        needs_root=False,
        version_flag="--version",
    ),
    "brew": _ManagerTemplate(
        "brew", ("brew", "--version"), (("brew", "install", "node"),), needs_root=False
    ),
    "port": _ManagerTemplate(
        "port", ("port", "version"), (("port", "install", "nodejs22", "npm10"),)
    ),
    "apt-get": _ManagerTemplate(
        "apt-get",
        ("apt-get", "--version"),
        (("apt-get", "update"), ("apt-get", "install", "-y", "nodejs", "npm")),
    ),
    "dnf": _ManagerTemplate(
        "dnf", ("dnf", "--version"), (("dnf", "install", "-y", "nodejs", "npm"),)
    ),
    "yum": _ManagerTemplate(
        "yum", ("yum", "--version"), (("yum", "install", "-y", "nodejs", "npm"),)
    ),
    "pacman": _ManagerTemplate(
        "pacman",
        ("pacman", "--version"),
        (("pacman", "-S", "--noconfirm", "nodejs", "npm"),),
    ),
    "apk": _ManagerTemplate(
        "apk", ("apk", "--version"), (("apk", "add", "nodejs", "npm"),)
    ),
    "zypper": _ManagerTemplate(
        "zypper",
        ("zypper", "--version"),
        (("zypper", "install", "-y", "nodejs", "npm"),),
    ),
}

_LINUX_FAMILY_MANAGERS = {
    "ubuntu": ("apt-get",),
    "debian": ("apt-get",),
    "rhel": ("dnf", "yum"),
    "centos": ("dnf", "yum"),
    "fedora": ("dnf", "yum"),
    "arch": ("pacman",),
    "alpine": ("apk",),
    "suse": ("zypper",),
}


def _is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def _verify_step(platform: PlatformInfo) -> StrategyStep:
    """Final step checking that npm runs after an install."""
    if platform.is_windows:
        # A fresh install is not yet on this process's PATH
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        npm_cmd = Path(program_files) / "nodejs" / "npm.cmd"
        return StrategyStep("verify npm", str(npm_cmd), ("--version",))
    return StrategyStep("verify npm", "npm", ("--version",))


def package_managers_for(platform: PlatformInfo) -> Tuple[str, ...]:
    """Names of the package managers worth trying on a platform."""
    if platform.is_windows:
        return ("choco", "winget")
    if platform.is_macos:
        return ("brew", "port")
    if platform.is_linux:
        families = [platform.distribution] + [
            map_distribution(like) for like in platform.distribution_like
        ]
        for family in families:
            if family in _LINUX_FAMILY_MANAGERS:
                return _LINUX_FAMILY_MANAGERS[family]
    return ()


def package_manager_strategy(
    name: str,
    platform: PlatformInfo,
    version: Optional[str] = None,
    use_sudo: Optional[bool] = None,
) -> InstallStrategy:
    """Strategy for one package manager: check, install command(s), verify."""
    template = _MANAGERS[name]
    if use_sudo is None:
        use_sudo = template.needs_root and not platform.is_windows and not _is_root()

    steps = [StrategyStep("check", template.check[0], template.check[1:])]
    for argv in template.commands:
        if version and template.version_flag and "install" in argv:
            argv = argv + (template.version_flag, version)
        if use_sudo:
            argv = ("sudo",) + argv
        steps.append(StrategyStep(" ".join(argv[:3]), argv[0], argv[1:]))
    steps.append(_verify_step(platform))

    return InstallStrategy(
        method=InstallMethod.PACKAGE_MANAGER,
        name=name,
        steps=tuple(steps),
        version=version if template.version_flag else None,
    )


def official_installer_strategy(
    platform: PlatformInfo,
    version: str,
    distribution: NodeDistribution,
    use_sudo: Optional[bool] = None,
) -> Optional[InstallStrategy]:
    """Official .msi/.pkg installer, or None where nodejs.org offers none."""
    try:
        filename = distribution.installer_name(version, platform)
    except UnsupportedPlatformError:
        return None

    artifact = InstallerArtifact(
        url=f"{distribution.release_url(version)}/{filename}",
        filename=filename,
        version=version,
    )

    if platform.is_windows:
        install = StrategyStep(
            "msiexec install",
            "msiexec",
            ("/i", ARTIFACT_PLACEHOLDER, "/quiet", "/norestart"),
            accept_exit_codes=MSI_SUCCESS_CODES,
        )
        name = "msi"
    else:
        if use_sudo is None:
            use_sudo = not _is_root()
        argv = ("installer", "-pkg", ARTIFACT_PLACEHOLDER, "-target", "/")
        if use_sudo:
            argv = ("sudo",) + argv
        install = StrategyStep("pkg install", argv[0], argv[1:])
        name = "pkg"

    return InstallStrategy(
        method=InstallMethod.OFFICIAL_INSTALLER,
        name=name,
        steps=(install, _verify_step(platform)),
        artifact=artifact,
        version=version,
    )


def portable_strategy(version: Optional[str] = None) -> InstallStrategy:
    return InstallStrategy(
        method=InstallMethod.PORTABLE, name="portable", version=version
    )


def manual_strategy(
    platform: PlatformInfo, version: Optional[str] = None
) -> InstallStrategy:
    release = f"Node.js {version}" if version else "the Node.js LTS release"
    lines = [f"Install {release} manually from {NODEJS_DOWNLOAD_PAGE}"]
    managers = package_managers_for(platform)
    if managers:
        lines.append(f"or with one of: {', '.join(managers)}")
    lines.append("then make sure 'npm' is on PATH.")
    return InstallStrategy(
        method=InstallMethod.MANUAL,
        name="manual",
        version=version,
        instructions=" ".join(lines),
    )


def build_strategies(
    platform: PlatformInfo,
    version: Optional[str] = None,
    distribution: Optional[NodeDistribution] = None,
    include_portable: bool = False,
    use_sudo: Optional[bool] = None,
) -> List[InstallStrategy]:
    """
    Ordered strategy list for a platform.

    The official installer needs a concrete version and is left out when
    none is given.

    Example:
        >>> info = PlatformInfo("linux", "x64", "ubuntu", "22.04")
        >>> [str(s) for s in build_strategies(info)]
        ['package_manager:apt-get', 'manual:manual']
    """
    distribution = distribution or NodeDistribution()
    strategies = [
        package_manager_strategy(name, platform, version, use_sudo)
        for name in package_managers_for(platform)
    ]

    if version:
        installer = official_installer_strategy(
            platform, version, distribution, use_sudo
        )
        if installer is not None:
            strategies.append(installer)

    if include_portable:
        strategies.append(portable_strategy(version))

    strategies.append(manual_strategy(platform, version))
    logger.debug(f"Strategies for {platform}: {', '.join(str(s) for s in strategies)}")
    return strategies
