"""
Provisioning of Node.js and npm.

Portable version management and the ordered installation strategies
(system package managers, official installers, portable downloads).
"""

from .nodejs import NodeDistribution, normalize_version
from .registry import PortableInstallRecord, VersionRegistry
from .portable import PortableVersionManager
from .strategy import InstallMethod, InstallStrategy, StrategyStep, build_strategies
from .selector import (
    AttemptRecord,
    InstallationSelector,
    ProvisionResult,
    SelectorState,
    StepRecord,
)

__all__ = [
    "NodeDistribution",
    "normalize_version",
    "PortableInstallRecord",
    "VersionRegistry",
    "PortableVersionManager",
    "InstallMethod",
    "InstallStrategy",
    "StrategyStep",
    "build_strategies",
    "AttemptRecord",
    "InstallationSelector",
    "ProvisionResult",
    "SelectorState",
    "StepRecord",
]
