"""
npm command line integration.

Thin wrappers around the npm CLI, detection of an existing installation,
and package.json handling.
"""

from .client import NpmClient
from .detector import NpmDetector, NpmInstallation
from .manifest import DependencyType, PackageManifest
from .dependencies import DependencyManager, OutdatedDependency

__all__ = [
    "NpmClient",
    "NpmDetector",
    "NpmInstallation",
    "DependencyType",
    "PackageManifest",
    "DependencyManager",
    "OutdatedDependency",
]
