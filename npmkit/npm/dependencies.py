"""
Dependency bookkeeping for one npm project.

Changes go through npm itself (which resolves and updates package.json
and the lock file); reads come from package.json.

check_outdated() strips a leading '^' or '~' from each manifest spec and
compares the remaining version with the registry's latest release. It
does no range evaluation: '^1.2.0' is reported outdated against 1.3.0
even though the range allows it, and specs that are not a plain version
after stripping (ranges, tags, URLs) are skipped.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from packaging.version import InvalidVersion, Version

from npmkit.core.exceptions import NpmCommandError
from npmkit.npm.client import NpmClient
from npmkit.npm.manifest import DependencyType, PackageManifest

logger = logging.getLogger(__name__)

_SAVE_FLAGS = {
    DependencyType.PROD: (),
    DependencyType.DEV: ("--save-dev",),
    DependencyType.PEER: ("--save-peer",),
    DependencyType.OPTIONAL: ("--save-optional",),
}


@dataclass(frozen=True)
class OutdatedDependency:
    name: str
    wanted: str
    current: str
    latest: str
    dep_type: DependencyType


class DependencyManager:
    """
    Adds, removes and inspects the dependencies of a project.

    Args:
        client: npm client used for changes and registry lookups
        project_dir: Directory containing package.json
    """

    def __init__(self, client: NpmClient, project_dir: Union[str, Path]):
        self.client = client
        self.project_dir = Path(project_dir)

    def manifest(self) -> PackageManifest:
        return PackageManifest.load(self.project_dir)

    def add(
        self,
        name: str,
        version: Optional[str] = None,
        dep_type: DependencyType = DependencyType.PROD,
    ) -> str:
        """
        Install a package and save it to the manifest.

        Returns:
            The spec npm wrote into package.json
        """
        package = f"{name}@{version}" if version else name
        self.client.install(
            [package], working_dir=self.project_dir, extra_args=_SAVE_FLAGS[dep_type]
        )
        return self.manifest().dependencies(dep_type).get(name, version or "")

    def remove(self, name: str) -> None:
        self.client.uninstall([name], working_dir=self.project_dir)

    def update(self, names: Sequence[str] = ()) -> None:
        self.client.update(names, working_dir=self.project_dir)

    def install_all(self) -> None:
        self.client.install(working_dir=self.project_dir)

    def list(self, dep_type: Optional[DependencyType] = None) -> Dict[str, str]:
        manifest = self.manifest()
        if dep_type is None:
            return manifest.all_dependencies()
        return manifest.dependencies(dep_type)

    def check_outdated(self) -> List[OutdatedDependency]:
        """Manifest dependencies whose latest release is newer than their spec."""
        manifest = self.manifest()
        outdated = []

        for dep_type in DependencyType:
            for name, spec in manifest.dependencies(dep_type).items():
                current = spec.lstrip("^~")
                try:
                    current_version = Version(current)
                except InvalidVersion:
                    logger.debug(f"Skipping {name}: '{spec}' is not a plain version")
                    continue

                try:
                    latest = self.client.view(name, "version")
                except NpmCommandError as e:
                    logger.warning(f"Could not look up {name}: {e}")
                    continue
                if isinstance(latest, list):
                    latest = latest[-1] if latest else None
                if not latest:
                    continue

                try:
                    newer = Version(str(latest)) > current_version
                except InvalidVersion:
                    continue
                if newer:
                    outdated.append(
                        OutdatedDependency(name, spec, current, str(latest), dep_type)
                    )
        return outdated
