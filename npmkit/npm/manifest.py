"""
package.json reading and writing.

The manifest is kept as the parsed JSON object so that fields npmkit does
not model, and the original key order, survive a load/save cycle.
"""

import json
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from npmkit.core.exceptions import ManifestError
from npmkit.core.filesystem import atomic_write

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "package.json"

_NAME_RE = re.compile(r"^(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")
_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")


class DependencyType(str, Enum):
    PROD = "dependencies"
    DEV = "devDependencies"
    PEER = "peerDependencies"
    OPTIONAL = "optionalDependencies"


class PackageManifest:
    """
    A package.json file.

    Example:
        >>> manifest = PackageManifest.load("my-app")
        >>> manifest.add_dependency("lodash", "^4.17.21")
        >>> manifest.save()
    """

    def __init__(self, path: Union[str, Path], data: Optional[Dict[str, Any]] = None):
        path = Path(path)
        self.path = path / MANIFEST_FILENAME if path.is_dir() else path
        self.data: Dict[str, Any] = data if data is not None else {}

    @classmethod
    def load(cls, path: Union[str, Path]) -> "PackageManifest":
        """
        Load a manifest from a project directory or a file path.

        Raises:
            ManifestError: If the file is missing or not a JSON object
        """
        manifest = cls(path)
        try:
            with open(manifest.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ManifestError(f"No package.json at {manifest.path}") from e
        except (json.JSONDecodeError, OSError) as e:
            raise ManifestError(f"Cannot read {manifest.path}: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError(f"{manifest.path} does not contain a JSON object")
        manifest.data = data
        return manifest

    @classmethod
    def create(
        cls,
        path: Union[str, Path],
        name: str,
        version: str = "1.0.0",
        description: str = "",
    ) -> "PackageManifest":
        """New in-memory manifest with npm init's basic fields (not saved)."""
        return cls(
            path,
            {
                "name": name,
                "version": version,
                "description": description,
                "main": "index.js",
                "scripts": {"test": 'echo "Error: no test specified" && exit 1'},
                "license": "ISC",
            },
        )

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        target = Path(path) if path else self.path
        try:
            text = json.dumps(self.data, indent=2, ensure_ascii=False) + "\n"
            atomic_write(target, text)
        except OSError as e:
            raise ManifestError(f"Cannot write {target}: {e}") from e
        self.path = target
        return target

    def to_dict(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.data))

    # ------------------------------------------------------------------
    # Basic fields
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.data.get("name", "")

    @name.setter
    def name(self, value: str) -> None:
        self.data["name"] = value

    @property
    def version(self) -> str:
        return self.data.get("version", "")

    @version.setter
    def version(self, value: str) -> None:
        self.data["version"] = value

    @property
    def description(self) -> str:
        return self.data.get("description", "")

    @description.setter
    def description(self, value: str) -> None:
        self.data["description"] = value

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def dependencies(
        self, dep_type: DependencyType = DependencyType.PROD
    ) -> Dict[str, str]:
        return dict(self.data.get(dep_type.value) or {})

    def all_dependencies(self) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        for dep_type in DependencyType:
            merged.update(self.dependencies(dep_type))
        return merged

    def dependency_type(self, name: str) -> Optional[DependencyType]:
        for dep_type in DependencyType:
            if name in (self.data.get(dep_type.value) or {}):
                return dep_type
        return None

    def add_dependency(
        self,
        name: str,
        spec: str,
        dep_type: DependencyType = DependencyType.PROD,
    ) -> None:
        """Add or update a dependency, moving it out of any other section."""
        for other in DependencyType:
            if other != dep_type:
                self._drop(other, name)
        self.data.setdefault(dep_type.value, {})[name] = spec

    def remove_dependency(
        self, name: str, dep_type: Optional[DependencyType] = None
    ) -> bool:
        """Remove a dependency; returns whether anything was removed."""
        types = [dep_type] if dep_type else list(DependencyType)
        removed = False
        for t in types:
            removed = self._drop(t, name) or removed
        return removed

    def _drop(self, dep_type: DependencyType, name: str) -> bool:
        section = self.data.get(dep_type.value)
        if not section or name not in section:
            return False
        del section[name]
        if not section:
            del self.data[dep_type.value]
        return True

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    @property
    def scripts(self) -> Dict[str, str]:
        return dict(self.data.get("scripts") or {})

    def set_script(self, name: str, command: str) -> None:
        self.data.setdefault("scripts", {})[name] = command

    def remove_script(self, name: str) -> bool:
        scripts = self.data.get("scripts") or {}
        if name not in scripts:
            return False
        del scripts[name]
        return True

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> List[str]:
        """
        Check the fields npm requires for publishing.

        Returns:
            List of problems, empty when the manifest is valid
        """
        problems = []
        name = self.name
        if not name:
            problems.append("name is required")
        elif len(name) > 214:
            problems.append("name must be at most 214 characters")
        elif not _NAME_RE.match(name):
            problems.append(
                f"name '{name}' must be lowercase and URL-safe, "
                "and must not start with '.' or '_'"
            )

        if not self.version:
            problems.append("version is required")
        elif not _VERSION_RE.match(self.version):
            problems.append(f"version '{self.version}' is not a valid semver version")

        for dep_type in DependencyType:
            section = self.data.get(dep_type.value)
            if section is not None and not isinstance(section, dict):
                problems.append(f"{dep_type.value} must be an object")
        return problems
