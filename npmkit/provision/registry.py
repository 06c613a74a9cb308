"""
Persistent registry of portable Node.js installations.

The registry is a JSON file under the portable root:

    {
      "version": 1,
      "default": "20.11.0",
      "installs": {
        "20.11.0": {
          "version": "20.11.0",
          "install_path": ".../versions/node-v20.11.0",
          "installed_at": "2024-02-01T10:00:00",
          "node_path": ".../bin/node",
          "npm_path": ".../bin/npm"
        }
      }
    }

Every modification is a read-modify-write cycle under a file lock, so
concurrent installers in other threads or processes never lose each
other's entries. Fields this module does not know about, at any level,
are kept on rewrite.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from packaging.version import InvalidVersion, Version

from npmkit.core.directory import LOCK_DIR, REGISTRY_FILE
from npmkit.core.exceptions import RegistryError
from npmkit.core.filesystem import atomic_write
from npmkit.core.locking import DEFAULT_REGISTRY_TIMEOUT, LockManager

logger = logging.getLogger(__name__)

REGISTRY_FORMAT_VERSION = 1


@dataclass(frozen=True)
class PortableInstallRecord:
    """
    One installed portable version.

    Attributes:
        version: Node.js version without the leading 'v'
        install_path: Root of the extracted distribution
        installed_at: ISO-8601 timestamp
        node_path: Node.js executable
        npm_path: npm executable
        source_url: Archive URL the install came from
        sha256: Verified archive digest, if one was published
        extra: Unknown fields read from the registry, written back unchanged
    """

    version: str
    install_path: Path
    installed_at: str
    node_path: Path
    npm_path: Path
    source_url: Optional[str] = None
    sha256: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "version": self.version,
                "install_path": str(self.install_path),
                "installed_at": self.installed_at,
                "node_path": str(self.node_path),
                "npm_path": str(self.npm_path),
            }
        )
        if self.source_url is not None:
            data["source_url"] = self.source_url
        if self.sha256 is not None:
            data["sha256"] = self.sha256
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortableInstallRecord":
        known = {f.name for f in fields(cls)} - {"extra"}
        try:
            return cls(
                version=data["version"],
                install_path=Path(data["install_path"]),
                installed_at=data["installed_at"],
                node_path=Path(data["node_path"]),
                npm_path=Path(data["npm_path"]),
                source_url=data.get("source_url"),
                sha256=data.get("sha256"),
                extra={k: v for k, v in data.items() if k not in known},
            )
        except (KeyError, TypeError) as e:
            raise RegistryError(f"Malformed registry entry: {data!r}") from e


def _version_key(version: str):
    try:
        return (1, Version(version), version)
    except InvalidVersion:
        return (0, Version("0"), version)


class VersionRegistry:
    """
    Reads and writes registry.json of one portable root.

    Example:
        >>> registry = VersionRegistry(Path("~/.npmkit/portable").expanduser())
        >>> registry.add(record)
        >>> registry.get("20.11.0").npm_path
        PosixPath('.../node-v20.11.0/bin/npm')
    """

    def __init__(self, root_dir: Path, lock_timeout: float = DEFAULT_REGISTRY_TIMEOUT):
        self.root_dir = Path(root_dir)
        self.registry_path = self.root_dir / REGISTRY_FILE
        self.lock_timeout = lock_timeout
        self.locks = LockManager(self.root_dir / LOCK_DIR)

    def _empty(self) -> dict:
        return {"version": REGISTRY_FORMAT_VERSION, "default": None, "installs": {}}

    def _load(self) -> dict:
        if not self.registry_path.exists():
            return self._empty()

        try:
            with open(self.registry_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise RegistryError(
                f"Failed to load registry {self.registry_path}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise RegistryError(f"Invalid registry format in {self.registry_path}")
        installs = data.setdefault("installs", {})
        if not isinstance(installs, dict):
            raise RegistryError(
                f"Invalid 'installs' section in {self.registry_path}"
            )
        data.setdefault("version", REGISTRY_FORMAT_VERSION)
        return data

    def _save(self, data: dict) -> None:
        try:
            atomic_write(
                self.registry_path, json.dumps(data, indent=2, ensure_ascii=False)
            )
        except OSError as e:
            raise RegistryError(f"Failed to save registry: {e}") from e
        logger.debug(f"Saved registry with {len(data['installs'])} version(s)")

    @contextmanager
    def _transaction(self):
        """Yield the registry data under the lock and save it afterwards."""
        with self.locks.registry_lock(timeout=self.lock_timeout):
            data = self._load()
            yield data
            self._save(data)

    def get(self, version: str) -> Optional[PortableInstallRecord]:
        entry = self._load()["installs"].get(version)
        return PortableInstallRecord.from_dict(entry) if entry else None

    def contains(self, version: str) -> bool:
        return version in self._load()["installs"]

    def list_records(self) -> List[PortableInstallRecord]:
        """All records, oldest version first."""
        installs = self._load()["installs"]
        return [
            PortableInstallRecord.from_dict(installs[v])
            for v in sorted(installs, key=_version_key)
        ]

    def add(self, record: PortableInstallRecord) -> None:
        """
        Store a record, replacing any previous entry for its version.

        Unknown fields of a previous entry are carried over; the default
        version is left unchanged.
        """
        known = {f.name for f in fields(PortableInstallRecord)}
        with self._transaction() as data:
            previous = data["installs"].get(record.version) or {}
            entry = {k: v for k, v in previous.items() if k not in known}
            entry.update(record.to_dict())
            data["installs"][record.version] = entry
        logger.debug(f"Registered Node.js {record.version}")

    def remove(self, version: str) -> Optional[PortableInstallRecord]:
        """Remove a version; also clears it as the default."""
        with self._transaction() as data:
            entry = data["installs"].pop(version, None)
            if data.get("default") == version:
                data["default"] = None
        return PortableInstallRecord.from_dict(entry) if entry else None

    def get_default(self) -> Optional[str]:
        return self._load().get("default")

    def set_default(self, version: Optional[str]) -> None:
        with self._transaction() as data:
            if version is not None and version not in data["installs"]:
                raise RegistryError(f"Cannot make {version} the default: not installed")
            data["default"] = version
