"""YAML configuration parser for npmkit.

Reads npmkit.yaml:

    version: 1
    executor:
      timeout: 30            # seconds, null for no timeout
      working_dir: null
      kill_grace_period: 5
      env:
        NPM_CONFIG_FUND: "false"
    batch:
      max_concurrency: 4
    portable:
      root: ~/.npmkit/portable
      verify_checksums: true
      lock_timeout: 600
    download:
      mirror: https://nodejs.org/dist
      timeout: 30
      max_retries: 3
    provision:
      step_timeout: 900

Every section and key is optional.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from npmkit.core.directory import get_portable_root
from npmkit.core.exceptions import ConfigError
from npmkit.core.executor import (
    DEFAULT_KILL_GRACE_PERIOD,
    DEFAULT_TIMEOUT,
    ExecutorConfig,
)
from npmkit.provision.nodejs import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "npmkit.yaml"
_SECTIONS = ("version", "executor", "batch", "portable", "download", "provision")


@dataclass
class ExecutorSettings:
    timeout: Optional[float] = DEFAULT_TIMEOUT
    working_dir: Optional[Path] = None
    kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD
    env: Dict[str, str] = field(default_factory=dict)

    def to_executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            default_timeout=self.timeout,
            default_working_dir=self.working_dir,
            default_env=self.env,
            kill_grace_period=self.kill_grace_period,
        )


@dataclass
class BatchSettings:
    max_concurrency: int = 4


@dataclass
class PortableSettings:
    root: Path = field(default_factory=get_portable_root)
    verify_checksums: bool = True
    lock_timeout: float = 600


@dataclass
class DownloadSettings:
    mirror: str = DEFAULT_BASE_URL
    timeout: float = 30
    max_retries: int = 3


@dataclass
class ProvisionSettings:
    step_timeout: float = 900


@dataclass
class NpmKitConfig:
    """Complete npmkit configuration."""

    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)
    portable: PortableSettings = field(default_factory=PortableSettings)
    download: DownloadSettings = field(default_factory=DownloadSettings)
    provision: ProvisionSettings = field(default_factory=ProvisionSettings)
    source: Optional[Path] = None


def parse_config(config_path: Path) -> NpmKitConfig:
    """
    Parse an npmkit.yaml file.

    Args:
        config_path: Path to the file

    Returns:
        Parsed and validated configuration

    Raises:
        ConfigError: If the file is missing, not valid YAML, or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    config = parse_config_data(data or {})
    config.source = config_path
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> NpmKitConfig:
    """
    Load configuration from an explicit path, ./npmkit.yaml, or defaults.

    Raises:
        ConfigError: If the chosen file is invalid
    """
    if config_path is not None:
        return parse_config(Path(config_path))

    local = Path.cwd() / CONFIG_FILENAME
    if local.exists():
        logger.debug(f"Using configuration {local}")
        return parse_config(local)
    return NpmKitConfig()


def parse_config_data(data: Dict[str, Any]) -> NpmKitConfig:
    """Validate an already loaded configuration mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown configuration section(s): {', '.join(sorted(unknown))}"
        )

    version = data.get("version", 1)
    if version != 1:
        raise ConfigError(f"Unsupported version: {version} (expected 1)")

    return NpmKitConfig(
        executor=_parse_executor(_section(data, "executor")),
        batch=_parse_batch(_section(data, "batch")),
        portable=_parse_portable(_section(data, "portable")),
        download=_parse_download(_section(data, "download")),
        provision=_parse_provision(_section(data, "provision")),
    )


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _number(
    section: dict,
    key: str,
    default,
    name: str,
    allow_none: bool = False,
    minimum: float = 0,
):
    value = section.get(key, default)
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name}.{key} must be a number")
    if value < minimum:
        raise ConfigError(f"{name}.{key} must be at least {minimum}")
    return value


def _parse_executor(data: dict) -> ExecutorSettings:
    env = data.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError("executor.env must be a mapping")

    timeout = _number(data, "timeout", DEFAULT_TIMEOUT, "executor", allow_none=True)
    if timeout == 0:
        raise ConfigError("executor.timeout must be positive (use null for none)")

    working_dir = data.get("working_dir")
    return ExecutorSettings(
        timeout=timeout,
        working_dir=Path(working_dir).expanduser() if working_dir else None,
        kill_grace_period=_number(
            data, "kill_grace_period", DEFAULT_KILL_GRACE_PERIOD, "executor"
        ),
        env={str(k): str(v) for k, v in env.items()},
    )


def _parse_batch(data: dict) -> BatchSettings:
    value = _number(data, "max_concurrency", 4, "batch", minimum=1)
    if int(value) != value:
        raise ConfigError("batch.max_concurrency must be an integer")
    return BatchSettings(max_concurrency=int(value))


def _parse_portable(data: dict) -> PortableSettings:
    root = data.get("root")
    return PortableSettings(
        root=Path(root).expanduser() if root else get_portable_root(),
        verify_checksums=bool(data.get("verify_checksums", True)),
        lock_timeout=_number(data, "lock_timeout", 600, "portable"),
    )


def _parse_download(data: dict) -> DownloadSettings:
    mirror = data.get("mirror", DEFAULT_BASE_URL)
    if not isinstance(mirror, str) or not mirror.startswith(("http://", "https://")):
        raise ConfigError(f"download.mirror must be an http(s) URL, got {mirror!r}")
    return DownloadSettings(
        mirror=mirror,
        timeout=_number(data, "timeout", 30, "download", minimum=1),
        max_retries=int(_number(data, "max_retries", 3, "download", minimum=1)),
    )


def _parse_provision(data: dict) -> ProvisionSettings:
    return ProvisionSettings(
        step_timeout=_number(data, "step_timeout", 900, "provision", minimum=1)
    )
