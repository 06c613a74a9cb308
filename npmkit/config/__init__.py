"""Configuration module for npmkit.

This module provides YAML configuration parsing and validation for npmkit.yaml.
"""

from npmkit.config.parser import (
    BatchSettings,
    DownloadSettings,
    ExecutorSettings,
    NpmKitConfig,
    PortableSettings,
    ProvisionSettings,
    load_config,
    parse_config,
    parse_config_data,
)
from npmkit.core.exceptions import ConfigError

__all__ = [
    "BatchSettings",
    "DownloadSettings",
    "ExecutorSettings",
    "NpmKitConfig",
    "PortableSettings",
    "ProvisionSettings",
    "ConfigError",
    "load_config",
    "parse_config",
    "parse_config_data",
]
