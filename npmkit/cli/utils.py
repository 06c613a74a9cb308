"""
Shared utilities for CLI commands.

Builds the library objects a command needs from the loaded npmkit.yaml,
and prints messages in one consistent format.
"""

import logging
import sys
from typing import Optional

from npmkit.config import NpmKitConfig, load_config
from npmkit.core.batch import BatchExecutor
from npmkit.core.executor import ProcessExecutor
from npmkit.provision.nodejs import NodeDistribution
from npmkit.provision.portable import PortableVersionManager
from npmkit.provision.selector import InstallationSelector

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration and object construction
# ============================================================================


def load_cli_config(args) -> NpmKitConfig:
    """
    Load the configuration named by --config, or ./npmkit.yaml, or defaults.

    Raises:
        ConfigError: If the configuration file is invalid
    """
    config_path = getattr(args, "config", None)
    config = load_config(config_path)
    if config.source:
        logger.debug(f"Loaded configuration from {config.source}")
    return config


def create_executor(config: NpmKitConfig) -> ProcessExecutor:
    return ProcessExecutor(config.executor.to_executor_config())


def create_batch_executor(config: NpmKitConfig) -> BatchExecutor:
    return BatchExecutor(
        create_executor(config), max_concurrency=config.batch.max_concurrency
    )


def create_distribution(config: NpmKitConfig) -> NodeDistribution:
    return NodeDistribution(
        base_url=config.download.mirror, timeout=config.download.timeout
    )


def create_portable_manager(config: NpmKitConfig) -> PortableVersionManager:
    return PortableVersionManager(
        root_dir=config.portable.root,
        distribution=create_distribution(config),
        executor=create_executor(config),
        verify_checksums=config.portable.verify_checksums,
        lock_timeout=config.portable.lock_timeout,
        download_timeout=config.download.timeout,
        max_retries=config.download.max_retries,
    )


def create_selector(
    config: NpmKitConfig, with_portable: bool = True
) -> InstallationSelector:
    """Selector wired to the configured executor, mirror and portable root."""
    portable = create_portable_manager(config) if with_portable else None
    return InstallationSelector(
        executor=create_executor(config),
        portable_manager=portable,
        distribution=create_distribution(config),
        step_timeout=config.provision.step_timeout,
    )


# ============================================================================
# Output
# ============================================================================


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        for line in details.splitlines():
            print(f"  {line}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message to stderr."""
    print(f"WARNING: {message}", file=sys.stderr)


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m{rest:02d}s"
