"""
Portable command implementation.

Sub-commands manage the portable Node.js versions under the npmkit root:
install, list, remove, default.
"""

import logging

from npmkit.cli.utils import create_portable_manager, load_cli_config, print_error
from npmkit.core.download import format_progress
from npmkit.core.exceptions import NpmKitError

logger = logging.getLogger(__name__)


def _manager(args):
    return create_portable_manager(load_cli_config(args))


def _log_progress(progress):
    logger.debug(format_progress(progress))


def run_install(args) -> int:
    """Install a portable Node.js version."""
    manager = _manager(args)
    try:
        record = manager.install(
            args.node_version, force=args.force, progress_callback=_log_progress
        )
        if args.make_default:
            manager.set_default(record.version)
    except NpmKitError as e:
        print_error("Portable install failed", str(e))
        return 1

    print(f"Node.js {record.version} installed at {record.install_path}")
    print(f"  node: {record.node_path}")
    print(f"  npm:  {record.npm_path}")
    return 0


def run_list(args) -> int:
    """List installed portable versions, marking the default."""
    manager = _manager(args)
    records = manager.list_versions()
    if not records:
        print("No portable Node.js versions installed")
        return 0

    default = manager.get_default()
    default_version = default.version if default else None
    for record in records:
        marker = "*" if record.version == default_version else " "
        print(f"{marker} {record.version:<12} {record.install_path}")
    return 0


def run_remove(args) -> int:
    """Remove a portable version."""
    manager = _manager(args)
    try:
        manager.uninstall(args.node_version)
    except NpmKitError as e:
        print_error(f"Cannot remove Node.js {args.node_version}", str(e))
        return 1
    print(f"Removed Node.js {args.node_version}")
    return 0


def run_default(args) -> int:
    """Show or set the default portable version."""
    manager = _manager(args)
    if args.node_version:
        try:
            manager.set_default(args.node_version)
        except NpmKitError as e:
            print_error("Cannot set default version", str(e))
            return 1
        print(f"Default Node.js version: {args.node_version}")
        return 0

    default = manager.get_default()
    if default is None:
        print("No default Node.js version set")
        return 1
    print(default.version)
    return 0
