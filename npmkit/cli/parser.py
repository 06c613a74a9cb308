"""
npmkit CLI argument parser.

This module implements the command-line interface for npmkit using argparse.
"""

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import List, Optional

from npmkit import __version__

logger = logging.getLogger(__name__)


def _key_value(text: str):
    """Parse KEY=VALUE for --env."""
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{text}'")
    return key, value


class CLI:
    """npmkit command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="npmkit",
            description="npmkit - provision Node.js/npm and run toolchain commands",
            epilog='Use "npmkit COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"npmkit {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: ./npmkit.yaml)",
        )

        subparsers = parser.add_subparsers(
            dest="command", title="commands", metavar="COMMAND"
        )

        self._add_platform_command(subparsers)
        self._add_provision_command(subparsers)
        self._add_portable_command(subparsers)
        self._add_exec_command(subparsers)
        self._add_batch_command(subparsers)

        return parser

    def _add_platform_command(self, subparsers):
        """Add 'platform' command parser."""
        platform_parser = subparsers.add_parser(
            "platform",
            help="Show the detected platform",
            description="Detect the operating system, architecture and distribution",
        )
        platform_parser.add_argument(
            "--json", action="store_true", help="Print the result as JSON"
        )

    def _add_provision_command(self, subparsers):
        """Add 'provision' command parser."""
        provision_parser = subparsers.add_parser(
            "provision",
            help="Make npm available on this machine",
            description=(
                "Try installation strategies in order until npm is available:\n"
                "  package managers, official installer, portable, manual"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        provision_parser.add_argument(
            "--method",
            choices=["package_manager", "official_installer", "portable", "manual"],
            help="Only try strategies of this kind",
        )
        provision_parser.add_argument(
            "--node-version",
            metavar="VERSION",
            help="Node.js version to install (default: latest LTS)",
        )
        provision_parser.add_argument(
            "--force",
            action="store_true",
            help="Install even if npm is already available",
        )
        provision_parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show the strategy plan without running it",
        )
        provision_parser.add_argument(
            "--no-portable",
            action="store_true",
            help="Leave the portable download out of the plan",
        )

    def _add_portable_command(self, subparsers):
        """Add 'portable' command parser with its sub-commands."""
        portable_parser = subparsers.add_parser(
            "portable",
            help="Manage portable Node.js installations",
            description="Install, list, remove and select portable Node.js versions",
        )
        portable_subparsers = portable_parser.add_subparsers(
            dest="portable_command", metavar="SUBCOMMAND"
        )

        install_parser = portable_subparsers.add_parser(
            "install", help="Download and install a Node.js version"
        )
        install_parser.add_argument(
            "node_version",
            nargs="?",
            metavar="VERSION",
            help="Version to install (default: latest LTS)",
        )
        install_parser.add_argument(
            "--force", action="store_true", help="Reinstall if already installed"
        )
        install_parser.add_argument(
            "--default",
            action="store_true",
            dest="make_default",
            help="Make this the default version",
        )

        portable_subparsers.add_parser("list", help="List installed versions")

        remove_parser = portable_subparsers.add_parser(
            "remove", help="Remove an installed version"
        )
        remove_parser.add_argument("node_version", metavar="VERSION")

        default_parser = portable_subparsers.add_parser(
            "default", help="Show or set the default version"
        )
        default_parser.add_argument(
            "node_version",
            nargs="?",
            metavar="VERSION",
            help="Version to make default (omit to show the current default)",
        )

    def _add_exec_command(self, subparsers):
        """Add 'exec' command parser."""
        exec_parser = subparsers.add_parser(
            "exec",
            help="Run one command through the process executor",
            description="Run a command with a timeout, streaming its output",
        )
        exec_parser.add_argument(
            "--timeout",
            type=float,
            metavar="SECONDS",
            help="Kill the command after this many seconds",
        )
        exec_parser.add_argument(
            "--cwd", type=Path, metavar="DIR", help="Working directory"
        )
        exec_parser.add_argument(
            "--env",
            type=_key_value,
            action="append",
            default=[],
            metavar="KEY=VALUE",
            help="Set an environment variable (repeatable)",
        )
        exec_parser.add_argument(
            "--node-version",
            metavar="VERSION",
            help="Put this portable Node.js version first on PATH",
        )
        exec_parser.add_argument("program", metavar="COMMAND", help="Executable")
        exec_parser.add_argument(
            "program_args",
            nargs=argparse.REMAINDER,
            metavar="ARGS",
            help="Arguments passed to the command",
        )

    def _add_batch_command(self, subparsers):
        """Add 'batch' command parser."""
        batch_parser = subparsers.add_parser(
            "batch",
            help="Run a file of commands concurrently",
            description=(
                "Run one command per line of FILE. Blank lines and lines\n"
                "starting with '#' are ignored."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        batch_parser.add_argument("file", type=Path, metavar="FILE")
        batch_parser.add_argument(
            "--concurrency",
            "-j",
            type=int,
            metavar="N",
            help="Maximum commands running at once (default: from config)",
        )
        batch_parser.add_argument(
            "--stop-on-error",
            action="store_true",
            help="Start no new command after the first failure",
        )
        batch_parser.add_argument(
            "--timeout",
            type=float,
            metavar="SECONDS",
            help="Per-command timeout",
        )

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        parsed_args = self.parse_args(args)

        self._configure_logging(parsed_args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(level=level, format=format_str, force=True)

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        if args.command == "portable":
            return self._dispatch_portable_command(args)

        command_map = {
            "platform": "npmkit.cli.commands.platform",
            "provision": "npmkit.cli.commands.provision",
            "exec": "npmkit.cli.commands.exec",
            "batch": "npmkit.cli.commands.batch",
        }

        module_name = command_map.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return 1

        module = importlib.import_module(module_name)
        if not hasattr(module, "run"):
            logger.error(f"Command module {module_name} has no run() function")
            return 1
        return module.run(args)

    def _dispatch_portable_command(self, args) -> int:
        """
        Dispatch portable sub-commands.

        Args:
            args: Parsed arguments with portable_command field

        Returns:
            Exit code from command handler
        """
        if not getattr(args, "portable_command", None):
            logger.error("No portable sub-command specified")
            self.parser.parse_args(["portable", "--help"])
            return 1

        from npmkit.cli.commands import portable

        portable_command_map = {
            "install": portable.run_install,
            "list": portable.run_list,
            "remove": portable.run_remove,
            "default": portable.run_default,
        }

        handler = portable_command_map.get(args.portable_command)
        if not handler:
            logger.error(f"Unknown portable command: {args.portable_command}")
            return 1
        return handler(args)


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
