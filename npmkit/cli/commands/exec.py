"""
Exec command implementation.

Runs one command through the process executor, streaming its output to
the terminal as it arrives.
"""

import logging
import sys

from npmkit.cli.utils import (
    create_executor,
    create_portable_manager,
    load_cli_config,
    print_error,
)
from npmkit.core.exceptions import SpawnError
from npmkit.core.executor import ExecutionRequest

logger = logging.getLogger(__name__)

# Exit status reported for a timed out command (as coreutils timeout does)
TIMEOUT_EXIT_CODE = 124


def _echo(stream_name: str, line: str) -> None:
    target = sys.stderr if stream_name == "stderr" else sys.stdout
    print(line, file=target, flush=True)


def run(args) -> int:
    """
    Run the exec command.

    Args:
        args: Parsed command-line arguments

    Returns:
        The command's exit code, 124 on timeout, 127 if it could not start
    """
    config = load_cli_config(args)
    if args.node_version:
        executor = create_portable_manager(config).create_executor(args.node_version)
    else:
        executor = create_executor(config)

    request = ExecutionRequest(
        args.program,
        args.program_args,
        working_dir=args.cwd,
        env=dict(args.env),
        timeout=args.timeout,
        capture_output=False,
        stream_output=True,
        output_callback=_echo,
    )

    try:
        result = executor.run(request)
    except SpawnError as e:
        print_error(f"Cannot run '{e.command}'", e.reason)
        return 127

    logger.debug(f"{' '.join(result.command)}: {result.error or 'ok'}")
    if result.timed_out:
        print_error(result.error)
        return TIMEOUT_EXIT_CODE
    if result.cancelled:
        print_error(result.error)
        return 130
    return result.exit_code
