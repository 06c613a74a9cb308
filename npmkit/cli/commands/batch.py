"""
Batch command implementation.

Runs the commands listed in a file (one per line, shell-style quoting)
with bounded concurrency and prints one status line per command.
"""

import logging
import shlex
from pathlib import Path
from typing import List

from npmkit.cli.utils import (
    create_batch_executor,
    format_duration,
    load_cli_config,
    print_error,
)
from npmkit.core.batch import BatchRequest
from npmkit.core.executor import ExecutionRequest

logger = logging.getLogger(__name__)


def read_commands(path: Path, timeout=None) -> List[ExecutionRequest]:
    """
    Parse a command file into requests.

    Raises:
        ValueError: If a line cannot be split into words or names no command
    """
    requests = []
    with open(path, "r", encoding="utf-8") as f:
        for number, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                words = shlex.split(line)
            except ValueError as e:
                raise ValueError(f"{path}:{number}: {e}") from e
            if not words[0].strip():
                raise ValueError(f"{path}:{number}: empty command name")
            requests.append(ExecutionRequest(words[0], words[1:], timeout=timeout))
    return requests


def run(args) -> int:
    """
    Run the batch command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 when every command succeeded)
    """
    config = load_cli_config(args)

    try:
        commands = read_commands(args.file, timeout=args.timeout)
    except (OSError, ValueError) as e:
        print_error(f"Cannot read {args.file}", str(e))
        return 1

    if not commands:
        print(f"No commands in {args.file}")
        return 0

    executor = create_batch_executor(config)
    result = executor.run_batch(
        BatchRequest(
            commands,
            max_concurrency=args.concurrency,
            stop_on_error=args.stop_on_error,
        )
    )

    for item in result.results:
        if item.success:
            status = "ok"
        elif item.error and item.error.startswith("skipped:"):
            status = "skipped"
        else:
            status = f"FAILED ({item.error or f'exit {item.exit_code}'})"
        print(f"[{status}] {' '.join(item.command)}")

    print(
        f"{len(result.results)} command(s), {result.failed_count} failed, "
        f"{result.skipped_count} skipped in {format_duration(result.duration)}"
    )
    return 0 if result.success else 1
