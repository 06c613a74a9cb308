"""
Provision command implementation.

Makes npm available by trying installation strategies in order and
prints the full attempt trail when every strategy fails.
"""

import logging

from npmkit.cli.utils import (
    create_selector,
    format_duration,
    load_cli_config,
    print_error,
)
from npmkit.core.exceptions import StrategyExhaustedError

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the provision command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 when no strategy worked)
    """
    config = load_cli_config(args)
    selector = create_selector(config, with_portable=not args.no_portable)

    if args.dry_run:
        strategies = selector.plan(version=args.node_version, method=args.method)
        print(f"Strategies for {selector.platform}:")
        for index, strategy in enumerate(strategies, 1):
            print(f"  {index}. {strategy}")
            for step in strategy.steps:
                print(f"       $ {' '.join((step.command,) + tuple(step.args))}")
            if strategy.instructions:
                print(f"       {strategy.instructions}")
        return 0

    try:
        result = selector.provision(
            method=args.method, version=args.node_version, force=args.force
        )
    except StrategyExhaustedError as e:
        print_error(
            "Could not provision npm",
            "\n".join(attempt.summary() for attempt in e.attempts),
        )
        return 1

    if result.already_installed:
        print(f"npm is already available at {result.npm_path}")
        return 0

    print(f"npm provisioned with {result.strategy}", end="")
    print(f" in {format_duration(result.duration)}")
    if result.npm_path:
        print(f"  npm: {result.npm_path}")
    return 0
