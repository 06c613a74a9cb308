"""
Platform command implementation.

Prints the detected operating system, architecture and distribution.
"""

import json
import logging

from npmkit.core.platform import detect_platform

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the platform command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    info = detect_platform()
    logger.debug(f"Detected {info!r}")

    if args.json:
        print(
            json.dumps(
                {
                    "os": info.os,
                    "arch": info.arch,
                    "platform": info.platform_string(),
                    "distribution": info.distribution,
                    "distribution_version": info.distribution_version,
                    "distribution_like": list(info.distribution_like),
                    "kernel": info.kernel,
                },
                indent=2,
            )
        )
        return 0

    print(f"Platform:     {info.platform_string()}")
    print(f"OS:           {info.os}")
    print(f"Architecture: {info.arch}")
    if info.is_linux:
        version = f" {info.distribution_version}" if info.distribution_version else ""
        print(f"Distribution: {info.distribution}{version}")
        if info.distribution_like:
            print(f"Like:         {', '.join(info.distribution_like)}")
    if info.kernel:
        print(f"Kernel:       {info.kernel}")
    return 0
