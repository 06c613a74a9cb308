"""
npmkit - provision and drive the npm toolchain from Python.

npmkit runs external commands with timeouts and cancellation, detects the
host platform, installs Node.js/npm through the best available mechanism
and manages self-contained portable Node.js versions.
"""

__version__ = "0.1.0"
