"""
Entry point for running the npmkit CLI as a module.

Usage: python -m npmkit.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
