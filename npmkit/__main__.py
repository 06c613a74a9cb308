"""
Entry point for running the npmkit CLI as a module.

Usage: python -m npmkit [command] [options]
"""

from npmkit.cli.parser import main

if __name__ == "__main__":
    main()
