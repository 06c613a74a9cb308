"""
Directory layout for npmkit.

Home (~/.npmkit/ or %USERPROFILE%\\.npmkit\\, overridden by NPMKIT_HOME):
    - portable/                  : Portable Node.js installations
        - versions/node-v<ver>/  : One extracted distribution per version
        - downloads/             : Scratch space for in-flight downloads
        - lock/                  : Registry and per-version install locks
        - registry.json          : Installed version records
"""

import os
from pathlib import Path

HOME_ENV_VAR = "NPMKIT_HOME"

VERSIONS_DIR = "versions"
DOWNLOADS_DIR = "downloads"
LOCK_DIR = "lock"
REGISTRY_FILE = "registry.json"


def get_npmkit_home() -> Path:
    """
    Get the npmkit home directory.

    Returns:
        $NPMKIT_HOME if set, otherwise ~/.npmkit
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    if os.name == "nt" and os.environ.get("USERPROFILE"):
        return Path(os.environ["USERPROFILE"]) / ".npmkit"
    return Path.home() / ".npmkit"


def get_portable_root() -> Path:
    """Default root of the portable version manager."""
    return get_npmkit_home() / "portable"


def version_dir_name(version: str) -> str:
    return f"node-v{version}"
