# src/sealenv/paths.py
"""XDG Base Directory Specification compliant path resolution."""

import os
import sys
from functools import lru_cache
from pathlib import Path

import platformdirs

from .errors import EnvironmentError

APP_NAME = "sealenv"

# Environment variable designating the on-disk key location. Shared with sops
# so that `sops` run by hand picks up the same key.
KEY_FILE_ENV = "SOPS_AGE_KEY_FILE"
CONFIG_ENV = "SEALENV_CONFIG"


def _get_home_path() -> Path:
    """
    Get the user's home directory.

    Raises:
        EnvironmentError: If the HOME environment variable is not set.
    """
    home = os.environ.get("HOME")
    if not home:
        # On Windows, HOME might not be set. Try USERPROFILE.
        home = os.environ.get("USERPROFILE")

    if not home:
        raise EnvironmentError(
            "Required environment variable HOME (or USERPROFILE on Windows) is not set."
        )

    path = Path(home).resolve()
    if not path.is_dir():
        raise EnvironmentError(f"Home directory '{path}' does not exist or is not a directory.")

    return path


HOME: Path = _get_home_path()


@lru_cache(maxsize=1)
def get_xdg_config_home() -> Path:
    """
    Returns the path to the XDG Config Home directory.

    Defaults to ~/.config if XDG_CONFIG_HOME is not set.
    """
    return Path(os.environ.get("XDG_CONFIG_HOME", HOME / ".config"))


def get_app_config_dir() -> Path:
    """Get the application's root config directory."""
    return get_xdg_config_home() / APP_NAME


def get_default_config_path() -> Path:
    """Get the default path for the sealenv.yaml configuration file."""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return expand_path(override)
    return get_app_config_dir() / "sealenv.yaml"


def get_runtime_dir() -> Path:
    """
    Root for short-lived scratch directories holding key material.

    Uses XDG_RUNTIME_DIR (tmpfs on most Linux systems) when available.
    """
    path = Path(platformdirs.user_runtime_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True, mode=0o700)
    return path


def get_key_file_override() -> Path | None:
    """Return the key location named by SOPS_AGE_KEY_FILE, if set."""
    value = os.environ.get(KEY_FILE_ENV)
    if value:
        return expand_path(value)
    return None


def expand_path(path: str | Path) -> Path:
    """Expand ${HOME}, environment variables and ~ in a path."""
    text = str(path).replace("${HOME}", str(HOME))
    return Path(os.path.expandvars(os.path.expanduser(text)))


def is_windows() -> bool:
    """Check if the current operating system is Windows."""
    return sys.platform == "win32"
