# src/sealenv/tools.py
"""Detection of the external command-line collaborators."""

import platform
import shutil
from typing import Iterable, List

from .errors import ToolUnavailable

# Binary name -> package that provides it.
PACKAGES = {
    "age": "age",
    "age-keygen": "age",
    "sops": "sops",
    "keepassxc-cli": "keepassxc",
}


def find_in_path(name: str) -> str | None:
    """
    Finds an executable in the system's PATH.

    Returns:
        The full path to the executable, or None if not found.
    """
    return shutil.which(name)


def _package_manager() -> str | None:
    system = platform.system()
    if system == "Darwin":
        return "brew" if find_in_path("brew") else None
    if system == "Linux":
        for manager in ("apt", "dnf", "yum"):
            if find_in_path(manager):
                return manager
    return None


def install_hint(binary: str) -> str:
    """Return a one-line installation suggestion for a missing binary."""
    package = PACKAGES.get(binary, binary)
    manager = _package_manager()
    if manager == "brew":
        return f"Install it with: brew install {package}"
    if manager in ("apt", "dnf", "yum"):
        return f"Install it with: sudo {manager} install -y {package}"
    return f"Please install '{package}' with your system package manager."


def missing_tools(binaries: Iterable[str]) -> List[str]:
    """Return the binaries from `binaries` that are not on PATH."""
    return [name for name in binaries if not find_in_path(name)]


def verify_tools(binaries: Iterable[str]) -> None:
    """
    Verify that every required binary is installed.

    Raises:
        ToolUnavailable: Naming all missing binaries and how to install them.
    """
    missing = missing_tools(binaries)
    if missing:
        hints = "; ".join(f"{name}: {install_hint(name)}" for name in missing)
        raise ToolUnavailable(f"Required tools are missing: {', '.join(missing)}. {hints}")
