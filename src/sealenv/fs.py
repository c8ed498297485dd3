# src/sealenv/fs.py: Filesystem utilities.
# Atomic writes for documents, key files and configuration, and the file-mode
# check applied to on-disk key material.

import os
import stat
import tempfile
from pathlib import Path

from . import paths
from .errors import KeyPermissionError, WriteError


def atomic_write(path: Path, content: bytes, mode: int = 0o600) -> None:
    """
    Write content to a file atomically.

    The data goes to a temporary file in the same directory which replaces
    `path` only once it is completely written and flushed, so readers see
    either the old or the new content.

    Raises:
        WriteError: If any step fails; the original file is left untouched.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise WriteError(f"Cannot create a temporary file next to '{path}': {e}") from e

    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise WriteError(f"Failed to write '{path}': {e}") from e


def check_private_mode(path: Path) -> None:
    """
    Reject key files readable or writable by group or others.

    Raises:
        KeyPermissionError: If any group/other permission bit is set.
    """
    if paths.is_windows():
        return
    file_mode = stat.S_IMODE(path.stat().st_mode)
    if file_mode & 0o077:
        raise KeyPermissionError(
            f"Key file '{path}' has permissions {oct(file_mode)}; "
            f"it must not be accessible by group or others (run: chmod 600 '{path}')."
        )
