# src/sealenv/scratch.py
"""Short-lived private directories for key material that must touch disk.

Some collaborators (keepassxc-cli attachment import/export) only work with
file paths. Such files are created inside a 0700 scratch directory that is
overwritten and removed when the owning `with` block exits, when the
interpreter exits, and when the process receives SIGTERM, SIGHUP or SIGINT.
"""

import atexit
import logging
import os
import shutil
import signal
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

from . import paths

logger = logging.getLogger(__name__)

_live_dirs: Set[Path] = set()
_previous_handlers: Dict[int, object] = {}
_installed = False

_SIGNALS = [name for name in ("SIGTERM", "SIGHUP", "SIGINT") if hasattr(signal, name)]


def _shred_tree(path: Path) -> None:
    """Overwrite every file below `path` with zeros, then remove the tree."""
    if not path.exists():
        return
    for root, _, files in os.walk(path):
        for name in files:
            file_path = Path(root) / name
            size = file_path.stat().st_size
            with open(file_path, "r+b") as f:
                f.write(b"\0" * size)
                f.flush()
                os.fsync(f.fileno())
    shutil.rmtree(path)


def cleanup_all() -> None:
    """Remove every scratch directory still alive in this process."""
    for path in list(_live_dirs):
        _shred_tree(path)
        _live_dirs.discard(path)


def _handle_signal(signum, frame):
    cleanup_all()
    previous = _previous_handlers.get(signum)
    if callable(previous):
        previous(signum, frame)
        return
    signal.signal(signum, signal.SIG_DFL)
    os.kill(os.getpid(), signum)


def _install_handlers() -> None:
    global _installed
    if _installed:
        return
    atexit.register(cleanup_all)
    for name in _SIGNALS:
        signum = getattr(signal, name)
        try:
            _previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, _handle_signal)
        except ValueError:
            # Handlers can only be installed from the main thread.
            logger.debug("Cannot install %s handler outside the main thread", name)
    _installed = True


@contextmanager
def scratch_dir(root: Optional[Path] = None) -> Iterator[Path]:
    """
    Yield a private directory that is shredded when the block exits.

    Args:
        root: Parent directory; defaults to the per-user runtime dir.
    """
    _install_handlers()
    parent = root or paths.get_runtime_dir()
    parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix="scratch-", dir=parent))
    _live_dirs.add(path)
    try:
        yield path
    finally:
        _shred_tree(path)
        _live_dirs.discard(path)
