# src/sealenv/project.py
"""Per-project session loader files."""

import logging
import shlex
from pathlib import Path

from .errors import WriteError
from .fs import atomic_write

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "project-template.sh"


def render_loader(document: Path, name: str) -> str:
    """Shell snippet that exports the document's variables into the sourcing shell."""
    doc = shlex.quote(str(document))
    return (
        "# Loads secrets for this project. Do not commit this file.\n"
        f"# Usage: source ./{name} && your-command\n"
        f'eval "$(sealenv load {doc})"\n'
    )


def write_template(secrets_dir: Path, document: Path) -> Path:
    """Write the reusable loader template into the secrets directory."""
    path = Path(secrets_dir) / TEMPLATE_NAME
    atomic_write(path, render_loader(document, TEMPLATE_NAME).encode("utf-8"), mode=0o644)
    logger.info("Project template written to %s", path)
    return path


def _ensure_ignored(project_dir: Path, name: str) -> bool:
    """Append `name` to the project's .gitignore; returns True if it was added."""
    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text().splitlines() if gitignore.exists() else []
    stripped = {line.strip() for line in existing}
    if name in stripped or f"/{name}" in stripped:
        return False
    atomic_write(gitignore, ("\n".join(existing + [name]) + "\n").encode("utf-8"), mode=0o644)
    return True


def install_loader(project_dir: Path, document: Path, name: str, force: bool = False) -> Path:
    """
    Write the session loader into `project_dir` and keep it out of version control.

    Raises:
        WriteError: If the loader exists and `force` is not set.
    """
    project_dir = Path(project_dir)
    target = project_dir / name
    if target.exists() and not force:
        raise WriteError(f"'{target}' already exists; use --force to replace it.")
    atomic_write(target, render_loader(document, name).encode("utf-8"), mode=0o644)
    if _ensure_ignored(project_dir, name):
        logger.info("Added %s to %s/.gitignore", name, project_dir)
    return target
