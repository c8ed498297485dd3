# src/sealenv/vault/keepassxc.py
"""Vault adapter driving `keepassxc-cli`."""

import logging
from pathlib import Path
from typing import List

from . import VaultAdapter
from .. import scratch, shell
from ..errors import AuthenticationError, EntryNotFound, WriteError
from ..prompt import PassphrasePrompter

logger = logging.getLogger(__name__)

CLI = "keepassxc-cli"

_AUTH_MARKERS = ("invalid credentials", "error while reading the database", "wrong key")
_MISSING_ENTRY_MARKERS = ("could not find entry",)
_MISSING_ATTACHMENT_MARKERS = ("could not find attachment", "no attachment")


class KeePassXCVault(VaultAdapter):
    """
    Key backups stored as attachments in a KeePassXC database.

    keepassxc-cli reads the master passphrase from stdin when it is not a
    terminal. Attachments are moved through files in a scratch directory
    that is shredded before the call returns.
    """

    required_tools = [CLI]

    def __init__(self, db_path: Path, prompter: PassphrasePrompter, timeout: float = shell.DEFAULT_TIMEOUT):
        super().__init__(prompter)
        self.db_path = Path(db_path)
        self.timeout = timeout

    @property
    def location(self) -> str:
        return str(self.db_path)

    def exists(self) -> bool:
        return self.db_path.is_file()

    def _run(self, args: List[str], passphrase: str, repeat: int = 1):
        stdin = (passphrase + "\n") * repeat
        return shell.run_tool([CLI, *args], input=stdin.encode("utf-8"), timeout=self.timeout)

    def _raise_for(self, result, action: str) -> None:
        stderr = shell.stderr_text(result)
        lowered = stderr.lower()
        if any(m in lowered for m in _AUTH_MARKERS):
            raise AuthenticationError(f"Cannot open vault '{self.db_path}'.")
        if any(m in lowered for m in _MISSING_ENTRY_MARKERS + _MISSING_ATTACHMENT_MARKERS):
            raise EntryNotFound(f"{action}: entry or attachment not found in '{self.db_path}'.")
        raise WriteError(f"{action} failed: {stderr}")

    def _require_db(self) -> None:
        if not self.exists():
            raise EntryNotFound(f"Vault database not found at '{self.db_path}'.")

    def create(self) -> None:
        if self.exists():
            raise WriteError(f"Vault already exists at '{self.db_path}'.")
        self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        passphrase = self.prompter.ask_passphrase(
            f"New master passphrase for {self.location}", confirm=True
        )
        result = self._run(["db-create", "--set-password", str(self.db_path)], passphrase, repeat=2)
        if result.returncode != 0 or not self.exists():
            raise WriteError(f"Creating the vault failed: {shell.stderr_text(result)}")
        logger.info("Created KeePassXC database %s", self.db_path)

    def export_attachment(self, entry: str, attachment: str) -> bytes:
        self._require_db()
        passphrase = self._ask("export")
        with scratch.scratch_dir() as workdir:
            target = workdir / "attachment"
            result = self._run(
                ["attachment-export", "--quiet", str(self.db_path), entry, attachment, str(target)],
                passphrase,
            )
            if result.returncode != 0:
                self._raise_for(result, "Attachment export")
            if not target.is_file():
                raise EntryNotFound(f"Attachment '{attachment}' was not exported from '{self.db_path}'.")
            return target.read_bytes()

    def import_attachment(self, entry: str, attachment: str, payload: bytes) -> None:
        self._require_db()
        passphrase = self._ask("import")
        with scratch.scratch_dir() as workdir:
            source = workdir / "attachment"
            source.write_bytes(payload)
            source.chmod(0o600)
            args = ["attachment-import", "--quiet", "--force", str(self.db_path), entry, attachment, str(source)]
            result = self._run(args, passphrase)
            if result.returncode != 0 and any(
                m in shell.stderr_text(result).lower() for m in _MISSING_ENTRY_MARKERS
            ):
                logger.info("Creating vault entry %s", entry)
                added = self._run(["add", "--quiet", str(self.db_path), entry], passphrase)
                if added.returncode != 0:
                    self._raise_for(added, "Creating the vault entry")
                result = self._run(args, passphrase)
            if result.returncode != 0:
                self._raise_for(result, "Attachment import")
        logger.info("Stored attachment %s on entry %s", attachment, entry)
