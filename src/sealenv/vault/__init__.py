# src/sealenv/vault/__init__.py: Vault adapter registry.
# A vault is an external encrypted attachment store gated by a master
# passphrase. This package defines the 'VaultAdapter' interface and ships a
# keepassxc-cli adapter, an encrypted single-file vault, and an in-memory vault
# for headless runs and tests.

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from ..errors import AuthenticationError, EntryNotFound, WriteError
from ..prompt import PassphrasePrompter


class VaultAdapter(ABC):
    """
    Named binary attachments inside a passphrase-protected vault.

    Every call asks the injected prompter for the master passphrase and
    forgets it when the call returns. Implementations check the passphrase
    before looking anything up, so a wrong passphrase is reported the same
    way whether or not the entry exists.
    """

    required_tools: List[str] = []

    def __init__(self, prompter: PassphrasePrompter):
        self.prompter = prompter

    @property
    @abstractmethod
    def location(self) -> str:
        """Human readable location of the vault."""

    @abstractmethod
    def exists(self) -> bool:
        """Whether the vault database exists."""

    @abstractmethod
    def create(self) -> None:
        """
        Create an empty vault under a new master passphrase.

        Raises:
            WriteError: If the vault already exists or cannot be written.
        """

    @abstractmethod
    def export_attachment(self, entry: str, attachment: str) -> bytes:
        """
        Return the attachment payload.

        Raises:
            AuthenticationError: Wrong master passphrase.
            EntryNotFound: The vault, entry or attachment does not exist.
        """

    @abstractmethod
    def import_attachment(self, entry: str, attachment: str, payload: bytes) -> None:
        """
        Store `payload`, creating the entry and replacing an existing
        attachment of the same name.

        Raises:
            AuthenticationError: Wrong master passphrase.
            EntryNotFound: The vault does not exist.
            WriteError: The payload could not be stored completely.
        """

    def has_attachment(self, entry: str, attachment: str) -> bool:
        """
        Whether the attachment is present. A missing vault counts as absent;
        a wrong passphrase still raises AuthenticationError.
        """
        if not self.exists():
            return False
        try:
            self.export_attachment(entry, attachment)
        except EntryNotFound:
            return False
        return True

    def _ask(self, purpose: str) -> str:
        return self.prompter.ask_passphrase(f"Master passphrase for {self.location} ({purpose})")


class InMemoryVault(VaultAdapter):
    """A vault living in process memory; nothing touches the disk."""

    def __init__(self, prompter: PassphrasePrompter, passphrase: Optional[str] = None):
        super().__init__(prompter)
        self._passphrase = passphrase
        self._attachments: Dict[Tuple[str, str], bytes] = {}

    @property
    def location(self) -> str:
        return "in-memory vault"

    def exists(self) -> bool:
        return self._passphrase is not None

    def create(self) -> None:
        if self.exists():
            raise WriteError("The in-memory vault already exists.")
        self._passphrase = self.prompter.ask_passphrase("New master passphrase", confirm=True)

    def _authenticate(self, purpose: str) -> None:
        if not self.exists():
            raise EntryNotFound("The vault does not exist.")
        if self._ask(purpose) != self._passphrase:
            raise AuthenticationError()

    def export_attachment(self, entry: str, attachment: str) -> bytes:
        self._authenticate("export")
        try:
            return self._attachments[(entry, attachment)]
        except KeyError:
            raise EntryNotFound(f"No attachment '{attachment}' on entry '{entry}'.")

    def import_attachment(self, entry: str, attachment: str, payload: bytes) -> None:
        self._authenticate("import")
        self._attachments[(entry, attachment)] = bytes(payload)
