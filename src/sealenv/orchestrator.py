# src/sealenv/orchestrator.py
"""First-time and restore-from-backup setup flows."""

import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from . import project, tools
from .config import CustodyMode
from .document import DocumentStore
from .errors import EntryNotFound, SealEnvError, SetupHalted, WriteError
from .keystore import KeyStore
from .material import Keypair
from .prompt import PassphrasePrompter
from .registry import RecipientRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SetupState(str, Enum):
    INIT = "Init"
    TOOLS_VERIFIED = "ToolsVerified"
    KEY_READY = "KeyReady"
    VAULT_BACKED = "VaultBacked"
    DOCUMENT_READY = "DocumentReady"
    KEY_RESTORED = "KeyRestored"
    DOCUMENT_PRESENT_CHECK = "DocumentPresentCheck"
    TESTED = "Tested"
    COMPLETE = "Complete"


class SetupOrchestrator:
    """
    Drives the setup flows as a guarded state machine.

    New installation:
        Init -> ToolsVerified -> KeyReady -> VaultBacked -> DocumentReady
        -> Tested -> Complete
    Restore from backup:
        Init -> ToolsVerified -> KeyRestored -> DocumentPresentCheck
        -> Tested -> Complete

    A failing step raises SetupHalted carrying the last completed state; the
    flow never falls back to the other mode.
    """

    def __init__(
        self,
        keystore: KeyStore,
        store: DocumentStore,
        registry: RecipientRegistry,
        prompter: PassphrasePrompter,
        custody: CustodyMode,
        template: Optional[Dict[str, str]] = None,
        required_tools: Iterable[str] = (),
    ):
        self.keystore = keystore
        self.store = store
        self.registry = registry
        self.prompter = prompter
        self.custody = custody
        self.template = dict(template or {})
        self.required_tools = list(dict.fromkeys(required_tools))
        self.state = SetupState.INIT
        self.history: List[SetupState] = [SetupState.INIT]
        self.template_path = None

    def _advance(self, target: SetupState, step: str, action: Callable[[], T]) -> T:
        logger.info("Setup step '%s' (from %s)", step, self.state.value)
        try:
            result = action()
        except SealEnvError as e:
            logger.error("Setup step '%s' failed: %s", step, e.__class__.__name__)
            raise SetupHalted(self.state.value, step, e) from e
        self.state = target
        self.history.append(target)
        return result

    # -- steps shared by both flows --

    def _verify_tools(self) -> None:
        tools.verify_tools(self.required_tools)

    def _round_trip(self) -> int:
        with self.keystore.resolve(self.custody) as material:
            return len(self.store.decrypt(material))

    def _write_template(self) -> None:
        self.template_path = project.write_template(self.registry.secrets_dir, self.store.path)

    # -- new installation --

    def _generate_key(self, create_vault: bool) -> Keypair:
        if self.custody == CustodyMode.ON_DISK and self.keystore.has_disk_key():
            raise WriteError(
                f"A key already exists at '{self.keystore.key_path}'. "
                "Use 'sealenv setup --restore-from-backup' or 'sealenv rotate' instead."
            )
        # A fresh vault is empty; an existing one may hold the only copy of a key.
        if not create_vault and self.keystore.has_vault_key():
            raise WriteError(
                f"The vault at '{self.keystore.vault.location}' already holds a key in entry "
                f"'{self.keystore.entry}'. Use 'sealenv setup --restore-from-backup' to recover it "
                "or 'sealenv rotate' to replace it."
            )
        keypair = self.keystore.generate()
        if self.custody == CustodyMode.ON_DISK:
            self.keystore.save(keypair.secret_material, CustodyMode.ON_DISK)
        return keypair

    def _back_up(self, keypair: Keypair, create_vault: bool) -> None:
        vault = self.keystore.require_vault()
        if create_vault:
            vault.create()
        elif not vault.exists():
            raise EntryNotFound(
                f"No vault at '{vault.location}'. Rerun with --create-vault to create one."
            )
        if self.custody == CustodyMode.ON_DISK:
            self.keystore.backup_to_vault()
        else:
            self.keystore.save(keypair.secret_material, CustodyMode.VAULT_ONLY)

    def _create_document(self, public_identifier: str) -> None:
        self.registry.add(public_identifier)
        self.registry.save()
        if self.store.exists() and not self.prompter.confirm(
            f"A secret document already exists at {self.store.path}. Overwrite it?", default=False
        ):
            logger.info("Keeping existing secret document %s", self.store.path)
            return
        self.store.create(self.template, self.registry.active(), overwrite=True)

    def run_new(self, create_vault: bool = False) -> List[SetupState]:
        """Set up from scratch: new key, vault backup and a template document."""
        self._advance(SetupState.TOOLS_VERIFIED, "verify tools", self._verify_tools)
        keypair = self._advance(
            SetupState.KEY_READY, "generate key", lambda: self._generate_key(create_vault)
        )
        with keypair.secret_material:
            self._advance(
                SetupState.VAULT_BACKED, "back up key", lambda: self._back_up(keypair, create_vault)
            )
        self._advance(
            SetupState.DOCUMENT_READY,
            "create document",
            lambda: self._create_document(keypair.public_identifier),
        )
        self._advance(SetupState.TESTED, "round-trip test", self._round_trip)
        self._advance(SetupState.COMPLETE, "write project template", self._write_template)
        logger.info("New installation complete for %s", keypair.public_identifier)
        return self.history

    # -- restore from backup --

    def _restore_key(self) -> None:
        if self.custody == CustodyMode.ON_DISK and self.keystore.has_disk_key():
            if not self.prompter.confirm(
                f"Replace the existing key at {self.keystore.key_path} with the vault backup?",
                default=False,
            ):
                raise WriteError(f"Kept the existing key at '{self.keystore.key_path}'.")
        for identifier in self.keystore.restore_from_vault(self.custody):
            self.registry.add(identifier)
        self.registry.save()

    def _check_document(self) -> None:
        self.store.read()

    def run_restore(self) -> List[SetupState]:
        """Recover the key from the vault and prove the existing document opens."""
        self._advance(SetupState.TOOLS_VERIFIED, "verify tools", self._verify_tools)
        self._advance(SetupState.KEY_RESTORED, "restore key", self._restore_key)
        self._advance(SetupState.DOCUMENT_PRESENT_CHECK, "check document", self._check_document)
        self._advance(SetupState.TESTED, "round-trip test", self._round_trip)
        self._advance(SetupState.COMPLETE, "write project template", self._write_template)
        return self.history
