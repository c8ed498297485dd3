# src/sealenv/keystore.py
"""Custody of the encryption keypair: on disk, or only inside the vault."""

import logging
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .agekeys import KeyGenerator
from .config import CustodyMode
from .document import DocumentStore, SecretDocument
from .errors import ConfigError, KeyNotFound, RotationIncomplete, SealEnvError
from .fs import atomic_write, check_private_mode
from .material import Keypair, SecretMaterial
from .registry import RecipientRegistry
from .vault import VaultAdapter

logger = logging.getLogger(__name__)

DEFAULT_ENTRY = "SOPS-age-encryption-key"
DEFAULT_ATTACHMENT = "age-key.txt"


class KeyStore:
    """
    Creates, stores, resolves and rotates keypairs.

    With CustodyMode.ON_DISK the key file at `key_path` is authoritative and
    the vault holds a backup. With CustodyMode.VAULT_ONLY the vault
    attachment is the only durable copy and key material exists solely in
    memory for the duration of a `resolve` block.
    """

    def __init__(
        self,
        generator: KeyGenerator,
        key_path: Path,
        vault: Optional[VaultAdapter] = None,
        entry: str = DEFAULT_ENTRY,
        attachment: str = DEFAULT_ATTACHMENT,
    ):
        self.generator = generator
        self.key_path = Path(key_path)
        self.vault = vault
        self.entry = entry
        self.attachment = attachment

    def require_vault(self) -> VaultAdapter:
        if self.vault is None:
            raise ConfigError("No vault is configured for key backup.")
        return self.vault

    def generate(self) -> Keypair:
        """Create a fresh keypair; raises GenerationError if the backend is unavailable."""
        return self.generator.generate()

    def public_identifiers(self, material: SecretMaterial) -> List[str]:
        return self.generator.public_identifiers(material)

    def has_disk_key(self) -> bool:
        return self.key_path.is_file()

    def has_vault_key(self) -> bool:
        """Whether the vault already holds a key attachment."""
        return self.vault is not None and self.vault.has_attachment(self.entry, self.attachment)

    def _read_disk(self) -> SecretMaterial:
        if not self.key_path.is_file():
            raise KeyNotFound(
                f"No key found at '{self.key_path}'. Generate one with 'sealenv generate-key' "
                f"or restore it with 'sealenv restore-key --from-vault'."
            )
        check_private_mode(self.key_path)
        try:
            return SecretMaterial(self.key_path.read_bytes())
        except OSError as e:
            raise KeyNotFound(f"Cannot read the key at '{self.key_path}': {e.strerror}") from e

    def _read_vault(self) -> SecretMaterial:
        return SecretMaterial(self.require_vault().export_attachment(self.entry, self.attachment))

    @contextmanager
    def resolve(self, mode: CustodyMode) -> Iterator[SecretMaterial]:
        """
        Yield the active key material for the length of the block.

        The buffer is zeroized when the block exits, whether it succeeds or
        raises.

        Raises:
            KeyNotFound: No key file (OnDisk) or no attachment (VaultOnly).
            KeyPermissionError: The key file is group/world accessible.
            AuthenticationError: Wrong vault passphrase.
        """
        material = self._read_disk() if mode == CustodyMode.ON_DISK else self._read_vault()
        try:
            if not material.identities():
                raise KeyNotFound("The stored key material contains no age identity.")
            yield material
        finally:
            material.zeroize()

    def save(self, material: SecretMaterial, mode: CustodyMode) -> None:
        """Persist key material where `mode` says it durably lives."""
        if mode == CustodyMode.ON_DISK:
            self.key_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            atomic_write(self.key_path, material.reveal(), mode=0o600)
            logger.info("Key written to %s", self.key_path)
        else:
            self.require_vault().import_attachment(self.entry, self.attachment, material.reveal())
            logger.info("Key stored in vault entry %s", self.entry)
            if self.key_path.exists():
                logger.warning(
                    "Vault-only custody is active but a key file still exists at %s", self.key_path
                )

    def backup_to_vault(self) -> None:
        """Copy the on-disk key into the vault attachment."""
        vault = self.require_vault()
        with self.resolve(CustodyMode.ON_DISK) as material:
            vault.import_attachment(self.entry, self.attachment, material.reveal())
        logger.info("Key backed up to %s", vault.location)

    def restore_from_vault(self, mode: CustodyMode) -> List[str]:
        """
        Fetch the key from the vault; with OnDisk custody write it to the key
        path. Returns the public identifiers of the restored key.
        """
        with self.resolve(CustodyMode.VAULT_ONLY) as material:
            identifiers = self.public_identifiers(material)
            if mode == CustodyMode.ON_DISK:
                self.save(material, mode)
        logger.info("Key restored from vault (%d identities)", len(identifiers))
        return identifiers

    def import_key_file(self, path: Path, mode: CustodyMode) -> List[str]:
        """Adopt an existing age key file as the active key."""
        with SecretMaterial(Path(path).read_bytes()) as material:
            if not material.identities():
                raise KeyNotFound(f"'{path}' contains no age identity.")
            identifiers = self.public_identifiers(material)
            self.save(material, mode)
        return identifiers

    def _reseal_all(
        self,
        documents: Sequence[DocumentStore],
        material: SecretMaterial,
        recipients: List[str],
        verify_with: SecretMaterial,
    ) -> None:
        """
        Re-encrypt every document to `recipients` and write them only after
        each new ciphertext decrypts, with `verify_with`, to the same variables.
        """
        with ExitStack() as stack:
            for store in documents:
                stack.enter_context(store.locked())

            staged: List[tuple[DocumentStore, SecretDocument]] = []
            for store in documents:
                mapping = store.decrypt(material)
                new_doc = store.codec.encrypt_document(mapping, recipients)
                if store.codec.decrypt_document(new_doc, verify_with) != mapping:
                    raise RotationIncomplete(f"Verification of re-encrypted '{store.path}' failed.")
                staged.append((store, new_doc))

            for store, new_doc in staged:
                store.write(new_doc)

    def rotate(
        self,
        new_keypair: Keypair,
        mode: CustodyMode,
        documents: Sequence[DocumentStore],
        registry: RecipientRegistry,
    ) -> None:
        """
        Replace the active key with `new_keypair`.

        The durable key store holds both the old and the new identity until
        every document has been re-encrypted and verified with the new key
        alone; only then is the old identity discarded.

        Raises:
            RotationIncomplete: If any step fails. The old key stays resolvable.
        """
        with self.resolve(mode) as old:
            old_identifiers = self.public_identifiers(old)
            with old.combined_with(new_keypair.secret_material) as both:
                try:
                    self.save(both, mode)
                except SealEnvError as e:
                    raise RotationIncomplete(f"Could not stage the new key: {e.args[0]}") from e

            updated = registry.copy()
            updated.add(new_keypair.public_identifier)
            for identifier in old_identifiers:
                updated.deactivate(identifier)

            try:
                self._reseal_all(documents, old, updated.active(), new_keypair.secret_material)
                updated.save()
            except RotationIncomplete:
                raise
            except SealEnvError as e:
                raise RotationIncomplete(
                    f"Re-encryption failed, previous key retained alongside the new one: {e.args[0]}"
                ) from e
            registry.entries = updated.entries

        try:
            self.save(new_keypair.secret_material, mode)
        except SealEnvError as e:
            raise RotationIncomplete(
                f"Documents were re-encrypted but the previous key could not be discarded: {e.args[0]}"
            ) from e
        logger.info("Rotated key to %s", new_keypair.public_identifier)

    def add_recipient(
        self,
        identifier: str,
        mode: CustodyMode,
        documents: Sequence[DocumentStore],
        registry: RecipientRegistry,
    ) -> None:
        """Authorise an additional recipient and re-encrypt documents to it."""
        updated = registry.copy()
        updated.add(identifier)
        with self.resolve(mode) as material:
            self._reseal_all(documents, material, updated.active(), material)
        updated.save()
        registry.entries = updated.entries
        logger.info("Added recipient %s", identifier)
