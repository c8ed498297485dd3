# src/sealenv/codec/__init__.py: Secret document codec registry.
# This package defines the 'SecretFileCodec' interface and its strategies: the
# sops-backed codec that shells out to the sops binary, and the native codec
# that seals documents in-process. The application picks one from the
# configured backend.

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Mapping, Sequence

from .. import dotenv
from ..document import SecretDocument
from ..errors import IntegrityError, ValidationError
from ..material import SecretMaterial

Mutator = Callable[[Dict[str, str]], None]


def _as_list(recipients: str | Sequence[str]) -> List[str]:
    if isinstance(recipients, str):
        return [recipients]
    return list(recipients)


class SecretFileCodec(ABC):
    """Authenticated encryption of dotenv documents."""

    format: str = ""
    required_tools: List[str] = []

    @abstractmethod
    def encrypt_document(
        self, mapping: Mapping[str, str], recipients: str | Sequence[str]
    ) -> SecretDocument:
        """Seal `mapping` so that any of `recipients` can open it."""

    @abstractmethod
    def decrypt_document(self, doc: SecretDocument, material: SecretMaterial) -> Dict[str, str]:
        """
        Open `doc` with the identities in `material`.

        Raises:
            DecryptionError: If no identity is a recipient of the document.
            IntegrityError: If the ciphertext fails authentication.
        """

    @abstractmethod
    def recipients(self, doc: SecretDocument) -> List[str]:
        """Return the public identifiers the document is sealed to."""

    def edit_in_place(
        self, doc: SecretDocument, material: SecretMaterial, mutator: Mutator
    ) -> SecretDocument:
        """
        Decrypt, let `mutator` change the variables, and re-seal to the same
        recipients. The new document is opened once more before it is
        returned. `doc` itself is immutable, so a failure at any step leaves
        the caller with the original document.
        """
        mapping = dict(self.decrypt_document(doc, material))
        mutator(mapping)
        new_doc = self.encrypt_document(mapping, self.recipients(doc))
        if self.decrypt_document(new_doc, material) != mapping:
            raise IntegrityError("The re-encrypted document does not read back the edited variables.")
        return new_doc

    def set_field(
        self, doc: SecretDocument, material: SecretMaterial, key: str, value: str
    ) -> SecretDocument:
        """Set (or overwrite) a single variable."""
        dotenv.validate_name(key)

        def _set(mapping: Dict[str, str]) -> None:
            mapping[key] = value

        return self.edit_in_place(doc, material, _set)

    def unset_field(self, doc: SecretDocument, material: SecretMaterial, key: str) -> SecretDocument:
        """Remove a variable; a missing variable is an error."""

        def _unset(mapping: Dict[str, str]) -> None:
            if key not in mapping:
                raise ValidationError(f"Variable '{key}' is not defined in the document.")
            del mapping[key]

        return self.edit_in_place(doc, material, _unset)
