# src/sealenv/document.py
"""Encrypted secret documents and their on-disk store."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterator, Mapping, Sequence

from filelock import FileLock, Timeout

from .errors import DocumentNotFound, IntegrityError, LockTimeout, WriteError
from .fs import atomic_write
from .material import SecretMaterial

if TYPE_CHECKING:
    from .codec import SecretFileCodec

logger = logging.getLogger(__name__)

SOPS_FORMAT = "sops-dotenv"
NATIVE_FORMAT = "sealenv-v1"
NATIVE_MARKER = b"# sealenv-v1\n"


@dataclass(frozen=True)
class SecretDocument:
    """An opaque ciphertext blob tagged with the format that produced it."""
    format: str
    blob: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, data: bytes) -> "SecretDocument":
        """
        Recognise the document format from its structural metadata.

        Raises:
            IntegrityError: If the content is neither a sealenv nor a sops document.
        """
        if data.startswith(NATIVE_MARKER):
            return cls(NATIVE_FORMAT, data)
        if b"sops_version=" in data and b"sops_mac=" in data:
            return cls(SOPS_FORMAT, data)
        raise IntegrityError("Unrecognised secret document format.")


class DocumentStore:
    """
    A secret document at a fixed path.

    Every read-modify-write cycle holds an exclusive `filelock` on
    `<path>.lock` so concurrent editors cannot lose each other's updates, and
    new ciphertext replaces the file atomically.
    """

    def __init__(self, path: Path, codec: "SecretFileCodec", lock_timeout: float = 10.0):
        self.path = Path(path)
        self.codec = codec
        self.lock_timeout = lock_timeout
        self._lock = FileLock(str(self.path.with_name(self.path.name + ".lock")))

    def exists(self) -> bool:
        return self.path.is_file()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the document lock for the duration of the block."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire(timeout=self.lock_timeout)
        except Timeout:
            raise LockTimeout(
                f"Another process is modifying '{self.path}' "
                f"(lock not acquired within {self.lock_timeout:g}s)."
            )
        try:
            yield
        finally:
            self._lock.release()

    def read(self) -> SecretDocument:
        if not self.exists():
            raise DocumentNotFound(f"Secret document not found at '{self.path}'.")
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise DocumentNotFound(f"Cannot read secret document '{self.path}': {e}") from e
        return SecretDocument.from_bytes(data)

    def write(self, doc: SecretDocument) -> None:
        """Replace the stored document; caller must hold the lock."""
        if not doc.blob:
            raise WriteError("Refusing to write an empty secret document.")
        atomic_write(self.path, doc.blob)
        logger.info("Wrote secret document %s", self.path)

    def create(
        self,
        mapping: Mapping[str, str],
        recipients: Sequence[str],
        overwrite: bool = False,
    ) -> SecretDocument:
        """Encrypt `mapping` to `recipients` and store it as a new document."""
        with self.locked():
            if self.exists() and not overwrite:
                raise WriteError(f"Secret document already exists at '{self.path}'.")
            doc = self.codec.encrypt_document(mapping, recipients)
            self.write(doc)
            return doc

    def decrypt(self, material: SecretMaterial) -> Dict[str, str]:
        return self.codec.decrypt_document(self.read(), material)

    def update(
        self,
        material: SecretMaterial,
        mutator: Callable[[Dict[str, str]], None],
    ) -> SecretDocument:
        """
        Apply `mutator` to the decrypted variables and store the result.

        The file is only replaced after the new ciphertext is fully formed.
        """
        with self.locked():
            doc = self.codec.edit_in_place(self.read(), material, mutator)
            self.write(doc)
            return doc

    def set_field(self, material: SecretMaterial, key: str, value: str) -> SecretDocument:
        with self.locked():
            doc = self.codec.set_field(self.read(), material, key, value)
            self.write(doc)
            return doc

    def unset_field(self, material: SecretMaterial, key: str) -> SecretDocument:
        with self.locked():
            doc = self.codec.unset_field(self.read(), material, key)
            self.write(doc)
            return doc
