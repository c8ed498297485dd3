# src/sealenv/vault/filevault.py
"""A single-file vault encrypted under an Argon2id-derived key.

Layout: MAGIC (8) | time_cost, memory_cost, parallelism (3 x uint32) |
salt (16) | nonce (12) | ChaCha20-Poly1305 ciphertext of a JSON object
{entry: {attachment: base64 payload}}. The header is bound as associated data.
"""

import base64
import logging
import os
import struct
from pathlib import Path
from typing import Dict

import orjson
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from . import VaultAdapter
from ..errors import AuthenticationError, EntryNotFound, WriteError
from ..fs import atomic_write
from ..prompt import PassphrasePrompter

logger = logging.getLogger(__name__)

MAGIC = b"SEALVLT1"
_PARAMS = struct.Struct(">III")
_HEADER_LEN = len(MAGIC) + _PARAMS.size + 16 + 12

Attachments = Dict[str, Dict[str, str]]


def derive_key(passphrase: str, salt: bytes, time_cost: int, memory_cost: int, parallelism: int) -> bytes:
    """Derive a 32-byte key using Argon2id."""
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=32,
        type=Type.ID,
    )


class FileVault(VaultAdapter):
    """Attachments in one encrypted file; no external binary needed."""

    def __init__(
        self,
        db_path: Path,
        prompter: PassphrasePrompter,
        time_cost: int = 4,
        memory_cost: int = 65536,
        parallelism: int = 2,
    ):
        super().__init__(prompter)
        self.db_path = Path(db_path)
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism

    @property
    def location(self) -> str:
        return str(self.db_path)

    def exists(self) -> bool:
        return self.db_path.is_file()

    def _seal(self, attachments: Attachments, passphrase: str) -> bytes:
        salt = os.urandom(16)
        nonce = os.urandom(12)
        header = MAGIC + _PARAMS.pack(self.time_cost, self.memory_cost, self.parallelism) + salt + nonce
        key = derive_key(passphrase, salt, self.time_cost, self.memory_cost, self.parallelism)
        plaintext = orjson.dumps(attachments, option=orjson.OPT_SORT_KEYS)
        return header + ChaCha20Poly1305(key).encrypt(nonce, plaintext, header)

    def _open(self, passphrase: str) -> Attachments:
        if not self.exists():
            raise EntryNotFound(f"Vault database not found at '{self.db_path}'.")
        data = self.db_path.read_bytes()
        if len(data) < _HEADER_LEN or not data.startswith(MAGIC):
            raise AuthenticationError(f"Cannot open vault '{self.db_path}'.")

        header = data[:_HEADER_LEN]
        time_cost, memory_cost, parallelism = _PARAMS.unpack_from(data, len(MAGIC))
        offset = len(MAGIC) + _PARAMS.size
        salt = data[offset:offset + 16]
        nonce = data[offset + 16:_HEADER_LEN]

        key = derive_key(passphrase, salt, time_cost, memory_cost, parallelism)
        try:
            plaintext = ChaCha20Poly1305(key).decrypt(nonce, data[_HEADER_LEN:], header)
        except InvalidTag:
            # Wrong passphrase and a damaged file are indistinguishable here.
            raise AuthenticationError(f"Cannot open vault '{self.db_path}': wrong passphrase or damaged file.")
        return orjson.loads(plaintext)

    def create(self) -> None:
        if self.exists():
            raise WriteError(f"Vault already exists at '{self.db_path}'.")
        passphrase = self.prompter.ask_passphrase(
            f"New master passphrase for {self.location}", confirm=True
        )
        atomic_write(self.db_path, self._seal({}, passphrase))
        logger.info("Created vault %s", self.db_path)

    def export_attachment(self, entry: str, attachment: str) -> bytes:
        attachments = self._open(self._ask("export"))
        try:
            return base64.b64decode(attachments[entry][attachment])
        except KeyError:
            raise EntryNotFound(f"No attachment '{attachment}' on entry '{entry}'.")

    def import_attachment(self, entry: str, attachment: str, payload: bytes) -> None:
        passphrase = self._ask("import")
        attachments = self._open(passphrase)
        attachments.setdefault(entry, {})[attachment] = base64.b64encode(payload).decode("ascii")
        atomic_write(self.db_path, self._seal(attachments, passphrase))
        logger.info("Stored attachment %s on entry %s", attachment, entry)
