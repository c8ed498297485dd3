# src/sealenv/material.py
"""In-memory holders for key material."""

from dataclasses import dataclass, field
from typing import List

from .errors import KeyNotFound

IDENTITY_PREFIX = "AGE-SECRET-KEY-1"
PUBLIC_KEY_COMMENT = "# public key:"


class SecretMaterial:
    """
    The text of an age key file, held in a mutable buffer.

    The buffer is overwritten with zeros by `zeroize()`, which also runs when
    the object is used as a context manager. The value never shows up in
    `repr()` or `str()`.
    """

    __slots__ = ("_buffer",)

    def __init__(self, data: bytes | bytearray | str):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer = bytearray(data)

    def __enter__(self) -> "SecretMaterial":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.zeroize()

    def __repr__(self) -> str:
        return "SecretMaterial(<redacted>)"

    __str__ = __repr__

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return any(self._buffer)

    def reveal(self) -> bytes:
        """Return a copy of the raw key-file bytes."""
        return bytes(self._buffer)

    def _text(self) -> str:
        try:
            return self._buffer.decode("utf-8")
        except UnicodeDecodeError as e:
            raise KeyNotFound("The key material is not a readable age key file.") from e

    def identities(self) -> List[str]:
        """Return every age identity line contained in the material."""
        lines = self._text().splitlines()
        return [line.strip() for line in lines if line.strip().startswith(IDENTITY_PREFIX)]

    def declared_public_keys(self) -> List[str]:
        """Return recipients listed in `# public key:` comments."""
        keys = []
        for line in self._text().splitlines():
            if line.startswith(PUBLIC_KEY_COMMENT):
                keys.append(line[len(PUBLIC_KEY_COMMENT):].strip())
        return keys

    def zeroize(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0

    def combined_with(self, other: "SecretMaterial") -> "SecretMaterial":
        """Return a new key file holding this material's identities followed by `other`'s."""
        head = self.reveal()
        if head and not head.endswith(b"\n"):
            head += b"\n"
        return SecretMaterial(head + other.reveal())


@dataclass
class Keypair:
    """A public identifier together with its secret material."""
    public_identifier: str
    secret_material: SecretMaterial = field(repr=False)
