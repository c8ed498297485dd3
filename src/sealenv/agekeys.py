# src/sealenv/agekeys.py
"""Key generation backends producing age X25519 identities.

Two interchangeable generators are provided: one shells out to
`age-keygen`, the other uses the `cryptography` X25519 implementation and
encodes keys with Bech32 exactly as age does, so keys produced by either can
be used with `age`, `sops` and the native codec alike.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Sequence, Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from . import shell
from .errors import GenerationError, IntegrityError, ToolUnavailable
from .material import IDENTITY_PREFIX, PUBLIC_KEY_COMMENT, Keypair, SecretMaterial

logger = logging.getLogger(__name__)

RECIPIENT_HRP = "age"
IDENTITY_HRP = "age-secret-key-"

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]


# --- Bech32 (BIP-173), without the 90 character limit, as used by age ---

def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATOR[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convert_bits(data: Sequence[int], from_bits: int, to_bits: int, pad: bool) -> List[int]:
    acc = 0
    bits = 0
    out = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError("invalid data range")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ValueError("invalid padding")
    return out


def bech32_encode(hrp: str, payload: bytes) -> str:
    data = _convert_bits(payload, 8, 5, True)
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_CHARSET[d] for d in data + checksum)


def bech32_decode(text: str) -> Tuple[str, bytes]:
    """Decode a Bech32 string; raises ValueError on any malformation."""
    if text.lower() != text and text.upper() != text:
        raise ValueError("mixed case")
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        raise ValueError("missing separator or checksum")
    hrp = text[:pos]
    try:
        data = [_CHARSET.index(c) for c in text[pos + 1:]]
    except ValueError:
        raise ValueError("invalid character") from None
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("bad checksum")
    return hrp, bytes(_convert_bits(data[:-6], 5, 8, False))


# --- age key encoding ---

def encode_identity(scalar: bytes) -> str:
    return bech32_encode(IDENTITY_HRP, scalar).upper()


def encode_recipient(public: bytes) -> str:
    return bech32_encode(RECIPIENT_HRP, public)


def decode_identity(identity: str) -> bytes:
    try:
        hrp, scalar = bech32_decode(identity)
    except ValueError as e:
        raise IntegrityError(f"Malformed age identity: {e}") from e
    if hrp != IDENTITY_HRP or len(scalar) != 32:
        raise IntegrityError("Malformed age identity.")
    return scalar


def decode_recipient(recipient: str) -> bytes:
    try:
        hrp, public = bech32_decode(recipient)
    except ValueError as e:
        raise IntegrityError(f"Malformed age recipient '{recipient}': {e}") from e
    if hrp != RECIPIENT_HRP or len(public) != 32:
        raise IntegrityError(f"Malformed age recipient '{recipient}'.")
    return public


def is_recipient(text: str) -> bool:
    try:
        decode_recipient(text)
    except IntegrityError:
        return False
    return True


def recipient_for_identity(identity: str) -> str:
    """Derive the age recipient of an identity in-process."""
    private_key = X25519PrivateKey.from_private_bytes(decode_identity(identity))
    return encode_recipient(private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw))


def render_key_file(identity: str, recipient: str) -> str:
    """Render a key file in the layout written by age-keygen."""
    created = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"# created: {created}\n{PUBLIC_KEY_COMMENT} {recipient}\n{identity}\n"


# --- Generators ---

class KeyGenerator(ABC):
    """Crypto backend the KeyStore uses to create and inspect keypairs."""

    required_tools: List[str] = []

    @abstractmethod
    def generate(self) -> Keypair:
        """Create a fresh keypair."""

    @abstractmethod
    def public_identifier(self, identity: str) -> str:
        """Return the recipient string for a single identity line."""

    def public_identifiers(self, material: SecretMaterial) -> List[str]:
        """Return the recipients of every identity in `material`, in order."""
        return [self.public_identifier(identity) for identity in material.identities()]


class NativeKeyGenerator(KeyGenerator):
    """Generates age X25519 keys with the `cryptography` package."""

    def generate(self) -> Keypair:
        private_key = X25519PrivateKey.generate()
        scalar = private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        identity = encode_identity(scalar)
        recipient = encode_recipient(public)
        logger.info("Generated new key for recipient %s", recipient)
        return Keypair(recipient, SecretMaterial(render_key_file(identity, recipient)))

    def public_identifier(self, identity: str) -> str:
        return recipient_for_identity(identity)


class AgeKeygenGenerator(KeyGenerator):
    """Generates keys by running the `age-keygen` binary."""

    required_tools = ["age-keygen"]

    def __init__(self, timeout: float = shell.DEFAULT_TIMEOUT):
        self.timeout = timeout

    def generate(self) -> Keypair:
        try:
            result = shell.run_tool(["age-keygen"], timeout=self.timeout)
        except ToolUnavailable as e:
            raise GenerationError(f"Cannot generate a key: {e.args[0]}") from e
        if result.returncode != 0:
            raise GenerationError(f"age-keygen failed: {shell.stderr_text(result)}")

        material = SecretMaterial(result.stdout)
        declared = material.declared_public_keys()
        if len(declared) != 1 or len(material.identities()) != 1:
            material.zeroize()
            raise GenerationError("age-keygen produced unexpected output.")
        logger.info("Generated new key for recipient %s", declared[0])
        return Keypair(declared[0], material)

    def public_identifier(self, identity: str) -> str:
        if not identity.startswith(IDENTITY_PREFIX):
            raise IntegrityError("Malformed age identity.")
        result = shell.run_tool(
            ["age-keygen", "-y"], input=(identity + "\n").encode(), timeout=self.timeout
        )
        if result.returncode != 0:
            raise IntegrityError(f"age-keygen could not read the identity: {shell.stderr_text(result)}")
        return result.stdout.decode().strip()
