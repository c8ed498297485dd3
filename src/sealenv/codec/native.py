# src/sealenv/codec/native.py: In-process document sealing.
# Documents are sealed with a random data key under ChaCha20-Poly1305; the data
# key is wrapped once per recipient with an ephemeral X25519 exchange and HKDF,
# the same construction age uses. The recipient list is bound to the payload as
# associated data.

import base64
import binascii
import logging
import os
from typing import Dict, List, Mapping, Sequence

import orjson
import yaml
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from . import SecretFileCodec, _as_list
from .. import agekeys, dotenv
from ..document import NATIVE_FORMAT, NATIVE_MARKER, SecretDocument
from ..errors import DecryptionError, IntegrityError, SealEnvError, ValidationError
from ..material import SecretMaterial

logger = logging.getLogger(__name__)

_WRAP_INFO = b"sealenv-v1/wrap"
_ZERO_NONCE = b"\0" * 12


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _raw_public(key) -> bytes:
    return key.public_bytes(Encoding.Raw, PublicFormat.Raw)


def _wrap_key(shared: bytes, ephemeral: bytes, recipient: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral + recipient,
        info=_WRAP_INFO,
    ).derive(shared)


def _associated_data(stanzas: List[Dict[str, str]]) -> bytes:
    header = {"format": NATIVE_FORMAT, "recipients": stanzas}
    return orjson.dumps(header, option=orjson.OPT_SORT_KEYS)


class NativeCodec(SecretFileCodec):
    """Seals dotenv documents without any external binary."""

    format = NATIVE_FORMAT

    def encrypt_document(
        self, mapping: Mapping[str, str], recipients: str | Sequence[str]
    ) -> SecretDocument:
        recipient_list = _as_list(recipients)
        if not recipient_list:
            raise ValidationError("At least one recipient is required to encrypt a document.")

        plaintext = dotenv.render(mapping).encode("utf-8")
        data_key = os.urandom(32)
        stanzas = []
        for recipient in recipient_list:
            try:
                public = agekeys.decode_recipient(recipient)
            except IntegrityError as e:
                raise ValidationError(e.args[0]) from e
            ephemeral = X25519PrivateKey.generate()
            ephemeral_public = _raw_public(ephemeral.public_key())
            shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(public))
            wrapped = ChaCha20Poly1305(_wrap_key(shared, ephemeral_public, public)).encrypt(
                _ZERO_NONCE, data_key, None
            )
            stanzas.append({"recipient": recipient, "epk": _b64(ephemeral_public), "key": _b64(wrapped)})

        nonce = os.urandom(12)
        ciphertext = ChaCha20Poly1305(data_key).encrypt(nonce, plaintext, _associated_data(stanzas))
        body = yaml.safe_dump(
            {"recipients": stanzas, "nonce": _b64(nonce), "data": _b64(ciphertext)},
            sort_keys=False,
        )
        logger.debug("Sealed %d variables for %d recipients", len(mapping), len(stanzas))
        return SecretDocument(NATIVE_FORMAT, NATIVE_MARKER + body.encode("ascii"))

    def _parse(self, doc: SecretDocument) -> dict:
        if doc.format != NATIVE_FORMAT or not doc.blob.startswith(NATIVE_MARKER):
            raise IntegrityError(f"Document format '{doc.format}' cannot be opened by the native codec.")
        try:
            body = yaml.safe_load(doc.blob[len(NATIVE_MARKER):])
            stanzas = [
                {"recipient": str(s["recipient"]), "epk": str(s["epk"]), "key": str(s["key"])}
                for s in body["recipients"]
            ]
            return {"recipients": stanzas, "nonce": str(body["nonce"]), "data": str(body["data"])}
        except (yaml.YAMLError, KeyError, TypeError) as e:
            raise IntegrityError(f"Secret document is malformed: {e.__class__.__name__}") from e

    def recipients(self, doc: SecretDocument) -> List[str]:
        return [stanza["recipient"] for stanza in self._parse(doc)["recipients"]]

    def _unwrap(self, header: dict, identities: List[str]) -> bytes:
        """
        Recover the data key by trying every stanza with every identity.

        Stanza labels are not authenticated until the payload is opened, so
        they only decide which error is reported when nothing unwraps.
        """
        try:
            stanzas = [
                (stanza["recipient"], _unb64(stanza["epk"]), _unb64(stanza["key"]))
                for stanza in header["recipients"]
            ]
        except (binascii.Error, ValueError) as e:
            raise IntegrityError("Secret document is malformed: bad recipient stanza.") from e
        if any(len(epk) != 32 for _, epk, _ in stanzas):
            raise IntegrityError("Secret document is malformed: bad recipient stanza.")

        addressed = False
        for identity in identities:
            try:
                private_key = X25519PrivateKey.from_private_bytes(agekeys.decode_identity(identity))
            except IntegrityError as e:
                raise DecryptionError("The key material contains a malformed identity.") from e
            public = _raw_public(private_key.public_key())
            label = agekeys.encode_recipient(public)
            for recipient, epk, wrapped in stanzas:
                addressed = addressed or recipient == label
                try:
                    shared = private_key.exchange(X25519PublicKey.from_public_bytes(epk))
                    return ChaCha20Poly1305(_wrap_key(shared, epk, public)).decrypt(
                        _ZERO_NONCE, wrapped, None
                    )
                except (InvalidTag, ValueError):
                    continue

        if addressed:
            raise IntegrityError("Secret document failed authentication (tampered or corrupt).")
        raise DecryptionError("None of the available keys is a recipient of this document.")

    def decrypt_document(self, doc: SecretDocument, material: SecretMaterial) -> Dict[str, str]:
        header = self._parse(doc)

        identities = material.identities()
        if not identities:
            raise DecryptionError("The key material contains no age identity.")

        data_key = self._unwrap(header, identities)
        try:
            plaintext = ChaCha20Poly1305(data_key).decrypt(
                _unb64(header["nonce"]),
                _unb64(header["data"]),
                _associated_data(header["recipients"]),
            )
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise IntegrityError("Secret document failed authentication (tampered or corrupt).") from e

        try:
            return dotenv.parse(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, SealEnvError) as e:
            raise IntegrityError("Decrypted content is not a valid dotenv document.") from e
