# src/sealenv/codec/sops.py: sops-age codec.
# This module implements the 'SecretFileCodec' interface on top of the 'sops'
# binary with its age backend and dotenv store. Plaintext only ever travels
# through pipes; the key is handed to sops through SOPS_AGE_KEY.

import logging
from typing import Dict, List, Mapping, Sequence

from . import SecretFileCodec, _as_list
from .. import dotenv, shell
from ..document import SOPS_FORMAT, SecretDocument
from ..errors import DecryptionError, IntegrityError, SealEnvError, ValidationError, WriteError
from ..material import SecretMaterial

logger = logging.getLogger(__name__)

_DOTENV_ARGS = ["--input-type", "dotenv", "--output-type", "dotenv"]
_RECIPIENT_PREFIX = "sops_age__list_"
_RECIPIENT_SUFFIX = "__map_recipient="

# sops exit codes (cmd/sops/codes)
_MAC_MISMATCH = 51
_COULD_NOT_RETRIEVE_KEY = 128

_KEY_MISMATCH_MARKERS = (
    "failed to get the data key",
    "no identity matched",
    "could not decrypt the data key",
)


class SopsCodec(SecretFileCodec):
    """Encrypts dotenv documents with `sops --age`."""

    format = SOPS_FORMAT
    required_tools = ["sops"]

    def __init__(self, timeout: float = shell.DEFAULT_TIMEOUT):
        self.timeout = timeout

    def encrypt_document(
        self, mapping: Mapping[str, str], recipients: str | Sequence[str]
    ) -> SecretDocument:
        recipient_list = _as_list(recipients)
        if not recipient_list:
            raise ValidationError("At least one recipient is required to encrypt a document.")

        result = shell.run_tool(
            ["sops", "--encrypt", *_DOTENV_ARGS, "--age", ",".join(recipient_list), "/dev/stdin"],
            input=dotenv.render(mapping).encode("utf-8"),
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise WriteError(f"sops could not encrypt the document: {shell.stderr_text(result)}")
        return SecretDocument.from_bytes(result.stdout)

    def recipients(self, doc: SecretDocument) -> List[str]:
        found = []
        for line in doc.blob.decode("utf-8", errors="replace").splitlines():
            if line.startswith(_RECIPIENT_PREFIX) and _RECIPIENT_SUFFIX in line:
                found.append(line.split("=", 1)[1].strip())
        if not found:
            raise IntegrityError("The sops document lists no age recipients.")
        return found

    def decrypt_document(self, doc: SecretDocument, material: SecretMaterial) -> Dict[str, str]:
        if doc.format != SOPS_FORMAT:
            raise IntegrityError(f"Document format '{doc.format}' cannot be opened by sops.")
        if not material.identities():
            raise DecryptionError("The key material contains no age identity.")

        result = shell.run_tool(
            ["sops", "--decrypt", *_DOTENV_ARGS, "/dev/stdin"],
            input=doc.blob,
            env={"SOPS_AGE_KEY": material.reveal().decode("utf-8")},
            timeout=self.timeout,
        )
        if result.returncode != 0:
            stderr = shell.stderr_text(result)
            lowered = stderr.lower()
            if result.returncode == _COULD_NOT_RETRIEVE_KEY or any(m in lowered for m in _KEY_MISMATCH_MARKERS):
                raise DecryptionError("None of the available keys is a recipient of this document.")
            if result.returncode == _MAC_MISMATCH:
                raise IntegrityError("Secret document failed its MAC check (tampered or corrupt).")
            raise IntegrityError(f"sops could not decrypt the document (exit {result.returncode}).")

        try:
            return dotenv.parse(result.stdout.decode("utf-8"))
        except (UnicodeDecodeError, SealEnvError) as e:
            raise IntegrityError("Decrypted content is not a valid dotenv document.") from e
