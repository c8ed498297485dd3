# src/sealenv/session.py
"""Materialising decrypted variables for the lifetime of one process."""

import logging
import shlex
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, MutableMapping, Optional

from .codec import SecretFileCodec
from .config import CustodyMode
from .document import DocumentStore
from .errors import SealEnvError, SessionLoadError
from .keystore import KeyStore

logger = logging.getLogger(__name__)


class Session(Mapping):
    """
    An immutable set of variable bindings.

    The core never writes these into os.environ; callers decide, e.g. with
    `apply()` or by passing `bindings()` as a subprocess environment.
    """

    def __init__(self, bindings: Dict[str, str]):
        self._bindings = MappingProxyType(dict(bindings))

    def __getitem__(self, name: str) -> str:
        return self._bindings[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __repr__(self) -> str:
        return f"Session(names={list(self._bindings)})"

    def names(self) -> list:
        return list(self._bindings)

    def bindings(self) -> Dict[str, str]:
        """Return a fresh, mutable copy of the variables."""
        return dict(self._bindings)

    def apply(self, environ: MutableMapping[str, str]) -> None:
        """Copy the variables into `environ` (for instance a subprocess env)."""
        environ.update(self._bindings)

    def export_script(self) -> str:
        """Render POSIX shell `export` lines suitable for `eval`."""
        return "".join(
            f"export {name}={shlex.quote(value)}\n" for name, value in self._bindings.items()
        )


class SessionLoader:
    """
    Resolves the key, decrypts the secret document and returns a Session.

    Every call re-resolves and re-decrypts; nothing is cached, so a rotated
    key or an edited document is picked up by the next load.
    """

    def __init__(
        self,
        keystore: KeyStore,
        codec: SecretFileCodec,
        custody: CustodyMode,
        default_path: Path,
        lock_timeout: float = 10.0,
    ):
        self.keystore = keystore
        self.codec = codec
        self.custody = custody
        self.default_path = Path(default_path)
        self.lock_timeout = lock_timeout

    def load(self, secret_path: Optional[Path] = None) -> Session:
        """
        Return every variable of the document, or raise.

        Raises:
            SessionLoadError: Wrapping KeyNotFound, DecryptionError,
                IntegrityError, AuthenticationError or any other failure.
                No partial set of bindings is ever returned.
        """
        store = DocumentStore(secret_path or self.default_path, self.codec, self.lock_timeout)
        try:
            doc = store.read()
            with self.keystore.resolve(self.custody) as material:
                bindings = self.codec.decrypt_document(doc, material)
        except SealEnvError as e:
            logger.info("Session load from %s failed: %s", store.path, e.__class__.__name__)
            raise SessionLoadError(e) from e
        logger.info("Loaded %d variables from %s", len(bindings), store.path)
        return Session(bindings)
