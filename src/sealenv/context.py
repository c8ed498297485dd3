# src/sealenv/context.py
"""Builds the configured collaborators for the CLI."""

import os
from pathlib import Path
from typing import List, Optional

from .agekeys import AgeKeygenGenerator, KeyGenerator, NativeKeyGenerator
from .codec import SecretFileCodec
from .codec.native import NativeCodec
from .codec.sops import SopsCodec
from .config import SealEnvConfig
from .document import DocumentStore
from .keystore import KeyStore
from .prompt import PassphrasePrompter, RichPrompter, StaticPrompter
from .registry import RecipientRegistry
from .session import SessionLoader
from .vault import VaultAdapter
from .vault.filevault import FileVault
from .vault.keepassxc import KeePassXCVault

# Headless runs (CI, scripts) supply the vault passphrase here instead of a TTY.
PASSPHRASE_ENV = "SEALENV_VAULT_PASSPHRASE"


def get_prompter(cfg: SealEnvConfig, assume_yes: bool = False) -> PassphrasePrompter:
    passphrase = os.environ.get(PASSPHRASE_ENV)
    if passphrase:
        return StaticPrompter(passphrase, answer=assume_yes)
    return RichPrompter(timeout=cfg.timeouts.prompt)


def get_generator(cfg: SealEnvConfig) -> KeyGenerator:
    if cfg.backend == "native":
        return NativeKeyGenerator()
    return AgeKeygenGenerator(timeout=cfg.timeouts.tool)


def get_codec(cfg: SealEnvConfig) -> SecretFileCodec:
    if cfg.backend == "native":
        return NativeCodec()
    return SopsCodec(timeout=cfg.timeouts.tool)


def get_vault(cfg: SealEnvConfig, prompter: PassphrasePrompter) -> VaultAdapter:
    if cfg.vault.kind == "file":
        return FileVault(cfg.vault_db, prompter)
    return KeePassXCVault(cfg.vault_db, prompter, timeout=cfg.timeouts.tool)


def get_keystore(cfg: SealEnvConfig, prompter: PassphrasePrompter) -> KeyStore:
    return KeyStore(
        get_generator(cfg),
        cfg.key_file,
        vault=get_vault(cfg, prompter),
        entry=cfg.vault.entry,
        attachment=cfg.vault.attachment,
    )


def get_document_store(cfg: SealEnvConfig, path: Optional[Path] = None) -> DocumentStore:
    return DocumentStore(path or cfg.document_path, get_codec(cfg), lock_timeout=cfg.timeouts.lock)


def get_registry(cfg: SealEnvConfig) -> RecipientRegistry:
    return RecipientRegistry.load(cfg.secrets_dir)


def get_session_loader(cfg: SealEnvConfig, keystore: KeyStore) -> SessionLoader:
    return SessionLoader(
        keystore,
        get_codec(cfg),
        cfg.custody,
        cfg.document_path,
        lock_timeout=cfg.timeouts.lock,
    )


def required_tools(keystore: KeyStore, codec: SecretFileCodec) -> List[str]:
    """External binaries the configured backends shell out to."""
    found = list(keystore.generator.required_tools) + list(codec.required_tools)
    if keystore.vault is not None:
        found += keystore.vault.required_tools
    return list(dict.fromkeys(found))
