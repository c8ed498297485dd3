# tests/unit/conftest.py
from pathlib import Path

import pytest

from sealenv import paths
from sealenv.agekeys import NativeKeyGenerator
from sealenv.codec.native import NativeCodec
from sealenv.document import DocumentStore
from sealenv.keystore import KeyStore
from sealenv.prompt import StaticPrompter
from sealenv.registry import RecipientRegistry
from sealenv.vault import InMemoryVault

PASSPHRASE = "correct horse battery staple"


@pytest.fixture(autouse=True)
def runtime_dir(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep scratch directories inside a per-test temporary directory."""
    runtime = tmp_path_factory.mktemp("runtime")
    runtime.chmod(0o700)
    monkeypatch.setattr(paths, "get_runtime_dir", lambda: runtime)
    monkeypatch.delenv("SOPS_AGE_KEY_FILE", raising=False)
    monkeypatch.delenv("SEALENV_CONFIG", raising=False)
    monkeypatch.delenv("SEALENV_VAULT_PASSPHRASE", raising=False)
    return runtime


@pytest.fixture
def generator() -> NativeKeyGenerator:
    return NativeKeyGenerator()


@pytest.fixture
def codec() -> NativeCodec:
    return NativeCodec()


@pytest.fixture
def prompter() -> StaticPrompter:
    return StaticPrompter(PASSPHRASE, answer=True)


@pytest.fixture
def vault(prompter: StaticPrompter) -> InMemoryVault:
    return InMemoryVault(prompter, passphrase=PASSPHRASE)


@pytest.fixture
def keystore(tmp_path: Path, generator: NativeKeyGenerator, vault: InMemoryVault) -> KeyStore:
    return KeyStore(generator, tmp_path / "age" / "key.txt", vault=vault)


@pytest.fixture
def secrets_dir(tmp_path: Path) -> Path:
    path = tmp_path / "secrets"
    path.mkdir()
    return path


@pytest.fixture
def registry(secrets_dir: Path) -> RecipientRegistry:
    return RecipientRegistry(secrets_dir)


@pytest.fixture
def store(secrets_dir: Path, codec: NativeCodec) -> DocumentStore:
    return DocumentStore(secrets_dir / "secrets.env", codec, lock_timeout=0.2)
