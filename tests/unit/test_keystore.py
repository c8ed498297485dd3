# tests/unit/test_keystore.py
import logging
import stat
import subprocess
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from sealenv.config import CustodyMode
from sealenv.document import DocumentStore
from sealenv.errors import (
    AuthenticationError,
    KeyNotFound,
    KeyPermissionError,
    RotationIncomplete,
    WriteError,
)
from sealenv.keystore import KeyStore
from sealenv.prompt import StaticPrompter
from sealenv.vault.keepassxc import KeePassXCVault


def _install_key(keystore: KeyStore, generator, mode=CustodyMode.ON_DISK):
    keypair = generator.generate()
    keystore.save(keypair.secret_material, mode)
    return keypair


def test_resolve_missing_key(keystore):
    with pytest.raises(KeyNotFound, match="No key found"):
        with keystore.resolve(CustodyMode.ON_DISK):
            pass


def test_save_on_disk_is_private(keystore, generator):
    _install_key(keystore, generator)

    assert stat.S_IMODE(keystore.key_path.stat().st_mode) == 0o600


def test_resolve_rejects_shared_key_file(keystore, generator):
    _install_key(keystore, generator)
    keystore.key_path.chmod(0o644)

    with pytest.raises(KeyPermissionError, match="chmod 600"):
        with keystore.resolve(CustodyMode.ON_DISK):
            pass


def test_resolve_zeroizes_after_block(keystore, generator):
    keypair = _install_key(keystore, generator)

    with keystore.resolve(CustodyMode.ON_DISK) as material:
        assert keystore.public_identifiers(material) == [keypair.public_identifier]
    assert len(material) > 0
    assert not material


def test_resolve_zeroizes_on_failure(keystore, generator):
    _install_key(keystore, generator)

    with pytest.raises(RuntimeError):
        with keystore.resolve(CustodyMode.ON_DISK) as material:
            raise RuntimeError("boom")
    assert not material


def test_resolve_rejects_file_without_identity(keystore):
    keystore.key_path.parent.mkdir(parents=True)
    keystore.key_path.write_text("# just a comment\n")
    keystore.key_path.chmod(0o600)

    with pytest.raises(KeyNotFound, match="no age identity"):
        with keystore.resolve(CustodyMode.ON_DISK):
            pass


def test_vault_only_save_and_resolve(keystore, generator):
    keypair = _install_key(keystore, generator, CustodyMode.VAULT_ONLY)

    assert not keystore.key_path.exists()
    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert keystore.public_identifiers(material) == [keypair.public_identifier]


def test_vault_only_save_warns_about_key_file(keystore, generator, caplog):
    _install_key(keystore, generator)

    with caplog.at_level(logging.WARNING, logger="sealenv.keystore"):
        _install_key(keystore, generator, CustodyMode.VAULT_ONLY)

    assert "key file still exists" in caplog.text


def test_backup_and_restore(keystore, generator):
    keypair = _install_key(keystore, generator)
    original = keystore.key_path.read_bytes()
    keystore.backup_to_vault()
    keystore.key_path.unlink()

    identifiers = keystore.restore_from_vault(CustodyMode.ON_DISK)

    assert identifiers == [keypair.public_identifier]
    assert keystore.key_path.read_bytes() == original
    assert stat.S_IMODE(keystore.key_path.stat().st_mode) == 0o600


def test_restore_vault_only_writes_nothing(keystore, generator):
    keypair = _install_key(keystore, generator, CustodyMode.VAULT_ONLY)

    assert keystore.restore_from_vault(CustodyMode.VAULT_ONLY) == [keypair.public_identifier]
    assert not keystore.key_path.exists()


def test_import_key_file(keystore, generator, tmp_path: Path):
    keypair = generator.generate()
    source = tmp_path / "exported.txt"
    source.write_bytes(keypair.secret_material.reveal())

    assert keystore.import_key_file(source, CustodyMode.ON_DISK) == [keypair.public_identifier]
    assert keystore.key_path.read_bytes() == source.read_bytes()


# --- scratch handling with the keepassxc adapter ---

def _keepassxc_keystore(tmp_path: Path, generator) -> KeyStore:
    db = tmp_path / "vault.kdbx"
    db.write_bytes(b"kdbx")
    vault = KeePassXCVault(db, StaticPrompter("vault passphrase"))
    return KeyStore(generator, tmp_path / "unused" / "key.txt", vault=vault)


def test_vault_only_resolve_leaves_no_scratch(tmp_path, generator, runtime_dir, mocker: MockerFixture):
    keypair = generator.generate()
    seen = []

    def fake_run(args, **kwargs):
        target = Path(args[-1])
        seen.append(target)
        target.write_bytes(keypair.secret_material.reveal())
        return subprocess.CompletedProcess(args, 0, b"", b"")

    mocker.patch("sealenv.shell.subprocess.run", side_effect=fake_run)
    keystore = _keepassxc_keystore(tmp_path, generator)

    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert keystore.public_identifiers(material) == [keypair.public_identifier]

    assert seen and seen[0].is_relative_to(runtime_dir)
    assert not seen[0].exists()
    assert list(runtime_dir.iterdir()) == []


def test_vault_only_resolve_failure_leaves_no_scratch(tmp_path, generator, runtime_dir, mocker: MockerFixture):
    keypair = generator.generate()

    def fake_run(args, **kwargs):
        # A partial export followed by an error.
        Path(args[-1]).write_bytes(keypair.secret_material.reveal()[:20])
        return subprocess.CompletedProcess(args, 1, b"", b"Error while reading the database: Invalid credentials")

    mocker.patch("sealenv.shell.subprocess.run", side_effect=fake_run)
    keystore = _keepassxc_keystore(tmp_path, generator)

    with pytest.raises(AuthenticationError):
        with keystore.resolve(CustodyMode.VAULT_ONLY):
            pass

    assert list(runtime_dir.iterdir()) == []


# --- rotation ---

def _seed_documents(keystore, generator, registry, store, mode=CustodyMode.ON_DISK):
    keypair = _install_key(keystore, generator, mode)
    registry.add(keypair.public_identifier)
    registry.save()
    store.create({"A": "1", "B": "2"}, registry.active())
    return keypair


def test_rotate_reencrypts_to_new_key(keystore, generator, registry, store):
    old = _seed_documents(keystore, generator, registry, store)
    new = generator.generate()

    keystore.rotate(new, CustodyMode.ON_DISK, [store], registry)

    with keystore.resolve(CustodyMode.ON_DISK) as material:
        assert keystore.public_identifiers(material) == [new.public_identifier]
        assert store.decrypt(material) == {"A": "1", "B": "2"}
    assert store.codec.recipients(store.read()) == [new.public_identifier]
    assert registry.entries == {old.public_identifier: False, new.public_identifier: True}
    assert new.public_identifier in registry.sops_config_path.read_text()
    assert old.public_identifier not in registry.sops_config_path.read_text()


def test_rotate_vault_only(keystore, generator, registry, store):
    _seed_documents(keystore, generator, registry, store, CustodyMode.VAULT_ONLY)
    new = generator.generate()

    keystore.rotate(new, CustodyMode.VAULT_ONLY, [store], registry)

    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert keystore.public_identifiers(material) == [new.public_identifier]
        assert store.decrypt(material) == {"A": "1", "B": "2"}


def test_rotate_failure_keeps_old_key_resolvable(keystore, generator, registry, store, mocker: MockerFixture):
    old = _seed_documents(keystore, generator, registry, store)
    before = store.path.read_bytes()
    registry_before = dict(registry.entries)
    mocker.patch.object(DocumentStore, "write", side_effect=WriteError("disk full"))

    with pytest.raises(RotationIncomplete, match="disk full"):
        keystore.rotate(generator.generate(), CustodyMode.ON_DISK, [store], registry)

    assert store.path.read_bytes() == before
    assert registry.entries == registry_before
    with keystore.resolve(CustodyMode.ON_DISK) as material:
        assert old.public_identifier in keystore.public_identifiers(material)
        assert store.decrypt(material) == {"A": "1", "B": "2"}


def test_rotate_failure_when_verification_fails(keystore, generator, registry, store, mocker: MockerFixture):
    old = _seed_documents(keystore, generator, registry, store)
    new = generator.generate()
    real_decrypt = store.codec.decrypt_document
    calls = []

    def tampered(doc, material):
        calls.append(doc)
        result = real_decrypt(doc, material)
        if len(calls) > 1:
            result["A"] = "corrupted"
        return result

    mocker.patch.object(store.codec, "decrypt_document", side_effect=tampered)

    with pytest.raises(RotationIncomplete, match="Verification"):
        keystore.rotate(new, CustodyMode.ON_DISK, [store], registry)

    mocker.stopall()
    with keystore.resolve(CustodyMode.ON_DISK) as material:
        assert old.public_identifier in keystore.public_identifiers(material)
        assert store.decrypt(material) == {"A": "1", "B": "2"}


def test_add_recipient(keystore, generator, registry, store):
    owner = _seed_documents(keystore, generator, registry, store)
    colleague = generator.generate()

    keystore.add_recipient(colleague.public_identifier, CustodyMode.ON_DISK, [store], registry)

    assert store.codec.recipients(store.read()) == [owner.public_identifier, colleague.public_identifier]
    assert store.decrypt(colleague.secret_material) == {"A": "1", "B": "2"}
    assert registry.active() == [owner.public_identifier, colleague.public_identifier]
