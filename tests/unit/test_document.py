# tests/unit/test_document.py
import pytest
from filelock import FileLock

from sealenv.document import NATIVE_FORMAT, SOPS_FORMAT, SecretDocument
from sealenv.errors import DocumentNotFound, IntegrityError, LockTimeout, ValidationError, WriteError

SOPS_BLOB = (
    b"A=ENC[AES256_GCM,data:abc,iv:def,tag:ghi,type:str]\n"
    b"sops_age__list_0__map_recipient=age1example\n"
    b"sops_mac=ENC[AES256_GCM,data:xyz,iv:uvw,tag:rst,type:str]\n"
    b"sops_version=3.8.1\n"
)


def test_from_bytes_recognises_formats():
    assert SecretDocument.from_bytes(b"# sealenv-v1\nrecipients: []\n").format == NATIVE_FORMAT
    assert SecretDocument.from_bytes(SOPS_BLOB).format == SOPS_FORMAT


def test_from_bytes_rejects_plaintext():
    with pytest.raises(IntegrityError, match="Unrecognised"):
        SecretDocument.from_bytes(b"A=1\n")


def test_repr_hides_blob():
    assert "blob" not in repr(SecretDocument(NATIVE_FORMAT, b"secret"))


def test_read_missing_document(store):
    with pytest.raises(DocumentNotFound):
        store.read()


def test_create_and_decrypt(store, generator):
    keypair = generator.generate()

    store.create({"TOKEN": "abc"}, [keypair.public_identifier])

    assert store.exists()
    assert store.decrypt(keypair.secret_material) == {"TOKEN": "abc"}
    assert oct(store.path.stat().st_mode & 0o777) == oct(0o600)


def test_create_refuses_to_overwrite(store, generator):
    keypair = generator.generate()
    store.create({"TOKEN": "abc"}, [keypair.public_identifier])

    with pytest.raises(WriteError, match="already exists"):
        store.create({"TOKEN": "new"}, [keypair.public_identifier])
    store.create({"TOKEN": "new"}, [keypair.public_identifier], overwrite=True)
    assert store.decrypt(keypair.secret_material) == {"TOKEN": "new"}


def test_set_field_scenario(store, generator):
    keypair = generator.generate()
    store.create({"A": "1", "B": "2"}, [keypair.public_identifier])

    store.set_field(keypair.secret_material, "A", "3")

    assert store.decrypt(keypair.secret_material) == {"A": "3", "B": "2"}


def test_failed_update_leaves_file_untouched(store, generator):
    keypair = generator.generate()
    store.create({"A": "1"}, [keypair.public_identifier])
    before = store.path.read_bytes()

    with pytest.raises(ValidationError):
        store.set_field(keypair.secret_material, "NOT VALID", "x")
    with pytest.raises(ValidationError):
        store.unset_field(keypair.secret_material, "MISSING")

    assert store.path.read_bytes() == before


def test_update_with_mutator(store, generator):
    keypair = generator.generate()
    store.create({"A": "1"}, [keypair.public_identifier])

    store.update(keypair.secret_material, lambda mapping: mapping.update({"B": "2"}))

    assert store.decrypt(keypair.secret_material) == {"A": "1", "B": "2"}


def test_concurrent_writer_times_out(store, generator):
    keypair = generator.generate()
    store.create({"A": "1"}, [keypair.public_identifier])
    other = FileLock(str(store.path) + ".lock")

    with other:
        with pytest.raises(LockTimeout, match="Another process"):
            store.set_field(keypair.secret_material, "A", "2")

    assert store.decrypt(keypair.secret_material) == {"A": "1"}


def test_write_refuses_empty_blob(store):
    with pytest.raises(WriteError, match="empty"):
        store.write(SecretDocument(NATIVE_FORMAT, b""))
