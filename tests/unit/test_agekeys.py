# tests/unit/test_agekeys.py
import subprocess

import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from pytest_mock import MockerFixture

from sealenv import agekeys
from sealenv.errors import GenerationError, IntegrityError, ToolUnavailable


def test_bech32_decodes_reference_vector():
    # Valid checksum from BIP-173.
    assert agekeys.bech32_decode("A12UEL5L") == ("a", b"")


def test_bech32_rejects_bad_checksum():
    with pytest.raises(ValueError, match="bad checksum"):
        agekeys.bech32_decode("a12uel5m")


def test_bech32_rejects_mixed_case():
    with pytest.raises(ValueError, match="mixed case"):
        agekeys.bech32_decode("A12uel5l")


def test_bech32_roundtrip():
    payload = bytes(range(32))
    encoded = agekeys.bech32_encode("age", payload)
    assert encoded.startswith("age1")
    assert agekeys.bech32_decode(encoded) == ("age", payload)


def test_identity_encoding_matches_age_layout():
    identity = agekeys.encode_identity(b"\x01" * 32)
    assert identity.startswith("AGE-SECRET-KEY-1")
    assert identity == identity.upper()
    assert agekeys.decode_identity(identity) == b"\x01" * 32


def test_recipient_for_identity_matches_x25519():
    private_key = X25519PrivateKey.generate()
    scalar = private_key.private_bytes_raw()
    public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    identity = agekeys.encode_identity(scalar)

    assert agekeys.recipient_for_identity(identity) == agekeys.encode_recipient(public)


def test_decode_recipient_rejects_identity():
    identity = agekeys.encode_identity(b"\x02" * 32)
    with pytest.raises(IntegrityError):
        agekeys.decode_recipient(identity)
    assert not agekeys.is_recipient(identity)
    assert not agekeys.is_recipient("age1notarecipient")


def test_native_generator_produces_key_file(generator):
    keypair = generator.generate()
    material = keypair.secret_material

    assert agekeys.is_recipient(keypair.public_identifier)
    assert material.declared_public_keys() == [keypair.public_identifier]
    assert len(material.identities()) == 1
    assert material.reveal().decode().startswith("# created: ")
    assert generator.public_identifiers(material) == [keypair.public_identifier]
    assert "AGE-SECRET-KEY" not in repr(keypair)


AGE_KEYGEN_OUTPUT = (
    b"# created: 2024-01-01T00:00:00Z\n"
    b"# public key: age1examplerecipient\n"
    b"AGE-SECRET-KEY-1EXAMPLE\n"
)


def test_age_keygen_generator_parses_output(mocker: MockerFixture):
    run = mocker.patch(
        "sealenv.shell.run_tool",
        return_value=subprocess.CompletedProcess(["age-keygen"], 0, AGE_KEYGEN_OUTPUT, b""),
    )

    keypair = agekeys.AgeKeygenGenerator(timeout=5).generate()

    assert keypair.public_identifier == "age1examplerecipient"
    assert keypair.secret_material.identities() == ["AGE-SECRET-KEY-1EXAMPLE"]
    run.assert_called_once_with(["age-keygen"], timeout=5)


def test_age_keygen_generator_missing_binary(mocker: MockerFixture):
    mocker.patch("sealenv.shell.run_tool", side_effect=ToolUnavailable("'age-keygen' is not installed."))

    with pytest.raises(GenerationError, match="Cannot generate a key"):
        agekeys.AgeKeygenGenerator().generate()


def test_age_keygen_generator_rejects_unexpected_output(mocker: MockerFixture):
    mocker.patch(
        "sealenv.shell.run_tool",
        return_value=subprocess.CompletedProcess(["age-keygen"], 0, b"garbage\n", b""),
    )

    with pytest.raises(GenerationError, match="unexpected output"):
        agekeys.AgeKeygenGenerator().generate()


def test_age_keygen_public_identifier_uses_stdin(mocker: MockerFixture):
    run = mocker.patch(
        "sealenv.shell.run_tool",
        return_value=subprocess.CompletedProcess(["age-keygen", "-y"], 0, b"age1derived\n", b""),
    )

    assert agekeys.AgeKeygenGenerator(timeout=5).public_identifier("AGE-SECRET-KEY-1ABC") == "age1derived"
    run.assert_called_once_with(["age-keygen", "-y"], input=b"AGE-SECRET-KEY-1ABC\n", timeout=5)
