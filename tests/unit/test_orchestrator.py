# tests/unit/test_orchestrator.py
import pytest

from sealenv.config import CustodyMode
from sealenv.errors import ExitCode, SetupHalted
from sealenv.keystore import KeyStore
from sealenv.orchestrator import SetupOrchestrator, SetupState
from sealenv.project import TEMPLATE_NAME
from sealenv.prompt import StaticPrompter
from sealenv.registry import RecipientRegistry
from sealenv.vault import InMemoryVault

TEMPLATE = {"EXAMPLE_API_KEY": "replace-me"}

NEW_FLOW = [
    SetupState.INIT,
    SetupState.TOOLS_VERIFIED,
    SetupState.KEY_READY,
    SetupState.VAULT_BACKED,
    SetupState.DOCUMENT_READY,
    SetupState.TESTED,
    SetupState.COMPLETE,
]

RESTORE_FLOW = [
    SetupState.INIT,
    SetupState.TOOLS_VERIFIED,
    SetupState.KEY_RESTORED,
    SetupState.DOCUMENT_PRESENT_CHECK,
    SetupState.TESTED,
    SetupState.COMPLETE,
]


@pytest.fixture
def empty_vault(prompter) -> InMemoryVault:
    return InMemoryVault(prompter)


def _orchestrator(keystore, store, custody=CustodyMode.ON_DISK, prompter=None, tools=()):
    prompter = prompter or StaticPrompter("pw", answer=True)
    registry = RecipientRegistry.load(store.path.parent)
    return SetupOrchestrator(
        keystore, store, registry, prompter, custody, template=TEMPLATE, required_tools=tools
    )


def test_new_installation_on_disk(tmp_path, generator, empty_vault, store):
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)
    orchestrator = _orchestrator(keystore, store)

    history = orchestrator.run_new(create_vault=True)

    assert history == NEW_FLOW
    assert keystore.key_path.is_file()
    assert empty_vault.exists()
    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert store.decrypt(material) == TEMPLATE
    assert orchestrator.registry.sops_config_path.is_file()
    assert (store.path.parent / TEMPLATE_NAME).is_file()
    assert orchestrator.template_path == store.path.parent / TEMPLATE_NAME


def test_new_installation_vault_only_writes_no_key_file(tmp_path, generator, empty_vault, store):
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)

    history = _orchestrator(keystore, store, CustodyMode.VAULT_ONLY).run_new(create_vault=True)

    assert history == NEW_FLOW
    assert not keystore.key_path.exists()
    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert store.decrypt(material) == TEMPLATE


def test_missing_vault_halts_without_create_flag(tmp_path, generator, empty_vault, store):
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)
    orchestrator = _orchestrator(keystore, store)

    with pytest.raises(SetupHalted) as excinfo:
        orchestrator.run_new()

    assert excinfo.value.last_state == "KeyReady"
    assert excinfo.value.step == "back up key"
    assert excinfo.value.exit_code == ExitCode.KEY_NOT_FOUND
    assert "--create-vault" in str(excinfo.value)
    assert not store.exists()


def test_create_vault_refuses_existing_vault(keystore, store):
    orchestrator = _orchestrator(keystore, store)

    with pytest.raises(SetupHalted) as excinfo:
        orchestrator.run_new(create_vault=True)

    assert excinfo.value.step == "back up key"
    assert excinfo.value.exit_code == ExitCode.WRITE_ERROR


def test_missing_tools_halt_before_anything(keystore, store):
    orchestrator = _orchestrator(keystore, store, tools=["sealenv-test-no-such-binary"])

    with pytest.raises(SetupHalted) as excinfo:
        orchestrator.run_new()

    assert excinfo.value.last_state == "Init"
    assert excinfo.value.exit_code == ExitCode.TOOL_MISSING
    assert orchestrator.history == [SetupState.INIT]
    assert not keystore.key_path.exists()


def test_existing_key_halts_new_installation(keystore, generator, store):
    keystore.save(generator.generate().secret_material, CustodyMode.ON_DISK)

    with pytest.raises(SetupHalted) as excinfo:
        _orchestrator(keystore, store).run_new()

    assert excinfo.value.last_state == "ToolsVerified"
    assert excinfo.value.step == "generate key"


def test_declined_overwrite_keeps_document_and_fails_test(tmp_path, generator, empty_vault, store):
    stranger = generator.generate()
    store.create({"OLD": "value"}, [stranger.public_identifier])
    before = store.path.read_bytes()
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)
    prompter = StaticPrompter("pw", answer=False)

    with pytest.raises(SetupHalted) as excinfo:
        _orchestrator(keystore, store, prompter=prompter).run_new(create_vault=True)

    assert store.path.read_bytes() == before
    assert excinfo.value.last_state == "DocumentReady"
    assert excinfo.value.step == "round-trip test"
    assert excinfo.value.exit_code == ExitCode.DECRYPTION_ERROR
    assert any("Overwrite" in question for question in prompter.asked)


def test_accepted_overwrite_replaces_document(tmp_path, generator, empty_vault, store):
    store.create({"OLD": "value"}, [generator.generate().public_identifier])
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)

    _orchestrator(keystore, store).run_new(create_vault=True)

    with keystore.resolve(CustodyMode.ON_DISK) as material:
        assert store.decrypt(material) == TEMPLATE


def test_restore_flow(tmp_path, generator, empty_vault, store):
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)
    _orchestrator(keystore, store).run_new(create_vault=True)
    original = keystore.key_path.read_bytes()
    keystore.key_path.unlink()

    history = _orchestrator(keystore, store).run_restore()

    assert history == RESTORE_FLOW
    assert keystore.key_path.read_bytes() == original


def test_restore_without_document_halts(keystore, generator, store):
    keystore.save(generator.generate().secret_material, CustodyMode.VAULT_ONLY)

    with pytest.raises(SetupHalted) as excinfo:
        _orchestrator(keystore, store, CustodyMode.VAULT_ONLY).run_restore()

    assert excinfo.value.last_state == "KeyRestored"
    assert excinfo.value.step == "check document"
    assert excinfo.value.exit_code == ExitCode.KEY_NOT_FOUND


def test_restore_without_backup_halts(tmp_path, generator, empty_vault, store):
    keystore = KeyStore(generator, tmp_path / "age" / "key.txt", vault=empty_vault)

    with pytest.raises(SetupHalted) as excinfo:
        _orchestrator(keystore, store).run_restore()

    assert excinfo.value.last_state == "ToolsVerified"
    assert excinfo.value.step == "restore key"


def test_restore_keeps_existing_key_when_declined(keystore, generator, store):
    keypair = generator.generate()
    keystore.save(keypair.secret_material, CustodyMode.ON_DISK)
    keystore.backup_to_vault()
    before = keystore.key_path.read_bytes()

    with pytest.raises(SetupHalted):
        _orchestrator(keystore, store, prompter=StaticPrompter("pw", answer=False)).run_restore()

    assert keystore.key_path.read_bytes() == before


@pytest.mark.parametrize("custody", [CustodyMode.VAULT_ONLY, CustodyMode.ON_DISK])
def test_new_installation_keeps_key_already_in_vault(keystore, generator, store, custody):
    old = generator.generate()
    keystore.save(old.secret_material, CustodyMode.VAULT_ONLY)
    store.create({"OLD": "value"}, [old.public_identifier])
    before = keystore.vault.export_attachment(keystore.entry, keystore.attachment)

    with pytest.raises(SetupHalted) as excinfo:
        _orchestrator(keystore, store, custody).run_new()

    assert excinfo.value.step == "generate key"
    assert excinfo.value.exit_code == ExitCode.WRITE_ERROR
    assert "--restore-from-backup" in str(excinfo.value)
    assert keystore.vault.export_attachment(keystore.entry, keystore.attachment) == before
    assert not keystore.key_path.exists()
    with keystore.resolve(CustodyMode.VAULT_ONLY) as material:
        assert store.decrypt(material) == {"OLD": "value"}
