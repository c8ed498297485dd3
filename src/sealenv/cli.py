# src/sealenv/cli.py
"""Command-line interface for sealenv."""

import os
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from . import __version__, config, context, dotenv, errors, paths, project, tools
from .config import CustodyMode, SealEnvConfig
from .errors import ExitCode, SealEnvError

app = typer.Typer(
    name="sealenv",
    help="sealenv: encrypted dotenv secrets with the key on disk or only in your vault.",
    add_completion=False,
)

console = Console(stderr=True)


def version_callback(value: bool):
    """Print the version and exit."""
    if value:
        print(f"sealenv version: {__version__}")
        raise typer.Exit()


def _fail(e: SealEnvError):
    console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
    raise typer.Exit(code=e.exit_code)


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the sealenv.yaml configuration file. [default: {paths.get_default_config_path()}]",
        resolve_path=True,
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """
    sealenv CLI.
    """
    from . import logging
    try:
        cfg = config.load_config(config_path)
        logging.setup_logging(cfg)
        ctx.obj = cfg
    except SealEnvError as e:
        _fail(e)


def _document_path(cfg: SealEnvConfig, document: Optional[Path]) -> Path:
    return Path(document).resolve() if document else cfg.document_path


def _encryption_recipients(cfg: SealEnvConfig, keystore) -> List[str]:
    """Active registry recipients, or the current key's own recipients when none are registered."""
    registry = context.get_registry(cfg)
    if registry.active():
        return registry.active()
    with keystore.resolve(cfg.custody) as material:
        identifiers = keystore.public_identifiers(material)
    for identifier in identifiers:
        registry.add(identifier)
    registry.save()
    return registry.active()


# --- Key management ---

@app.command("generate-key")
def generate_key(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Replace an existing key (on disk or in the vault)."),
):
    """Generate a new keypair and store it according to the custody mode."""
    cfg: SealEnvConfig = ctx.obj
    prompter = context.get_prompter(cfg)
    keystore = context.get_keystore(cfg, prompter)

    try:
        if cfg.custody == CustodyMode.ON_DISK and keystore.has_disk_key() and not force:
            raise errors.WriteError(
                f"A key already exists at '{keystore.key_path}'. Use 'sealenv rotate' to replace it."
            )
        if cfg.custody == CustodyMode.VAULT_ONLY and not force and keystore.has_vault_key():
            raise errors.WriteError(
                f"The vault at '{keystore.vault.location}' already holds a key in entry "
                f"'{keystore.entry}'. Use 'sealenv rotate' to replace it."
            )
        keypair = keystore.generate()
        with keypair.secret_material:
            keystore.save(keypair.secret_material, cfg.custody)
        registry = context.get_registry(cfg)
        registry.add(keypair.public_identifier)
        registry.save()
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Key generated[/bold green] ({cfg.custody.value}).")
    print(keypair.public_identifier)


@app.command("restore-key")
def restore_key(
    ctx: typer.Context,
    from_vault: bool = typer.Option(False, "--from-vault", help="Restore the key from the vault backup."),
    from_file: Optional[Path] = typer.Option(
        None, "--from-file", help="Adopt an existing age key file.", exists=True, dir_okay=False
    ),
):
    """Restore the key from the vault or an existing key file."""
    cfg: SealEnvConfig = ctx.obj
    prompter = context.get_prompter(cfg)
    keystore = context.get_keystore(cfg, prompter)

    try:
        if from_vault == (from_file is not None):
            raise errors.ValidationError("Specify exactly one of --from-vault or --from-file.")
        if from_vault:
            identifiers = keystore.restore_from_vault(cfg.custody)
        else:
            identifiers = keystore.import_key_file(from_file, cfg.custody)
        registry = context.get_registry(cfg)
        for identifier in identifiers:
            registry.add(identifier)
        registry.save()
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Key restored[/bold green] ({cfg.custody.value}).")
    for identifier in identifiers:
        print(identifier)


@app.command("backup-key")
def backup_key(
    ctx: typer.Context,
    to_vault: bool = typer.Option(False, "--to-vault", help="Copy the on-disk key into the vault."),
):
    """Back up the on-disk key."""
    cfg: SealEnvConfig = ctx.obj
    prompter = context.get_prompter(cfg)
    keystore = context.get_keystore(cfg, prompter)

    try:
        if not to_vault:
            raise errors.ValidationError("Specify a backup destination (--to-vault).")
        if cfg.custody == CustodyMode.VAULT_ONLY:
            console.print("The vault already holds the only copy of the key; nothing to back up.")
            return
        keystore.backup_to_vault()
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Key backed up to[/bold green] {keystore.vault.location}")


# --- Documents ---

@app.command()
def encrypt(
    ctx: typer.Context,
    plainfile: Path = typer.Argument(..., help="Plaintext dotenv file.", exists=True, dir_okay=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Encrypted document to write."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing document."),
):
    """Encrypt a plaintext dotenv file into a secret document."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    store = context.get_document_store(cfg, _document_path(cfg, output))

    try:
        try:
            text = plainfile.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise errors.ValidationError(f"'{plainfile}' is not UTF-8 text.") from e
        mapping = dotenv.parse(text)
        store.create(mapping, _encryption_recipients(cfg, keystore), overwrite=force)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Encrypted {len(mapping)} variables to[/bold green] {store.path}")
    console.print(f"[yellow]Remember to delete the plaintext file '{plainfile}'.[/yellow]")


@app.command()
def decrypt(
    ctx: typer.Context,
    document: Optional[Path] = typer.Argument(None, help="Secret document. [default: configured document]"),
):
    """Print the decrypted document as dotenv text."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    loader = context.get_session_loader(cfg, keystore)

    try:
        session = loader.load(_document_path(cfg, document))
    except SealEnvError as e:
        _fail(e)

    sys.stdout.write(dotenv.render(session))


@app.command()
def edit(
    ctx: typer.Context,
    document: Optional[Path] = typer.Argument(None, help="Secret document. [default: configured document]"),
):
    """Edit the decrypted document in $EDITOR and re-encrypt it."""
    from . import scratch

    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    store = context.get_document_store(cfg, _document_path(cfg, document))

    def _edit(mapping):
        with scratch.scratch_dir() as workdir:
            draft = workdir / "secrets.env"
            draft.write_text(dotenv.render(mapping))
            draft.chmod(0o600)
            typer.edit(filename=str(draft))
            edited = dotenv.parse(draft.read_text())
        mapping.clear()
        mapping.update(edited)

    try:
        with keystore.resolve(cfg.custody) as material:
            store.update(material, _edit)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Updated[/bold green] {store.path}")


@app.command("set")
def set_(
    ctx: typer.Context,
    document: Path = typer.Argument(..., help="Secret document."),
    key: str = typer.Argument(..., help="Variable name."),
    value: Optional[str] = typer.Argument(
        None, help="New value. Read from stdin, or prompted for, when omitted."
    ),
):
    """Set a single variable, overwriting any previous value."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    store = context.get_document_store(cfg, _document_path(cfg, document))

    if value is None:
        if sys.stdin.isatty():
            value = Prompt.ask(f"Value for {key}", password=True, console=console)
        else:
            value = sys.stdin.read().rstrip("\n")

    try:
        with keystore.resolve(cfg.custody) as material:
            store.set_field(material, key, value)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Set {key}[/bold green] in {store.path}")


@app.command()
def unset(
    ctx: typer.Context,
    document: Path = typer.Argument(..., help="Secret document."),
    key: str = typer.Argument(..., help="Variable name."),
):
    """Remove a single variable."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    store = context.get_document_store(cfg, _document_path(cfg, document))

    try:
        with keystore.resolve(cfg.custody) as material:
            store.unset_field(material, key)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Removed {key}[/bold green] from {store.path}")


# --- Sessions ---

@app.command()
def load(
    ctx: typer.Context,
    document: Optional[Path] = typer.Argument(None, help="Secret document. [default: configured document]"),
    names: bool = typer.Option(False, "--names", help="Only list the variable names."),
):
    """Print `export` lines for the document; use with eval "$(sealenv load)"."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    loader = context.get_session_loader(cfg, keystore)

    try:
        session = loader.load(_document_path(cfg, document))
    except SealEnvError as e:
        _fail(e)

    if names:
        for name in session.names():
            print(name)
    else:
        sys.stdout.write(session.export_script())


@app.command(
    "exec",
    context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
)
def exec_(
    ctx: typer.Context,
    command: List[str] = typer.Argument(..., help="Command to run with the secrets in its environment."),
    document: Optional[Path] = typer.Option(
        None, "--document", "-d", help="Secret document. [default: configured document]"
    ),
):
    """Run a command with the document's variables added to its environment."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    loader = context.get_session_loader(cfg, keystore)

    try:
        session = loader.load(_document_path(cfg, document))
    except SealEnvError as e:
        _fail(e)

    env = os.environ.copy()
    session.apply(env)
    try:
        result = subprocess.run(command, env=env)
    except FileNotFoundError:
        console.print(f"[bold red]Error:[/bold red] command not found: {command[0]}", highlight=False)
        raise typer.Exit(code=127)
    raise typer.Exit(code=result.returncode)


# --- Lifecycle ---

@app.command()
def rotate(
    ctx: typer.Context,
    add: Optional[str] = typer.Option(
        None, "--add", help="Authorise an additional recipient instead of replacing the key."
    ),
    documents: Optional[List[Path]] = typer.Option(
        None, "--document", "-d", help="Documents to re-encrypt. [default: configured document]"
    ),
):
    """Replace the key (or add a recipient) and re-encrypt the documents."""
    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    registry = context.get_registry(cfg)
    stores = [context.get_document_store(cfg, path.resolve()) for path in documents or []]
    if not stores:
        stores = [context.get_document_store(cfg)]

    try:
        missing = [str(store.path) for store in stores if not store.exists()]
        if missing:
            raise errors.DocumentNotFound(f"Secret document not found: {', '.join(missing)}")
        if add:
            keystore.add_recipient(add, cfg.custody, stores, registry)
            console.print(f"✅ [bold green]Added recipient[/bold green] {add}")
            return
        keypair = keystore.generate()
        with keypair.secret_material:
            keystore.rotate(keypair, cfg.custody, stores, registry)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Rotated to[/bold green] {keypair.public_identifier}")
    print(keypair.public_identifier)


@app.command()
def setup(
    ctx: typer.Context,
    restore_from_backup: bool = typer.Option(
        False, "--restore-from-backup", help="Restore the key from the vault instead of generating one."
    ),
    create_vault: bool = typer.Option(
        False, "--create-vault", help="Create the vault database (new installation only)."
    ),
):
    """Run the first-time setup or restore flow."""
    from .orchestrator import SetupOrchestrator

    cfg: SealEnvConfig = ctx.obj
    prompter = context.get_prompter(cfg)
    keystore = context.get_keystore(cfg, prompter)
    store = context.get_document_store(cfg)
    orchestrator = SetupOrchestrator(
        keystore,
        store,
        context.get_registry(cfg),
        prompter,
        cfg.custody,
        template=cfg.document.template,
        required_tools=context.required_tools(keystore, store.codec),
    )
    mode = "restore from backup" if restore_from_backup else "new installation"
    console.print(f"🚀 [bold]Starting sealenv setup[/bold] ({mode}, custody: {cfg.custody.value})")

    try:
        if restore_from_backup:
            if create_vault:
                raise errors.ValidationError("--create-vault cannot be combined with --restore-from-backup.")
            history = orchestrator.run_restore()
        else:
            history = orchestrator.run_new(create_vault=create_vault)
    except SealEnvError as e:
        console.print("\n[bold red]Setup was halted.[/bold red]")
        _fail(e)

    console.print(" -> ".join(state.value for state in history))
    console.print("\n🎉 [bold green]Setup complete![/bold green]\n")
    console.print("Next steps:")
    console.print(f"  1. Edit your secrets:   sealenv edit {store.path}")
    console.print("  2. In each project:     sealenv init-project")
    console.print(f"     (template: {orchestrator.template_path})")
    console.print(f"  3. Use them:            source ./{cfg.paths.project_loader} && your-command")


@app.command("init-project")
def init_project(
    ctx: typer.Context,
    directory: Path = typer.Argument(Path("."), help="Project directory.", file_okay=False),
    force: bool = typer.Option(False, "--force", help="Replace an existing loader."),
):
    """Write the session loader into a project and add it to .gitignore."""
    cfg: SealEnvConfig = ctx.obj

    try:
        target = project.install_loader(directory, cfg.document_path, cfg.paths.project_loader, force=force)
    except SealEnvError as e:
        _fail(e)

    console.print(f"✅ [bold green]Wrote[/bold green] {target}")


@app.command()
def doctor(ctx: typer.Context):
    """Check tools, key custody, vault and document."""
    from .fs import check_private_mode

    cfg: SealEnvConfig = ctx.obj
    keystore = context.get_keystore(cfg, context.get_prompter(cfg))
    codec = context.get_codec(cfg)

    console.print("[bold]🩺 Running sealenv doctor...[/bold]")
    table = Table("Check", "Status", "Detail")

    for binary in context.required_tools(keystore, codec):
        found = tools.find_in_path(binary)
        table.add_row(binary, "✅" if found else "❌", found or tools.install_hint(binary))

    table.add_row("custody", "✅", cfg.custody.value)
    if cfg.custody == CustodyMode.ON_DISK:
        if keystore.has_disk_key():
            try:
                check_private_mode(keystore.key_path)
                table.add_row("key file", "✅", str(keystore.key_path))
            except SealEnvError as e:
                table.add_row("key file", "❌", e.args[0])
        else:
            table.add_row("key file", "❌", f"missing: {keystore.key_path}")
    elif keystore.has_disk_key():
        table.add_row("key file", "⚠️", f"vault-only custody but {keystore.key_path} exists")

    vault = keystore.vault
    table.add_row("vault", "✅" if vault.exists() else "❌", vault.location)
    table.add_row(
        "document",
        "✅" if cfg.document_path.is_file() else "❌",
        str(cfg.document_path),
    )
    registry = context.get_registry(cfg)
    table.add_row(
        "recipients",
        "✅" if registry.active() else "⚠️",
        f"{len(registry.active())} active of {len(registry.entries)}",
    )
    console.print(table)


@app.command("paths")
def paths_(ctx: typer.Context):
    """Print resolved application paths as JSON."""
    import orjson

    cfg: SealEnvConfig = ctx.obj
    data = {
        "HOME": str(paths.HOME),
        "XDG_CONFIG_HOME": str(paths.get_xdg_config_home()),
        "config_path": str(paths.get_default_config_path()),
        "runtime_dir": str(paths.get_runtime_dir()),
        "key_file": str(cfg.key_file),
        "secrets_dir": str(cfg.secrets_dir),
        "document": str(cfg.document_path),
        "vault_db": str(cfg.vault_db),
    }
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def run_cli():
    """Main entry point for the CLI application."""
    try:
        app()
    except typer.Exit:
        raise
    except SealEnvError as e:
        console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        sys.exit(e.exit_code)
    except Exception as e:
        console.print(f"[bold red]An unexpected error occurred:[/bold red] {e}")
        sys.exit(ExitCode.UNKNOWN_ERROR)


if __name__ == "__main__":
    run_cli()
