"""Command-line interface for dotstate."""

from __future__ import annotations

import io
import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

import tomli_w
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import DesiredState, config_cache, load_desired_state, read_plaintext_age_hints
from .context import ENCRYPTED_SUFFIX, AppContext
from .errors import ConfigError, DotstateError, ExternalCommandFailure, PrerequisiteMissing
from .filesystem import staged_replace
from .models import ChangeKind, RunReport
from .orchestrator import Orchestrator
from .secret import AgeTool, KeySources, build_resolver

app = typer.Typer(help="Declarative reconciler for packages, dotfiles, environment and secrets")
secret_app = typer.Typer(help="Manage age keys and encrypted files")
config_app = typer.Typer(help="Manage the (optionally encrypted) configuration document")
app.add_typer(secret_app, name="secret")
app.add_typer(config_app, name="config")
console = Console()
logger = logging.getLogger(__name__)

KEY_FILENAME = "key.txt"

_CHANGE_STYLES = {
    ChangeKind.ADD: "green",
    ChangeKind.UPDATE: "yellow",
    ChangeKind.REMOVE: "red",
    ChangeKind.TRACK: "cyan",
}


def _version() -> str:
    try:
        return version("dotstate")
    except PackageNotFoundError:
        return "0.0.0+unknown"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, show_path=False)],
        force=True,
    )


def _load_context() -> AppContext:
    return AppContext.from_environment()


def _build_orchestrator(ctx: AppContext, desired: DesiredState) -> Orchestrator:
    return Orchestrator.build(ctx, desired)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command from an elevated shell or with `gsudo`.")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        if "No configuration found" in message:
            console.print("[yellow]Use 'dotstate init' to create a configuration file.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, PrerequisiteMissing):
        console.print(f"[red]{escape(str(exc))}[/red]")
        if exc.hint is None:
            console.print(f"[yellow]Install '{exc.tool}' and make sure it is on PATH.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, DotstateError):
        console.print(f"[red]{escape(str(exc))}[/red]")
        if isinstance(exc, ExternalCommandFailure) and exc.stderr.strip():
            logger.debug("stderr of '%s':\n%s", " ".join(exc.args_list), exc.stderr)
        raise typer.Exit(code=1)
    raise exc


def _format_report(report: RunReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Phase")
    table.add_column("Change")
    table.add_column("Item", overflow="fold")
    table.add_column("Details", overflow="fold")

    for phase in report.phases:
        for plan in phase.plans:
            for kind, item in plan.entries():
                style = _CHANGE_STYLES[kind]
                details = ", ".join(part for part in (item.reason, item.detail) if part)
                table.add_row(plan.domain, f"[{style}]{kind.value}[/{style}]", escape(item.key), escape(details))

    if table.row_count:
        console.print(table)

    for phase in report.phases:
        if phase.failed:
            console.print(f"[red]{phase.name} failed:[/red] {escape(phase.error or '')}")


def _summary_line(report: RunReport) -> str:
    noun = "change" if report.changes == 1 else "changes"
    if report.dry_run:
        return f"{report.changes} {noun} pending."
    return f"Applied {report.changes} {noun}."


def _run(dry_run: bool) -> None:
    ctx = _load_context()
    desired = load_desired_state(ctx)
    report = _build_orchestrator(ctx, desired).run(dry_run=dry_run)
    _format_report(report)
    console.print(_summary_line(report))
    if report.had_errors:
        if not dry_run:
            console.print("[yellow]State was not saved because some phases failed; fix them and re-run.[/yellow]")
        raise typer.Exit(code=1)
    if dry_run and report.changes:
        console.print("[yellow]Run 'dotstate apply' to make these changes.[/yellow]")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"dotstate {_version()}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """Reconcile this machine against its desired-state document."""

    _configure_logging(verbose)


@app.command()
def apply() -> None:
    """Apply every change needed to reach the desired state."""

    try:
        _run(dry_run=False)
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status() -> None:
    """Preview the changes 'apply' would make."""

    try:
        _run(dry_run=True)
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def init(force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration")) -> None:
    """Create a starter configuration document."""

    ctx = _load_context()
    if ctx.config_path.exists() and not force:
        console.print(f"[red]Configuration '{ctx.config_path}' already exists. Use --force to overwrite.[/red]")
        raise typer.Exit(code=1)

    ctx.config_dir.mkdir(parents=True, exist_ok=True)
    ctx.config_path.write_text(_render_init_config(), encoding="utf-8")
    console.print(f"[green]Created '{ctx.config_path}'.[/green]")


def _render_init_config() -> str:
    data = {
        "scoop": {"buckets": ["main", "extras"], "apps": ["git", "age"]},
        "winget": {"apps": []},
        "dotfiles": {"source": "./dotfiles", "target": "~"},
        "environment": {"user": {"EDITOR": "nvim"}, "machine": {}},
        "path": {"user": {"prepend": ["$USERPROFILE/bin"], "append": []}},
        "age": {"key_file": f"./{KEY_FILENAME}"},
        "tasks": {"git_config": {"settings": {"init.defaultBranch": "main"}}},
    }
    buffer = io.StringIO()
    buffer.write("# dotstate configuration\n\n")
    buffer.write(tomli_w.dumps(data))
    return buffer.getvalue()


@secret_app.command("keygen")
def secret_keygen(
    path: Optional[Path] = typer.Argument(None, help="Where to write the new key (defaults to the config directory)"),
) -> None:
    """Generate a new age identity."""

    try:
        ctx = _load_context()
        output = path or ctx.config_dir / KEY_FILENAME
        if output.exists():
            console.print(f"[red]Key file '{output}' already exists; refusing to overwrite it.[/red]")
            raise typer.Exit(code=1)
        public_key = AgeTool(ctx.runner).keygen(output)
        console.print(f"[green]Wrote '{output}'.[/green]")
        console.print(f"Public key: {public_key}")
        console.print("[yellow]Add it to \\[age].public_key and keep the key file out of version control.[/yellow]")
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@secret_app.command("encrypt")
def secret_encrypt(file: Path = typer.Argument(..., help="File to encrypt")) -> None:
    """Encrypt FILE to FILE.age for the configured public key."""

    try:
        ctx = _load_context()
        recipient = _public_key(load_desired_state(ctx))
        destination = file.with_name(file.name + ENCRYPTED_SUFFIX)
        AgeTool(ctx.runner).encrypt(file, destination, recipient)
        console.print(f"[green]Wrote '{destination}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@secret_app.command("decrypt")
def secret_decrypt(file: Path = typer.Argument(..., help="Encrypted .age file")) -> None:
    """Decrypt FILE.age next to itself."""

    try:
        ctx = _load_context()
        if file.suffix != ENCRYPTED_SUFFIX:
            raise ConfigError(f"'{file}' does not end in {ENCRYPTED_SUFFIX}")
        sources = KeySources.from_environment(ctx)
        if not sources.configured:
            hints = read_plaintext_age_hints(ctx)
            if hints is not None:
                sources = sources.with_fallbacks(key_file=hints.key_file, vault_item=hints.bitwarden_item)
        key = build_resolver(ctx, sources).resolve()
        destination = file.with_suffix("")
        with staged_replace(destination) as staging:
            AgeTool(ctx.runner).decrypt(file, staging, key)
        console.print(f"[green]Wrote '{destination}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@config_app.command("encrypt")
def config_encrypt(
    remove: bool = typer.Option(False, "--remove", help="Delete the plaintext document after encrypting"),
) -> None:
    """Encrypt config.toml to config.toml.age."""

    try:
        ctx = _load_context()
        if not ctx.config_path.is_file():
            raise ConfigError(f"No configuration found: expected '{ctx.config_path}'.")
        recipient = _public_key(load_desired_state(ctx))
        AgeTool(ctx.runner).encrypt(ctx.config_path, ctx.encrypted_config_path, recipient)
        console.print(f"[green]Wrote '{ctx.encrypted_config_path}'.[/green]")
        if remove:
            ctx.config_path.unlink()
            console.print(f"[green]Removed '{ctx.config_path}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@config_app.command("decrypt")
def config_decrypt(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing plaintext document"),
) -> None:
    """Decrypt config.toml.age back to config.toml."""

    try:
        ctx = _load_context()
        if not ctx.encrypted_config_path.is_file():
            raise ConfigError(f"No configuration found: expected '{ctx.encrypted_config_path}'.")
        if ctx.config_path.exists() and not force:
            console.print(f"[red]'{ctx.config_path}' already exists. Use --force to overwrite.[/red]")
            raise typer.Exit(code=1)
        key = build_resolver(ctx).resolve()
        with staged_replace(ctx.config_path) as staging:
            AgeTool(ctx.runner).decrypt(ctx.encrypted_config_path, staging, key)
        console.print(f"[green]Wrote '{ctx.config_path}'.[/green]")
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@config_app.command("cache-clear")
def config_cache_clear() -> None:
    """Delete the cached decrypted configuration."""

    ctx = _load_context()
    if config_cache(ctx).clear():
        console.print("[green]Cleared the decrypted configuration cache.[/green]")
    else:
        console.print("Cache was already empty.")


def _public_key(desired: DesiredState) -> str:
    if desired.age is None or not desired.age.public_key:
        raise ConfigError("Set [age].public_key (see 'dotstate secret keygen') before encrypting.")
    return desired.age.public_key


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
