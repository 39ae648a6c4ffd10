"""CLI entry point for Injector."""

import base64
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from injector.core.config_file import load_config_file
from injector.core.crypto import generate_keyset, public_keyset
from injector.core.exceptions import DiagnosticsError, InjectorError
from injector.core.log import get_logger
from injector.core.models import Diagnostics
from injector.core.settings import PRIVATE_KEYSET_PREFIX, Settings, scrub_private_keysets
from injector.editfile import EditConfigFile

app = typer.Typer(
    name="injector",
    help="Encrypted secrets and plaintext configuration in one document.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path of the config document [env: CONFIG_FILE_PATH]"),
]
ContextOption = Annotated[str | None, typer.Option("--context", help="Context name [env: CONTEXT_NAME]")]
JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")]
OverwriteOption = Annotated[bool, typer.Option("--overwrite", help="Replace an existing entry")]


def print_diagnostics(diags: Diagnostics) -> None:
    """Render diagnostics to stderr."""
    for diag in diags:
        color = "red" if diag.is_error else "yellow"
        location = f" [dim]({diag.subject})[/]" if diag.subject else ""
        err_console.print(f"[{color}]{diag.severity.value}[/]: [bold]{diag.summary}[/]{location}")
        if diag.detail:
            err_console.print(f"  {diag.detail}", markup=False)


def fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(code=1)


def check(diags: Diagnostics) -> None:
    """Print diagnostics and exit with status 1 if any is an error."""
    if diags:
        print_diagnostics(diags)
    if diags.has_errors():
        raise typer.Exit(code=1)


@dataclass
class State:
    """Per-invocation settings and logger, kept on the typer context."""

    settings: Settings
    logger: logging.Logger


def get_state(ctx: typer.Context) -> State:
    if not isinstance(ctx.obj, State):
        settings = Settings.from_env()
        ctx.obj = State(settings, get_logger(settings.log_level))
    return ctx.obj


def get_log(ctx: typer.Context) -> logging.Logger:
    return get_state(ctx).logger


def config_path(ctx: typer.Context, config: Path | None) -> Path:
    """The --config value, else CONFIG_FILE_PATH, else the default file name."""
    return config or get_state(ctx).settings.config_file_path


def open_editor(ctx: typer.Context, config: Path | None) -> EditConfigFile:
    return EditConfigFile(config_path(ctx, config), logger=get_log(ctx))


def shell_quote(value: str) -> str:
    """Double-quote a value for POSIX shells."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$").replace("`", "\\`")
    return f'"{escaped}"'


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Log level [env: LOG_LEVEL, default WARNING]")
    ] = None,
) -> None:
    """Encrypted secrets and plaintext configuration in one document."""
    settings = Settings.from_env()
    ctx.obj = State(settings, get_logger(log_level or settings.log_level))


@app.command()
def keygen(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Public key name, e.g. DEV2024")],
    config: ConfigOption = None,
    overwrite: OverwriteOption = False,
) -> None:
    """Generate a keypair and add its public key to the document."""
    private_json = generate_keyset()
    editor = open_editor(ctx, config)
    try:
        diags = editor.add_public_key(name, public_keyset(private_json).encode("utf-8"), overwrite)
    except InjectorError as e:
        raise fail(str(e)) from e
    check(diags)

    err_console.print(f"[green]Added public key[/green] [cyan]{name}[/cyan] to {editor.path}")
    err_console.print("[dim]Store the private keyset below somewhere safe; it is not saved anywhere.[/]")
    encoded = base64.b64encode(private_json.encode("utf-8")).decode("ascii")
    print(f"{PRIVATE_KEYSET_PREFIX}{name}={encoded}")


@app.command("add-pubkey")
def add_pubkey(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Public key name, e.g. DEV2024")],
    keyset_file: Annotated[str, typer.Argument(help="Public keyset JSON file, '-' for stdin")],
    config: ConfigOption = None,
    overwrite: OverwriteOption = False,
) -> None:
    """Add an existing public keyset to the document."""
    try:
        if keyset_file == "-":
            material = sys.stdin.buffer.read()
        else:
            material = Path(keyset_file).read_bytes()
    except OSError as e:
        raise fail(f"cannot read keyset {keyset_file}: {e}") from e

    editor = open_editor(ctx, config)
    try:
        diags = editor.add_public_key(name, material.strip(), overwrite)
    except InjectorError as e:
        raise fail(str(e)) from e
    check(diags)
    console.print(f"[green]Added public key[/green] [cyan]{name}[/cyan]")


def _choose(label: str, value: str | None, choices: list[str]) -> str:
    if value:
        return value
    if choices:
        console.print(f"Existing {label}s: " + ", ".join(f"[cyan]{c}[/]" for c in choices))
    return typer.prompt(label.capitalize())


@app.command("add-secret")
def add_secret(
    ctx: typer.Context,
    context: Annotated[str | None, typer.Argument(help="Context name")] = None,
    pubkey: Annotated[str | None, typer.Argument(help="Public key name")] = None,
    export: Annotated[str | None, typer.Argument(help="Export name")] = None,
    secret: Annotated[str | None, typer.Argument(help="Secret value (prompted if omitted)")] = None,
    config: ConfigOption = None,
    overwrite: OverwriteOption = False,
) -> None:
    """Encrypt a secret and store it as an export of a context."""
    editor = open_editor(ctx, config)
    try:
        if not context:
            names, diags = editor.context_names()
            check(diags)
            context = _choose("context", context, names)
        if not pubkey:
            names, diags = editor.public_key_names()
            check(diags)
            pubkey = _choose("public key", pubkey, names)
        if not export:
            names, diags = editor.export_names(context)
            check(diags)
            export = _choose("export", export, names)
        if secret is None:
            secret = typer.prompt("Secret", hide_input=True)

        diags = editor.add_secret(context, export, secret, pubkey, overwrite)
    except InjectorError as e:
        raise fail(str(e)) from e
    check(diags)
    console.print(f"[green]Set[/green] [cyan]{export}[/cyan] in context [cyan]{context}[/cyan]")


def _list_names(names: list[str], diags: Diagnostics, output_json: bool, empty: str) -> None:
    check(diags)
    if output_json:
        print(json.dumps(names))
    elif not names:
        console.print(f"[dim]{empty}[/]")
    else:
        for name in names:
            console.print(name, markup=False, highlight=False)


@app.command()
def contexts(ctx: typer.Context, config: ConfigOption = None, output_json: JsonOption = False) -> None:
    """List context names."""
    try:
        names, diags = open_editor(ctx, config).context_names()
    except InjectorError as e:
        raise fail(str(e)) from e
    _list_names(names, diags, output_json, "No contexts")


@app.command()
def pubkeys(ctx: typer.Context, config: ConfigOption = None, output_json: JsonOption = False) -> None:
    """List public key names."""
    try:
        names, diags = open_editor(ctx, config).public_key_names()
    except InjectorError as e:
        raise fail(str(e)) from e
    _list_names(names, diags, output_json, "No public keys")


@app.command()
def exports(
    ctx: typer.Context,
    context: Annotated[str, typer.Argument(help="Context name")],
    config: ConfigOption = None,
    output_json: JsonOption = False,
) -> None:
    """List the export names of a context."""
    try:
        names, diags = open_editor(ctx, config).export_names(context)
    except InjectorError as e:
        raise fail(str(e)) from e
    _list_names(names, diags, output_json, f"No exports in {context}")


@app.command()
def sort(ctx: typer.Context, config: ConfigOption = None) -> None:
    """Put the document's blocks in canonical order."""
    editor = open_editor(ctx, config)
    try:
        diags = editor.sort()
    except InjectorError as e:
        raise fail(str(e)) from e
    check(diags)
    console.print(f"[green]Sorted[/green] {editor.path}")


def _decode_exports(ctx: typer.Context, config: Path, context: str | None) -> dict[str, str]:
    context = context or get_state(ctx).settings.context_name
    if not context:
        raise fail("no context given; pass --context or set CONTEXT_NAME")
    try:
        config_file = load_config_file(config, logger=get_log(ctx), only_context=context)
        result = config_file.context(context).exports
    except DiagnosticsError as e:
        print_diagnostics(e.diagnostics)
        raise typer.Exit(code=1) from e
    except InjectorError as e:
        raise fail(str(e)) from e
    print_diagnostics(config_file.diagnostics)
    return result


@app.command()
def render(
    ctx: typer.Context,
    context: ContextOption = None,
    config: ConfigOption = None,
    output_json: JsonOption = False,
) -> None:
    """Print a context's exports, decrypting secrets."""
    values = _decode_exports(ctx, config_path(ctx, config), context)
    if output_json:
        print(json.dumps(values))
        return
    for key, value in values.items():
        print(f"{key}={shell_quote(value)}")


@app.command("exec")
def exec_(
    ctx: typer.Context,
    command: Annotated[list[str], typer.Argument(help="Program and its arguments")],
    context: ContextOption = None,
    config: ConfigOption = None,
    remove_config: Annotated[
        bool, typer.Option("--remove-config", help="Delete the document before starting the program")
    ] = False,
) -> None:
    """Run a program with a context's exports in its environment."""
    config = config_path(ctx, config)
    values = _decode_exports(ctx, config, context)

    env = scrub_private_keysets(os.environ)
    env.update(values)
    if remove_config:
        try:
            config.unlink()
        except OSError as e:
            raise fail(f"cannot remove {config}: {e}") from e
    get_log(ctx).info("starting %s with %d export(s)", command[0], len(values))

    try:
        os.execvpe(command[0], command, env)
    except OSError as e:
        raise fail(f"cannot execute {command[0]}: {e}") from e


if __name__ == "__main__":
    app()
