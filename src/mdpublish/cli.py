"""Command line interface for operating an mdpublish store."""

from __future__ import annotations

import difflib
import logging
import mimetypes
from pathlib import Path
from typing import Any, Iterable, NoReturn

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from mdpublish.access import WerkzeugPasswordHasher
from mdpublish.config import ConfigError, ConfigManager, PublishConfig
from mdpublish.config.resolver import assign_dotted
from mdpublish.log_setup import configure_logging
from mdpublish.store import (
    UNCHANGED,
    DuplicateFilenameError,
    ImageUpload,
    PublicationStore,
    PublicationValidationError,
    SaveResult,
    StorageError,
)

console = Console()
LOGGER = logging.getLogger(__name__)


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> NoReturn:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    raise click.ClickException(message) from original


def _load_config(ctx: click.Context) -> PublishConfig:
    overrides: dict[str, Any] = {}
    data_dir = ctx.obj.get("data_dir") if ctx.obj else None
    if data_dir:
        overrides["storage.data_dir"] = data_dir
    try:
        return ConfigManager().load(cli_overrides=overrides or None)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _open_store(ctx: click.Context, *, json_output: bool = False) -> PublicationStore:
    """Load configuration, configure logging and open the publication store."""
    config = _load_config(ctx)
    configure_logging(config.logging)
    ctx.meta["mdpublish.config"] = config
    store = PublicationStore.from_settings(config.storage)
    try:
        return store.open()
    except StorageError as exc:
        LOGGER.error("Unable to open publication store: %s", exc)
        _handle_cli_error(
            "Unable to open the publication store; see the log for details.",
            code="storage_error",
            json_output=json_output,
            original=exc,
        )


def _read_images(paths: Iterable[str]) -> list[ImageUpload]:
    uploads: list[ImageUpload] = []
    for raw in paths:
        path = Path(raw)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        uploads.append(ImageUpload.from_bytes(path.name, path.read_bytes(), mime_type))
    return uploads


def _save_payload(result: SaveResult) -> dict[str, Any]:
    return {
        "identifier": result.identifier,
        "filename": result.record.filename,
        "title": result.record.title,
        "protected": result.record.is_protected,
        "images_uploaded": result.accepted,
        "images": list(result.record.images),
        "rejected": [
            {"filename": item.filename, "reason": item.reason, "detail": item.detail}
            for item in result.rejections
        ],
        "updated_at": result.record.updated_at.isoformat(),
    }


def _emit_save(result: SaveResult, verb: str, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=_save_payload(result))
        return
    console.print(
        f"[green]{verb} {result.record.filename} as {result.identifier} "
        f"({result.accepted} image(s) uploaded).[/green]"
    )
    for rejection in result.rejections:
        console.print(f"[yellow]  skipped {rejection.filename}: {rejection.detail}[/yellow]")


def _run_save(action: Any, *, json_output: bool) -> SaveResult | None:
    try:
        return action()
    except DuplicateFilenameError as exc:
        _handle_cli_error(
            str(exc),
            code="duplicate_filename",
            json_output=json_output,
            details={"identifier": exc.identifier},
            original=exc,
        )
    except PublicationValidationError as exc:
        _handle_cli_error(str(exc), code="validation_error", json_output=json_output, original=exc)
    except StorageError as exc:
        LOGGER.error("Storage failure while saving publication: %s", exc)
        _handle_cli_error(
            "Failed to save the publication; see the log for details.",
            code="storage_error",
            json_output=json_output,
            original=exc,
        )


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="mdpublish")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=str),
    help="Override storage.data_dir for this invocation.",
)
@click.pass_context
def cli(ctx: click.Context, data_dir: str | None) -> None:
    """mdpublish stores markdown publications behind unguessable identifiers."""
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the storage layout and metadata index if missing."""
    store = _open_store(ctx)
    count = len(store.publications())
    console.print(
        f"[green]Publication store ready at {store.data_dir} ({count} publication(s)).[/green]"
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--filename", help="Producer filename; defaults to the file's name.")
@click.option("--title", help="Display title; defaults to the filename.")
@click.option("--password", help="Protect the publication with this password.")
@click.option("--origin-path", help="Opaque originating path recorded with the publication.")
@click.option(
    "--image",
    "images",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="Image to upload with the document (repeatable).",
)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the result.")
@click.pass_context
def publish(
    ctx: click.Context,
    path: Path,
    filename: str | None,
    title: str | None,
    password: str | None,
    origin_path: str | None,
    images: tuple[str, ...],
    json_output: bool,
) -> None:
    """Publish a markdown file under a new identifier."""
    store = _open_store(ctx, json_output=json_output)
    content = path.read_text(encoding="utf-8")
    password_hash = WerkzeugPasswordHasher().hash(password) if password else None
    result = _run_save(
        lambda: store.publish(
            filename or path.name,
            content,
            title=title,
            origin_path=origin_path if origin_path is not None else str(path),
            password_hash=password_hash,
            images=_read_images(images),
        ),
        json_output=json_output,
    )
    if result is not None:
        _emit_save(result, "Published", json_output=json_output)


@cli.command()
@click.argument("identifier")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--filename", help="Rename the publication's producer filename.")
@click.option("--title", help="Replace the display title.")
@click.option("--password", help="Set a new password.")
@click.option("--clear-password", is_flag=True, help="Remove password protection.")
@click.option("--origin-path", help="Replace the recorded originating path.")
@click.option(
    "--image",
    "images",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="Image to keep with the document (repeatable); others are removed.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the result.")
@click.pass_context
def update(
    ctx: click.Context,
    identifier: str,
    path: Path,
    filename: str | None,
    title: str | None,
    password: str | None,
    clear_password: bool,
    origin_path: str | None,
    images: tuple[str, ...],
    json_output: bool,
) -> None:
    """Replace the content of an existing publication."""
    if password and clear_password:
        raise click.UsageError("--password and --clear-password are mutually exclusive.")
    store = _open_store(ctx, json_output=json_output)
    content = path.read_text(encoding="utf-8")
    password_hash: Any = UNCHANGED
    if clear_password:
        password_hash = None
    elif password:
        password_hash = WerkzeugPasswordHasher().hash(password)

    result = _run_save(
        lambda: store.update(
            identifier,
            content,
            filename=filename,
            title=title,
            origin_path=origin_path,
            password_hash=password_hash,
            images=_read_images(images),
        ),
        json_output=json_output,
    )
    if result is None:
        _handle_cli_error(
            f"Publication not found: {identifier}", code="not_found", json_output=json_output
        )
    _emit_save(result, "Updated", json_output=json_output)


@cli.command()
@click.argument("filename")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the lookup.")
@click.pass_context
def check(ctx: click.Context, filename: str, json_output: bool) -> None:
    """Report whether FILENAME has already been published."""
    store = _open_store(ctx, json_output=json_output)
    entry = store.lookup_by_filename(filename)
    payload = {
        "exists": entry is not None,
        "identifier": entry.identifier if entry else None,
        "last_updated": entry.record.updated_at.isoformat() if entry else None,
    }
    if json_output:
        console.print_json(data=payload)
        return
    if entry is None:
        console.print(f"[yellow]{filename} has not been published.[/yellow]")
    else:
        console.print(
            f"[green]{filename} is published as {entry.identifier} "
            f"(last updated {payload['last_updated']}).[/green]"
        )


@cli.command("list")
@click.option("--limit", type=int, help="Maximum number of publications to show.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of a table.")
@click.pass_context
def list_publications(ctx: click.Context, limit: int | None, json_output: bool) -> None:
    """List stored publications, most recently updated first."""
    store = _open_store(ctx, json_output=json_output)
    settings: PublishConfig = ctx.meta["mdpublish.config"]
    entries = store.publications()[: limit if limit is not None else settings.cli.list_limit]

    if json_output:
        console.print_json(
            data={
                "publications": [
                    {
                        "identifier": entry.identifier,
                        "filename": entry.record.filename,
                        "title": entry.record.title,
                        "protected": entry.record.is_protected,
                        "images": len(entry.record.images),
                        "updated_at": entry.record.updated_at.isoformat(),
                    }
                    for entry in entries
                ]
            }
        )
        return

    if not entries:
        console.print("[yellow]No publications stored.[/yellow]")
        return

    table = Table(title="Publications")
    table.add_column("Identifier", no_wrap=True)
    table.add_column("Filename")
    table.add_column("Title")
    table.add_column("Protected")
    table.add_column("Images", justify="right")
    table.add_column("Updated")
    for entry in entries:
        record = entry.record
        table.add_row(
            entry.identifier,
            record.filename,
            record.title,
            "yes" if record.is_protected else "no",
            str(len(record.images)),
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.argument("identifier")
@click.option("--raw", is_flag=True, help="Print the stored markdown only.")
@click.pass_context
def show(ctx: click.Context, identifier: str, raw: bool) -> None:
    """Display a publication's metadata or raw markdown."""
    store = _open_store(ctx)
    record = store.lookup_by_identifier(identifier)
    content = store.read_content(identifier) if record is not None else None
    if record is None or content is None:
        raise click.ClickException(f"Publication not found: {identifier}")

    if raw:
        click.echo(content, nl=False)
        return

    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Identifier", identifier)
    table.add_row("Filename", record.filename)
    table.add_row("Title", record.title or "-")
    table.add_row("Origin", record.origin_path or "-")
    table.add_row("Protected", "yes" if record.is_protected else "no")
    table.add_row("Created", record.created_at.isoformat())
    table.add_row("Updated", record.updated_at.isoformat())
    table.add_row("Images", ", ".join(record.images) or "-")
    table.add_row("Size", f"{len(content.encode('utf-8'))} bytes")
    console.print(table)


@cli.command()
@click.argument("identifier")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def delete(ctx: click.Context, identifier: str, yes: bool) -> None:
    """Delete a publication together with its content and images."""
    store = _open_store(ctx)
    if not yes:
        click.confirm(f"Delete publication {identifier}?", abort=True)
    try:
        deleted = store.delete(identifier)
    except StorageError as exc:
        LOGGER.error("Storage failure while deleting %s: %s", identifier, exc)
        raise click.ClickException("Failed to delete the publication; see the log.") from exc
    if not deleted:
        raise click.ClickException(f"Publication not found: {identifier}")
    console.print(f"[green]Deleted {identifier}.[/green]")


@cli.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def recover(ctx: click.Context, yes: bool) -> None:
    """Rebuild the metadata index from the publication directories.

    Titles, passwords, timestamps and image lists are not recoverable.
    """
    store = _open_store(ctx)
    if not yes:
        click.confirm(
            "Rebuild the index? Titles, passwords and image lists will be lost.", abort=True
        )
    try:
        count = store.recover()
    except StorageError as exc:
        LOGGER.error("Recovery failed: %s", exc)
        raise click.ClickException("Recovery failed; see the log for details.") from exc
    console.print(f"[green]Recovered {count} publication(s).[/green]")


@cli.group()
def config() -> None:
    """Manage mdpublish configuration files and overrides."""


@config.command("view")
@click.option(
    "--no-env", is_flag=True, help="Ignore environment overrides when displaying output."
)
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        effective = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY."""
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException(
            "KEY must specify a dotted path such as 'access.window_seconds'."
        )

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        assign_dotted(file_data, segments, parsed_value)
        manager.save(file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    after = manager.read_text().splitlines()

    diff = list(
        difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if not diff:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session."""
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        manager.save(parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
