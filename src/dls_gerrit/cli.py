# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

import json
import logging
import sys
import time
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import ConfigError, Settings, load_settings
from .gerrit.events import parse_stream_event
from .gerrit.service import GerritService, create_gerrit_service
from .gerrit.stream import StreamEventsListener
from .unverify import (
    UnverifyContext,
    UnverifyResult,
    handle,
    unverify_open_changes_with_topic,
)

app = typer.Typer(
    help="Unverify Gerrit topics on change events and trigger verify jobs"
)
console = Console(markup=False)

log = logging.getLogger("dls_gerrit.cli")


def _version_callback(value: bool):
    if value:
        console.print(f"dls-gerrit version {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to gerrit.config (or set DLS_GERRIT_CONFIG)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
):
    """Gerrit unverify and verify-trigger tools."""
    _setup_logging(verbose)
    ctx.obj = {"config": config}


def _load(ctx: typer.Context) -> Settings:
    try:
        return load_settings(ctx.obj.get("config") if ctx.obj else None)
    except ConfigError as e:
        console.print(f"Configuration error: {e}")
        raise typer.Exit(2) from e


def _service(settings: Settings) -> GerritService:
    password = settings.password.get_secret_value() if settings.password else None
    return create_gerrit_service(
        settings.gerrit_url, username=settings.username, password=password
    )


def _display_results(results: List[UnverifyResult]) -> None:
    table = Table(title="Unverify Results")
    table.add_column("Event", style="cyan")
    table.add_column("Change", style="white")
    table.add_column("Status", style="white")
    table.add_column("Changes", style="yellow")
    table.add_column("Votes", style="yellow")
    table.add_column("Details", style="red")

    for result in results:
        details = list(result.errors)
        if result.reason:
            details.insert(0, result.reason)
        table.add_row(
            result.event_type,
            str(result.change_number),
            result.status.value,
            str(result.changes_affected),
            str(result.votes_removed),
            "\n".join(details),
        )
    console.print(table)


@app.command()
def replay(
    ctx: typer.Context,
    events_file: str = typer.Argument(
        ..., help="File of stream-events JSON lines, or - for stdin"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show which votes would be removed"
    ),
):
    """
    Handle recorded stream-events.

    Each line must be one JSON object as printed by `gerrit stream-events`.
    Event types other than patchset-created, change-abandoned,
    change-restored and topic-changed are ignored.
    """
    settings = _load(ctx)
    context = UnverifyContext.from_service(
        _service(settings), settings.unverify, dry_run=dry_run
    )

    stream = sys.stdin if events_file == "-" else open(events_file, encoding="utf-8")
    results: List[UnverifyResult] = []
    try:
        for lineno, line in enumerate(stream, start=1):
            if not line.strip():
                continue
            try:
                event = parse_stream_event(json.loads(line))
            except ValueError as e:
                console.print(f"Line {lineno}: skipping malformed event: {e}")
                continue
            if event is not None:
                results.append(handle(context, event))
    finally:
        if stream is not sys.stdin:
            stream.close()

    if not results:
        console.print("No events to handle.")
        return
    _display_results(results)
    if any(not r.succeeded or r.errors for r in results):
        raise typer.Exit(1)


@app.command("unverify-topic")
def unverify_topic(
    ctx: typer.Context,
    topic: str = typer.Argument(..., help="Topic whose open changes to unverify"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show which votes would be removed"
    ),
):
    """Remove Verified votes from all open changes in a topic."""
    settings = _load(ctx)
    context = UnverifyContext.from_service(
        _service(settings), settings.unverify, dry_run=dry_run
    )
    result = UnverifyResult(event_type="manual")
    try:
        unverify_open_changes_with_topic(context, topic, result)
    except Exception as e:
        console.print(f"Error: {e}")
        raise typer.Exit(1) from e

    if result.aborted_topics:
        console.print(
            f"Topic \"{topic}\" has more than {settings.unverify.max_changes} "
            "open changes with Verified votes; nothing was changed."
        )
        raise typer.Exit(1)
    verb = "Would remove" if dry_run else "Removed"
    console.print(
        f"{verb} {result.votes_removed} Verified votes from "
        f"{result.changes_affected} changes in topic \"{topic}\""
    )
    for error in result.errors:
        console.print(f"  failed: {error}")
    if result.errors:
        raise typer.Exit(1)


@app.command()
def listen(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Log which votes would be removed"
    ),
):
    """Follow gerrit stream-events over SSH and unverify topics as they change."""
    settings = _load(ctx)
    if not settings.stream.hostname:
        console.print("No stream-events server configured.")
        raise typer.Exit(2)

    context = UnverifyContext.from_service(
        _service(settings), settings.unverify, dry_run=dry_run
    )
    listener = StreamEventsListener(
        settings.stream, lambda event: handle(context, event)
    )
    listener.start()
    try:
        while listener.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        log.info("Interrupted, stopping")
    finally:
        listener.stop()
        listener.join(timeout=5)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Address to bind"),
    port: int = typer.Option(8080, "--port", help="Port to listen on"),
):
    """Serve the verify trigger endpoint."""
    import uvicorn

    from .web import create_app

    settings = _load(ctx)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
