"""ConsentIQ CLI application -- Typer-based operator interface.

Provides commands for schema setup, the retention sweeps (for deployments
that run them from cron instead of inside the API process), legal holds,
and serving the API.  Human-readable output goes to *stderr* via Rich;
``--json`` switches sweep reports to machine-readable JSON on *stdout*.

Database and media settings come from the same ``API_*`` environment the
server reads, and retention policy from ``CONSENT_*``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, TypeVar

import typer
from rich.console import Console

from cli.display import display_session, display_sweep_report

_T = TypeVar("_T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="consentiq",
    help="ConsentIQ - recorded consent capture, AI verification and retention",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Override API_DATABASE_URL for this invocation.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> Any:
    from api.config import load_api_settings

    settings = load_api_settings()
    if _database_url:
        settings = settings.model_copy(update={"database_url": _database_url})
    return settings


def _run_with_store(work: Callable[[Any, Any], Awaitable[_T]], *, with_media: bool = False) -> _T:
    """Open the engine (and optionally the media store), run *work*, tidy up.

    *work* receives the :class:`EntityStore` and the media store (``None``
    unless *with_media* is set).
    """
    from api.dependencies import dispose_media_store, init_media_store
    from consent_engine.state.database import get_engine, get_session_factory
    from consent_engine.state.store import EntityStore

    settings = _load_settings()

    async def _main() -> _T:
        engine = get_engine(settings.database_url)
        media = init_media_store(settings) if with_media else None
        try:
            return await work(EntityStore(get_session_factory(engine)), media)
        finally:
            if with_media:
                await dispose_media_store()
            await engine.dispose()

    return asyncio.run(_main())


def _scheduler(store: Any, media: Any) -> Any:
    from api.dependencies import retention_policy_for
    from consent_engine.config import load_engine_settings
    from consent_engine.retention import RetentionScheduler

    return RetentionScheduler(store, media, retention_policy_for(load_engine_settings()))


def _emit_report(report: Any) -> None:
    if _json_output:
        typer.echo(json.dumps(asdict(report), default=str, sort_keys=True))
    else:
        display_sweep_report(console, report)
    if not report.ok:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the ConsentIQ tables if they do not exist.

    Intended for local SQLite and first-time setup; production schemas are
    managed with ``alembic upgrade head``.
    """
    from consent_engine.state.database import create_tables, get_engine

    settings = _load_settings()

    async def _main() -> None:
        engine = get_engine(settings.database_url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    try:
        asyncio.run(_main())
    except Exception as exc:
        console.print(f"[red]Schema creation failed: {exc}[/red]")
        raise typer.Exit(code=3) from exc
    console.print("[green]Database tables ensured.[/green]")


# ---------------------------------------------------------------------------
# Retention sweeps
# ---------------------------------------------------------------------------


@app.command("sweep-sessions")
def sweep_sessions() -> None:
    """Purge sessions whose retention window has elapsed, with their recordings.

    Exits 1 when any recording could not be deleted; those sessions are kept
    and retried on the next run.
    """

    async def _work(store: Any, media: Any) -> Any:
        return await _scheduler(store, media).sweep_sessions()

    _emit_report(_run_with_store(_work, with_media=True))


@app.command("sweep-accounts")
def sweep_accounts() -> None:
    """Purge accounts past their post-cancellation deletion date.

    Exits 1 when any account could not be fully removed (held sessions or
    media delete failures).
    """

    async def _work(store: Any, media: Any) -> Any:
        return await _scheduler(store, media).sweep_accounts()

    _emit_report(_run_with_store(_work, with_media=True))


@app.command("retention-hold")
def retention_hold(
    session_id: str = typer.Argument(..., help="Consent session ID."),
    release: bool = typer.Option(False, "--release", help="Lift the hold instead of placing it."),
) -> None:
    """Place (or lift) a legal hold exempting a session from every purge."""
    from consent_engine.errors import NotFoundError

    async def _work(store: Any, media: Any) -> Any:
        return await _scheduler(store, media).set_retention_hold(session_id, not release)

    try:
        session = _run_with_store(_work)
    except NotFoundError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=3) from exc

    if _json_output:
        typer.echo(session.model_dump_json())
    else:
        display_session(console, session)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind the API server to."),
    port: int = typer.Option(8000, "--port", "-p", help="API server port."),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload on code changes."),
) -> None:
    """Run the ConsentIQ API with uvicorn."""
    import uvicorn

    config = uvicorn.Config(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        access_log=False,
    )
    console.print(f"[green]✓[/green] API server starting on http://{host}:{port}")
    console.print(f"[green]✓[/green] Readiness probe at http://{host}:{port}/ready")
    try:
        uvicorn.Server(config).run()
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/yellow]")


@app.command()
def version() -> None:
    """Print the ConsentIQ version."""
    from api import __version__

    typer.echo(__version__)
