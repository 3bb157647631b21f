"""Rich output formatting for the ConsentIQ CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from consent_engine.models.session import ConsentSession
    from consent_engine.retention import SweepReport


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "pending": "yellow",
    "granted": "green",
    "denied": "red",
    "revoked": "dim red",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


# ---------------------------------------------------------------------------
# Sweep reports
# ---------------------------------------------------------------------------


def display_sweep_report(console: Console, report: SweepReport) -> None:
    """Render one retention sweep run.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    report:
        The sweep outcome.
    """
    border = "green" if report.ok else "red"
    header_lines = [
        f"[bold]Started:[/bold]  {report.started_at.isoformat()}",
        f"[bold]Examined:[/bold] {report.examined}",
        f"[bold]Deleted:[/bold]  {len(report.deleted)}",
        f"[bold]Skipped:[/bold]  {len(report.skipped)}",
        f"[bold]Failed:[/bold]   {len(report.failures)}",
    ]
    console.print(
        Panel(
            "\n".join(header_lines),
            title=f"{report.kind.capitalize()} sweep",
            border_style=border,
        )
    )

    if not report.failures:
        return

    table = Table(title="Failures", show_lines=False)
    table.add_column("ID", style="bold")
    table.add_column("Reason", style="red")
    for entity_id, reason in sorted(report.failures.items()):
        table.add_row(entity_id, reason)
    console.print(table)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def display_session(console: Console, session: ConsentSession) -> None:
    """Render a consent session's status and retention fields."""
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Session", session.id)
    table.add_row("Recipient", session.recipient_full_name)
    table.add_row("Status", _coloured_status(session.consent_status.value))
    table.add_row(
        "Retention",
        "permanent" if session.retention_until is None else session.retention_until.isoformat(),
    )
    table.add_row("Legal hold", "[yellow]yes[/yellow]" if session.retention_exempt else "no")
    console.print(table)
