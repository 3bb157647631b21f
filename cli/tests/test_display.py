"""Tests for the Rich display helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from io import StringIO

from cli.display import display_session, display_sweep_report
from consent_engine.models.session import ConsentSession, ConsentStatus
from consent_engine.retention import SweepReport
from rich.console import Console

_NOW = datetime(2025, 3, 1, tzinfo=UTC)


def _console() -> tuple[Console, StringIO]:
    buffer = StringIO()
    return Console(file=buffer, width=120, force_terminal=False), buffer


class TestDisplaySweepReport:
    def test_clean_report(self) -> None:
        console, buffer = _console()
        display_sweep_report(console, SweepReport(kind="session", started_at=_NOW, examined=2, deleted=["a", "b"]))
        output = buffer.getvalue()
        assert "Session sweep" in output
        assert "Deleted:  2" in output
        assert "Failures" not in output

    def test_failures_tabulated(self) -> None:
        console, buffer = _console()
        report = SweepReport(kind="account", started_at=_NOW, examined=1, failures={"user-1": "HTTP 503"})
        display_sweep_report(console, report)
        output = buffer.getvalue()
        assert "Failures" in output
        assert "user-1" in output
        assert "HTTP 503" in output


class TestDisplaySession:
    def test_permanent_retention_and_hold(self) -> None:
        console, buffer = _console()
        session = ConsentSession(
            id="sess-1",
            created_at=_NOW,
            initiator_user_id="user-1",
            recipient_full_name="Jordan",
            consent_status=ConsentStatus.GRANTED,
            session_start_time=_NOW,
            qr_code_id="qr-1",
            retention_exempt=True,
        )
        display_session(console, session)
        output = buffer.getvalue()
        assert "sess-1" in output
        assert "granted" in output
        assert "permanent" in output
        assert "yes" in output
