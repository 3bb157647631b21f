"""Retention enforcement: session purges, billing deadlines, account purges.

Two sweeps run independently of each other and of live traffic:

- ``sweep_sessions`` purges sessions whose ``retention_until`` has passed.
- ``sweep_accounts`` purges users whose ``account_deletion_date`` has
  passed, cascading over everything they own.

Both only ever delete rows already past their deadline, and both re-read
each candidate before acting on it, so they need no coordination with the
state machine or with each other.

Every purge is two-phase: the media blob is removed first, then the
metadata rows.  If the blob delete fails the rows are kept so the next
sweep retries; an orphaned blob is preferable to a row pointing at
nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from consent_engine.errors import InvalidTransitionError, StorageFailureError
from consent_engine.models.session import ConsentSession
from consent_engine.models.user import BillingEvent, User
from consent_engine.retention.policy import DEFAULT_POLICY, RetentionPolicy, billing_write_for
from consent_engine.state.store import EntityStore
from consent_engine.storage.media import MediaStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Result of one sweep run."""

    kind: str
    started_at: datetime
    examined: int = 0
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return (
            f"{self.kind} sweep: examined={self.examined} deleted={len(self.deleted)} "
            f"skipped={len(self.skipped)} failed={len(self.failures)}"
        )


class RetentionScheduler:
    """Applies retention and account-deletion policy against the store.

    Parameters
    ----------
    store:
        Entity store holding users, sessions and video assets.
    media:
        Blob store holding the recordings.
    policy:
        Retention windows.  Defaults to 90-day sessions and a 7-day
        account grace period.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: EntityStore,
        media: MediaStore,
        policy: RetentionPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._media = media
        self._policy = policy or DEFAULT_POLICY
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Purge primitives
    # ------------------------------------------------------------------

    async def _delete_blob(self, storage_key: str) -> str | None:
        """Delete a blob; return an error description instead of raising."""
        try:
            await self._media.delete(storage_key)
        except StorageFailureError as exc:
            logger.warning("Blob delete failed for %s: %s", storage_key, exc.message)
            return exc.message
        return None

    async def _referenced_elsewhere(self, asset_id: str, session_id: str | None = None) -> bool:
        """Whether a session other than *session_id* still points at the asset."""
        return any(sid != session_id for sid in await self._store.session_ids_for_video_asset(asset_id))

    async def _purge_session(self, session: ConsentSession, report: SweepReport) -> bool:
        """Blob first, then the session row, then the asset row.

        An asset still referenced by another session is left in place; that
        session's own retention deadline governs it.
        """
        asset = None
        if session.video_asset_id is not None:
            asset = await self._store.get_video_asset(session.video_asset_id)
        if asset is not None and await self._referenced_elsewhere(asset.id, session.id):
            logger.warning("Video asset %s is shared with another session; keeping it", asset.id)
            asset = None

        if asset is not None:
            error = await self._delete_blob(asset.storage_key)
            if error is not None:
                report.failures[session.id] = error
                return False

        await self._store.delete_session(session.id)
        if asset is not None:
            await self._store.delete_video_asset(asset.id)
        report.deleted.append(session.id)
        logger.info(
            "Purged session %s%s",
            session.id,
            f" and video asset {asset.id}" if asset is not None else "",
        )
        return True

    # ------------------------------------------------------------------
    # Session retention
    # ------------------------------------------------------------------

    async def sweep_sessions(self, now: datetime | None = None) -> SweepReport:
        """Purge every non-exempt session whose retention window has elapsed."""
        now = now or self._clock()
        report = SweepReport(kind="session", started_at=now)

        for candidate in await self._store.sessions_past_retention(now):
            report.examined += 1
            current = await self._store.get_session(candidate.id)
            if (
                current is None
                or current.retention_exempt
                or current.retention_until is None
                or current.retention_until > now
            ):
                report.skipped.append(candidate.id)
                continue
            await self._purge_session(current, report)

        logger.info(report.summary())
        return report

    async def purge_session(self, session_id: str) -> None:
        """Immediately purge one session and its recording.

        Raises
        ------
        NotFoundError
            Unknown session.
        InvalidTransitionError
            The session is under a retention hold.
        StorageFailureError
            The blob could not be deleted; the rows are kept.
        """
        session = await self._store.require_session(session_id)
        if session.retention_exempt:
            raise InvalidTransitionError(f"Session {session_id} is under a retention hold")
        report = SweepReport(kind="purge", started_at=self._clock(), examined=1)
        if not await self._purge_session(session, report):
            raise StorageFailureError(f"Media delete failed for session {session_id}: {report.failures[session_id]}")

    async def set_retention_hold(self, session_id: str, exempt: bool) -> ConsentSession:
        """Place or lift a legal hold that exempts a session from purges."""
        session = await self._store.set_retention_exempt(session_id, exempt)
        logger.info("Retention hold %s for session %s", "placed" if exempt else "lifted", session_id)
        return session

    # ------------------------------------------------------------------
    # Account deletion
    # ------------------------------------------------------------------

    async def handle_billing_event(self, event: BillingEvent, now: datetime | None = None) -> User:
        """Record a subscription status change and (re)schedule deletion.

        Raises
        ------
        NotFoundError
            Unknown user.
        """
        now = now or self._clock()
        write = billing_write_for(event, now, self._policy.account_deletion_grace_days)
        user = await self._store.apply_billing(event.user_id, write)
        logger.info(
            "Billing event for user %s: status=%s deletion=%s",
            event.user_id,
            user.subscription_status.value,
            user.account_deletion_date.isoformat() if user.account_deletion_date else "none",
        )
        return user

    async def sweep_accounts(self, now: datetime | None = None) -> SweepReport:
        """Purge every user whose account deletion deadline has passed.

        Sessions under a retention hold block their owner's deletion; the
        user is reported as a failure and retried on the next sweep.
        """
        now = now or self._clock()
        report = SweepReport(kind="account", started_at=now)

        for candidate in await self._store.users_past_deletion_deadline(now):
            report.examined += 1
            user = await self._store.get_user(candidate.id)
            if user is None or user.account_deletion_date is None or user.account_deletion_date > now:
                # Reactivated or already removed since the candidate query.
                report.skipped.append(candidate.id)
                continue

            error = await self._purge_account(user)
            if error is not None:
                report.failures[user.id] = error
                continue
            report.deleted.append(user.id)

        logger.info(report.summary())
        return report

    async def _purge_account(self, user: User) -> str | None:
        session_report = SweepReport(kind="account-sessions", started_at=self._clock())
        held: list[str] = []

        for session_id in await self._store.session_ids_for_initiator(user.id):
            session = await self._store.get_session(session_id)
            if session is None:
                continue
            if session.retention_exempt:
                held.append(session_id)
                continue
            await self._purge_session(session, session_report)

        if held:
            return f"{len(held)} session(s) under retention hold"
        if session_report.failures:
            return f"media delete failed for {len(session_report.failures)} session(s)"

        for asset in await self._store.list_video_assets_for_owner(user.id):
            if await self._referenced_elsewhere(asset.id):
                logger.warning("Video asset %s is attached to another user's session; keeping it", asset.id)
                continue
            error = await self._delete_blob(asset.storage_key)
            if error is not None:
                return f"media delete failed for video asset {asset.id}"
            await self._store.delete_video_asset(asset.id)

        await self._store.delete_user(user.id)
        logger.info("Deleted account %s (%d sessions)", user.id, len(session_report.deleted))
        return None
