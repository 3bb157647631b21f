"""Consent status state machine.

The machine is a pure decision function: given a session snapshot and a
requested status it either raises or returns the :class:`StatusChange`
mutation to persist.  Persistence is done by :class:`ConsentLifecycle`,
which loads the session from the :class:`EntityStore`, asks the machine,
and writes the result.

Two transition tables are provided.  ``PERMISSIVE_TRANSITIONS`` allows
any status to follow any other and is the default, matching production
behaviour.  ``STRICT_TRANSITIONS`` only allows the intended lifecycle
edges and is selected with ``CONSENT_STRICT_TRANSITIONS=true``.  In both
modes a session can only become ``granted`` when a video asset is attached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from consent_engine.errors import InputValidationError, InvalidTransitionError
from consent_engine.models.mutations import StatusChange
from consent_engine.models.session import ConsentSession, ConsentStatus, SessionCreate
from consent_engine.models.video import VideoAsset
from consent_engine.retention.policy import DEFAULT_POLICY, RetentionPolicy, compute_retention_until
from consent_engine.state.store import EntityStore

logger = logging.getLogger(__name__)

TransitionTable = Mapping[ConsentStatus, frozenset[ConsentStatus]]

_ALL_STATUSES = frozenset(ConsentStatus)

PERMISSIVE_TRANSITIONS: TransitionTable = {status: _ALL_STATUSES for status in ConsentStatus}

STRICT_TRANSITIONS: TransitionTable = {
    ConsentStatus.PENDING: frozenset(
        {ConsentStatus.GRANTED, ConsentStatus.DENIED, ConsentStatus.REVOKED}
    ),
    ConsentStatus.GRANTED: frozenset({ConsentStatus.REVOKED}),
    ConsentStatus.DENIED: frozenset(),
    ConsentStatus.REVOKED: frozenset(),
}


def coerce_status(value: ConsentStatus | str) -> ConsentStatus:
    """Parse *value* into a :class:`ConsentStatus` or raise InputValidationError."""
    if isinstance(value, ConsentStatus):
        return value
    try:
        return ConsentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ConsentStatus)
        raise InputValidationError(f"Invalid consent status {value!r}; expected one of: {allowed}") from None


class ConsentStateMachine:
    """Validates consent status transitions against a transition table.

    Parameters
    ----------
    transitions:
        Mapping from the current status to the set of statuses it may move
        to.  Defaults to :data:`PERMISSIVE_TRANSITIONS`.
    """

    def __init__(self, transitions: TransitionTable | None = None) -> None:
        self._transitions = transitions if transitions is not None else PERMISSIVE_TRANSITIONS

    @classmethod
    def from_settings(cls, strict: bool) -> ConsentStateMachine:
        return cls(STRICT_TRANSITIONS if strict else PERMISSIVE_TRANSITIONS)

    def allowed_targets(self, current: ConsentStatus) -> frozenset[ConsentStatus]:
        return self._transitions.get(current, frozenset())

    def transition(
        self,
        session: ConsentSession,
        new_status: ConsentStatus | str,
        *,
        video_asset_id: str | None = None,
        now: datetime,
    ) -> StatusChange:
        """Decide the mutation that moves *session* to *new_status*.

        Raises
        ------
        InputValidationError
            If *new_status* is not a known consent status.
        InvalidTransitionError
            If the edge is not in the transition table, or the session would
            be granted without a video asset.
        """
        target = coerce_status(new_status)
        current = session.consent_status

        if target not in self.allowed_targets(current):
            raise InvalidTransitionError(
                f"Cannot move session {session.id} from {current.value} to {target.value}"
            )

        effective_video = video_asset_id or session.video_asset_id
        if target is ConsentStatus.GRANTED and not effective_video:
            raise InvalidTransitionError(f"Cannot grant consent on session {session.id} without a video asset")

        return StatusChange(
            consent_status=target,
            video_asset_id=video_asset_id,
            consent_granted_time=now if target is ConsentStatus.GRANTED else None,
            consent_revoked_time=now if target is ConsentStatus.REVOKED else None,
        )


class ConsentLifecycle:
    """Loads, transitions and persists consent sessions.

    Parameters
    ----------
    store:
        Entity store holding the sessions.
    machine:
        Transition policy.  Defaults to a permissive machine.
    policy:
        Supplies the retention window for sessions that do not choose one.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: EntityStore,
        machine: ConsentStateMachine | None = None,
        policy: RetentionPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._machine = machine or ConsentStateMachine()
        self._policy = policy or DEFAULT_POLICY
        self._clock = clock or (lambda: datetime.now(UTC))

    async def open_session(self, initiator_user_id: str, data: SessionCreate) -> ConsentSession:
        """Create a pending session with its retention deadline fixed now.

        An explicit ``delete_after_days=None`` requests permanent retention;
        leaving the field unset applies the policy default.
        """
        if "delete_after_days" in data.model_fields_set:
            days = data.delete_after_days
        else:
            days = self._policy.default_delete_after_days
        created_at = self._clock()
        session = await self._store.create_session(
            data,
            initiator_user_id=initiator_user_id,
            created_at=created_at,
            delete_after_days=days,
            retention_until=compute_retention_until(created_at, days),
        )
        logger.info(
            "Opened session %s for initiator %s (retention_until=%s)",
            session.id,
            initiator_user_id,
            session.retention_until.isoformat() if session.retention_until else "permanent",
        )
        return session

    async def check_attachable(self, session: ConsentSession, video_asset_id: str) -> VideoAsset:
        """Return the asset if *session* may reference it.

        A recording is evidence for exactly one session, so it must belong to
        the session's initiator (or be unowned) and must not already be
        attached to a different session.

        Raises
        ------
        NotFoundError
            Unknown video asset.
        InputValidationError
            The asset was uploaded by another user.
        InvalidTransitionError
            The asset is already attached to another session.
        """
        asset = await self._store.require_video_asset(video_asset_id)
        if asset.owner_user_id is not None and asset.owner_user_id != session.initiator_user_id:
            raise InputValidationError(f"Video asset {video_asset_id} does not belong to this session's initiator")
        others = [sid for sid in await self._store.session_ids_for_video_asset(video_asset_id) if sid != session.id]
        if others:
            raise InvalidTransitionError(f"Video asset {video_asset_id} is already attached to another session")
        return asset

    async def set_status(
        self,
        session_id: str,
        status: ConsentStatus | str,
        video_asset_id: str | None = None,
    ) -> ConsentSession:
        target = coerce_status(status)
        session = await self._store.require_session(session_id)
        if video_asset_id is not None:
            await self.check_attachable(session, video_asset_id)

        change = self._machine.transition(session, target, video_asset_id=video_asset_id, now=self._clock())
        updated = await self._store.set_status(session_id, change)
        logger.info(
            "Session %s status %s -> %s",
            session_id,
            session.consent_status.value,
            updated.consent_status.value,
        )
        return updated
