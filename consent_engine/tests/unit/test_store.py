"""Tests for EntityStore and the underlying repositories.

Run against a file-backed SQLite database so that each per-operation
transaction sees the writes of the previous ones.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from consent_engine.errors import InputValidationError, NotFoundError, StorageFailureError
from consent_engine.models.mutations import (
    AIDecisionWrite,
    BillingWrite,
    StatusChange,
    TranscriptWrite,
    VerificationWrite,
)
from consent_engine.models.session import (
    AIDecision,
    ButtonChoice,
    ConsentStatus,
    SessionCreate,
    VerificationStatus,
)
from consent_engine.models.user import SubscriptionStatus, UserCreate
from consent_engine.state.store import EntityStore
from sqlalchemy.exc import OperationalError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _open(store: EntityStore, initiator_id: str, clock, days: int | None = 90):
    created_at = clock()
    return await store.create_session(
        SessionCreate(recipient_full_name="Jordan", recipient_phone="+15550100"),
        initiator_user_id=initiator_id,
        created_at=created_at,
        delete_after_days=days,
        retention_until=created_at + timedelta(days=days) if days is not None else None,
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    """Verify user CRUD and credential handling."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, store: EntityStore, initiator) -> None:
        assert (await store.get_user(initiator.id)) == initiator
        by_name = await store.get_user_by_username("alex")
        assert by_name is not None and by_name.id == initiator.id
        assert initiator.subscription_status is SubscriptionStatus.NONE

    @pytest.mark.asyncio
    async def test_duplicate_username_rejected(self, store: EntityStore, initiator, clock) -> None:
        with pytest.raises(InputValidationError, match="already exists"):
            await store.create_user(UserCreate(username="alex", password="another-pass"), created_at=clock())

    @pytest.mark.asyncio
    async def test_authenticate(self, store: EntityStore, initiator) -> None:
        assert (await store.authenticate("alex", "s3cret-pass")) is not None
        assert await store.authenticate("alex", "wrong-pass") is None
        assert await store.authenticate("nobody", "s3cret-pass") is None

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, store: EntityStore, engine, initiator) -> None:
        from consent_engine.state.tables import UserTable
        from sqlalchemy import select
        from sqlalchemy.ext.asyncio import async_sessionmaker

        async with async_sessionmaker(engine)() as session:
            row = (await session.execute(select(UserTable).where(UserTable.id == initiator.id))).scalar_one()
        assert row.password_hash != "s3cret-pass"
        assert row.password_hash.startswith("$2")

    @pytest.mark.asyncio
    async def test_apply_billing_schedules_and_clears(self, store: EntityStore, initiator, clock) -> None:
        end = clock() + timedelta(days=3)
        updated = await store.apply_billing(
            initiator.id,
            BillingWrite(
                subscription_status=SubscriptionStatus.CANCELED,
                subscription_end_date=end,
                account_deletion_date=end + timedelta(days=7),
                stripe_subscription_id="sub_123",
            ),
        )
        assert updated.account_deletion_date == end + timedelta(days=7)
        assert updated.stripe_subscription_id == "sub_123"

        cleared = await store.apply_billing(initiator.id, BillingWrite(subscription_status=SubscriptionStatus.ACTIVE))
        assert cleared.subscription_end_date is None
        assert cleared.account_deletion_date is None
        # Identifier not carried by the second write is kept.
        assert cleared.stripe_subscription_id == "sub_123"
        by_sub = await store.get_user_by_stripe_subscription("sub_123")
        assert by_sub is not None and by_sub.id == initiator.id

    @pytest.mark.asyncio
    async def test_apply_billing_unknown_user(self, store: EntityStore) -> None:
        with pytest.raises(NotFoundError):
            await store.apply_billing("missing", BillingWrite(subscription_status=SubscriptionStatus.ACTIVE))

    @pytest.mark.asyncio
    async def test_users_past_deletion_deadline(self, store: EntityStore, initiator, clock) -> None:
        deadline = clock() + timedelta(days=1)
        await store.apply_billing(
            initiator.id,
            BillingWrite(
                subscription_status=SubscriptionStatus.PAST_DUE,
                subscription_end_date=clock(),
                account_deletion_date=deadline,
            ),
        )
        assert await store.users_past_deletion_deadline(clock()) == []
        due = await store.users_past_deletion_deadline(deadline)
        assert [u.id for u in due] == [initiator.id]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    """Verify session creation, lookup and disjoint-field writes."""

    @pytest.mark.asyncio
    async def test_create_copies_initiator_profile(self, store: EntityStore, initiator, clock) -> None:
        session = await _open(store, initiator.id, clock)
        assert session.initiator_full_name == "Alex Initiator"
        assert session.verification_status is VerificationStatus.PENDING
        assert session.has_audio_mismatch is False
        assert (await store.get_session_by_qr_token(session.qr_code_id)) == session

    @pytest.mark.asyncio
    async def test_list_for_initiator_newest_first(self, store: EntityStore, initiator, clock) -> None:
        first = await _open(store, initiator.id, clock)
        clock.advance(minutes=1)
        second = await _open(store, initiator.id, clock)
        listed = await store.list_sessions_for_initiator(initiator.id)
        assert [s.id for s in listed] == [second.id, first.id]
        assert set(await store.session_ids_for_initiator(initiator.id)) == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_ai_and_verification_writes_are_disjoint(self, store: EntityStore, initiator, clock) -> None:
        session = await _open(store, initiator.id, clock)
        await store.set_verification(
            session.id,
            VerificationWrite(
                button_choice=ButtonChoice.DENIED,
                verification_status=VerificationStatus.VERIFIED,
                has_audio_mismatch=False,
                verified_at=clock(),
            ),
        )
        # A later AI write must not clobber the verification fields.
        after_ai = await store.set_ai_decision(session.id, AIDecisionWrite(ai_analysis_result=AIDecision.UNCLEAR))
        assert after_ai.ai_analysis_result is AIDecision.UNCLEAR
        assert after_ai.button_choice is ButtonChoice.DENIED
        assert after_ai.verification_status is VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "write",
        [
            lambda store, now: store.set_status("missing", StatusChange(consent_status=ConsentStatus.DENIED)),
            lambda store, now: store.set_ai_decision("missing", AIDecisionWrite(ai_analysis_result=AIDecision.UNCLEAR)),
            lambda store, now: store.set_verification(
                "missing",
                VerificationWrite(
                    button_choice=ButtonChoice.GRANTED,
                    verification_status=VerificationStatus.VERIFIED,
                    has_audio_mismatch=False,
                    verified_at=now,
                ),
            ),
            lambda store, now: store.set_retention_exempt("missing", True),
        ],
        ids=["status", "ai_decision", "verification", "retention_exempt"],
    )
    async def test_write_to_missing_session(self, store: EntityStore, clock, write) -> None:
        with pytest.raises(NotFoundError, match="Consent session"):
            await write(store, clock())

    @pytest.mark.asyncio
    async def test_each_writer_touches_its_own_columns(self, store: EntityStore, initiator, clock) -> None:
        session = await _open(store, initiator.id, clock)

        held = await store.set_retention_exempt(session.id, True)
        denied = await store.set_status(session.id, StatusChange(consent_status=ConsentStatus.DENIED))

        assert held.retention_exempt is True and held.consent_status is ConsentStatus.PENDING
        assert denied.consent_status is ConsentStatus.DENIED and denied.retention_exempt is True

    @pytest.mark.asyncio
    async def test_session_ids_for_video_asset(self, store: EntityStore, initiator, make_asset, clock) -> None:
        first = await _open(store, initiator.id, clock)
        await _open(store, initiator.id, clock)
        asset = await make_asset(initiator.id)
        assert await store.session_ids_for_video_asset(asset.id) == []

        await store.set_status(first.id, StatusChange(consent_status=ConsentStatus.DENIED, video_asset_id=asset.id))

        assert await store.session_ids_for_video_asset(asset.id) == [first.id]

    @pytest.mark.asyncio
    async def test_sessions_past_retention_excludes_permanent_and_held(
        self, store: EntityStore, initiator, clock
    ) -> None:
        expiring = await _open(store, initiator.id, clock, days=1)
        held = await _open(store, initiator.id, clock, days=1)
        await _open(store, initiator.id, clock, days=None)
        await store.set_retention_exempt(held.id, True)

        due = await store.sessions_past_retention(clock() + timedelta(days=2))
        assert [s.id for s in due] == [expiring.id]

    @pytest.mark.asyncio
    async def test_retention_boundary_is_inclusive(self, store: EntityStore, initiator, clock) -> None:
        session = await _open(store, initiator.id, clock, days=1)
        assert await store.sessions_past_retention(session.retention_until - timedelta(seconds=1)) == []
        assert [s.id for s in await store.sessions_past_retention(session.retention_until)] == [session.id]


# ---------------------------------------------------------------------------
# Video assets
# ---------------------------------------------------------------------------


class TestVideoAssets:
    """Verify asset metadata and the atomic transcript write."""

    @pytest.mark.asyncio
    async def test_transcript_written_as_unit(self, store: EntityStore, make_asset, clock) -> None:
        asset = await make_asset()
        updated = await store.set_transcript(
            asset.id,
            TranscriptWrite(transcript="Yes I consent", transcription_confidence=88, transcribed_at=clock()),
        )
        assert (updated.transcript, updated.transcription_confidence, updated.transcribed_at) == (
            "Yes I consent",
            88,
            clock(),
        )

    @pytest.mark.asyncio
    async def test_transcript_for_missing_asset(self, store: EntityStore, clock) -> None:
        with pytest.raises(NotFoundError, match="Video asset"):
            await store.set_transcript(
                "missing",
                TranscriptWrite(transcript="x", transcription_confidence=1, transcribed_at=clock()),
            )

    @pytest.mark.asyncio
    async def test_deleting_asset_detaches_session(self, store: EntityStore, initiator, make_asset, clock) -> None:
        session = await _open(store, initiator.id, clock)
        asset = await make_asset(initiator.id)
        await store.set_status(session.id, StatusChange(consent_status=ConsentStatus.DENIED, video_asset_id=asset.id))

        assert await store.delete_video_asset(asset.id) is True
        reloaded = await store.get_session(session.id)
        assert reloaded is not None and reloaded.video_asset_id is None
        assert await store.delete_video_asset(asset.id) is False


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


class TestStorageFailure:
    """Verify SQLAlchemy errors surface as StorageFailureError."""

    @pytest.mark.asyncio
    async def test_operational_error_wrapped(self) -> None:
        class _BrokenSession:
            async def __aenter__(self):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

            async def __aexit__(self, *exc_info):
                return False

        store = EntityStore(lambda: _BrokenSession())  # type: ignore[arg-type]
        with pytest.raises(StorageFailureError, match="get_session failed"):
            await store.get_session("any")
