"""Tests for api/api/services/billing_service.py

Covers:
- Stripe status mapping
- Event translation into BillingEvent values (user resolution, dates, plan)
- handle_webhook_event dispatch and the ignored paths
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from api.services.billing_service import BillingService, map_subscription_status
from consent_engine.errors import NotFoundError
from consent_engine.models.user import SubscriptionStatus

_PERIOD_END = 1_740_830_400  # 2025-03-01T12:00:00Z


def _service(user_by_subscription=None) -> tuple[BillingService, MagicMock, MagicMock]:
    store = MagicMock()
    store.get_user_by_stripe_subscription = AsyncMock(return_value=user_by_subscription)
    retention = MagicMock()
    retention.handle_billing_event = AsyncMock()
    return BillingService(store, retention, MagicMock()), store, retention


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


class TestMapSubscriptionStatus:
    @pytest.mark.parametrize(
        ("stripe_status", "expected"),
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.ACTIVE),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELED),
            ("incomplete", SubscriptionStatus.NONE),
            (None, SubscriptionStatus.NONE),
        ],
    )
    def test_mapping(self, stripe_status, expected) -> None:
        assert map_subscription_status(stripe_status) is expected


# ---------------------------------------------------------------------------
# Event translation
# ---------------------------------------------------------------------------


class TestToBillingEvent:
    """Verify Stripe payloads become the right BillingEvent."""

    @pytest.mark.asyncio
    async def test_checkout_uses_metadata_user(self) -> None:
        service, _, _ = _service()
        event = await service.to_billing_event(
            _event(
                "checkout.session.completed",
                {"metadata": {"userId": "user-1"}, "customer": "cus_1", "subscription": "sub_1"},
            )
        )
        assert event.user_id == "user-1"
        assert event.new_status is SubscriptionStatus.ACTIVE
        assert event.stripe_subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_checkout_without_user_dropped(self) -> None:
        service, _, _ = _service()
        assert await service.to_billing_event(_event("checkout.session.completed", {"id": "cs_1"})) is None

    @pytest.mark.asyncio
    async def test_subscription_update_carries_period_end_and_plan(self) -> None:
        service, _, _ = _service()
        event = await service.to_billing_event(
            _event(
                "customer.subscription.updated",
                {
                    "id": "sub_1",
                    "status": "past_due",
                    "metadata": {"user_id": "user-1"},
                    "items": {
                        "data": [
                            {
                                "current_period_end": _PERIOD_END,
                                "price": {"recurring": {"interval": "year"}},
                            }
                        ]
                    },
                },
            )
        )
        assert event.new_status is SubscriptionStatus.PAST_DUE
        assert event.current_period_end == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
        assert event.subscription_plan == "annual"

    @pytest.mark.asyncio
    async def test_subscription_resolved_through_store(self) -> None:
        user = MagicMock(id="user-7")
        service, store, _ = _service(user_by_subscription=user)
        event = await service.to_billing_event(
            _event("customer.subscription.updated", {"id": "sub_7", "status": "active"})
        )
        assert event.user_id == "user-7"
        store.get_user_by_stripe_subscription.assert_awaited_once_with("sub_7")

    @pytest.mark.asyncio
    async def test_subscription_deleted_has_no_dates(self) -> None:
        service, _, _ = _service()
        event = await service.to_billing_event(
            _event(
                "customer.subscription.deleted",
                {"id": "sub_1", "metadata": {"userId": "user-1"}, "current_period_end": _PERIOD_END},
            )
        )
        assert event.new_status is SubscriptionStatus.CANCELED
        assert event.current_period_end is None
        assert event.canceled_at is None

    @pytest.mark.asyncio
    async def test_invoice_failure_is_past_due(self) -> None:
        service, _, _ = _service()
        event = await service.to_billing_event(
            _event(
                "invoice.payment_failed",
                {"subscription": "sub_1", "subscription_details": {"metadata": {"userId": "user-1"}}},
            )
        )
        assert event.user_id == "user-1"
        assert event.new_status is SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_unhandled_type(self) -> None:
        service, _, _ = _service()
        assert await service.to_billing_event(_event("charge.refunded", {})) is None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestHandleWebhookEvent:
    @pytest.mark.asyncio
    async def test_processed(self) -> None:
        service, _, retention = _service()
        result = await service.handle_webhook_event(
            _event("invoice.paid", {"subscription": "sub_1", "subscription_details": {"metadata": {"userId": "u"}}})
        )
        assert result == {"status": "processed"}
        retention.handle_billing_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_user_ignored(self) -> None:
        service, _, retention = _service()
        retention.handle_billing_event.side_effect = NotFoundError("User", "u")
        result = await service.handle_webhook_event(
            _event("checkout.session.completed", {"client_reference_id": "u"})
        )
        assert result == {"status": "ignored"}

    @pytest.mark.asyncio
    async def test_irrelevant_event_ignored(self) -> None:
        service, _, retention = _service()
        assert await service.handle_webhook_event(_event("customer.created", {})) == {"status": "ignored"}
        retention.handle_billing_event.assert_not_awaited()
