"""Stripe webhook adapter.

Translates Stripe subscription lifecycle events into
:class:`~consent_engine.models.user.BillingEvent` values and hands them to
:meth:`RetentionScheduler.handle_billing_event`, which records the new
subscription status and (re)schedules or clears account deletion.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from consent_engine.errors import NotFoundError
from consent_engine.models.user import BillingEvent, SubscriptionStatus
from consent_engine.retention import RetentionScheduler
from consent_engine.state.store import EntityStore

from api.config import APISettings

logger = logging.getLogger(__name__)

# Stripe subscription status -> local subscription status.
_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

_INTERVAL_TO_PLAN: dict[str, str] = {"month": "monthly", "year": "annual"}


def map_subscription_status(stripe_status: str | None) -> SubscriptionStatus:
    """Map a Stripe subscription status onto :class:`SubscriptionStatus`."""
    return _STATUS_MAP.get(stripe_status or "", SubscriptionStatus.NONE)


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _metadata_user_id(obj: Mapping[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("userId") or metadata.get("user_id") or None


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _plan_for(subscription: Mapping[str, Any]) -> str | None:
    recurring = (_first_item(subscription).get("price") or {}).get("recurring") or {}
    return _INTERVAL_TO_PLAN.get(recurring.get("interval", ""))


def _period_end(subscription: Mapping[str, Any]) -> datetime | None:
    # Newer API versions report the billing period on the subscription item.
    return _timestamp(subscription.get("current_period_end") or _first_item(subscription).get("current_period_end"))


class BillingService:
    """Stripe webhook processing.

    Parameters
    ----------
    store:
        Entity store used to resolve users from Stripe subscription ids.
    retention:
        Applies the resulting billing event.
    settings:
        API settings containing Stripe configuration.
    """

    def __init__(
        self,
        store: EntityStore,
        retention: RetentionScheduler,
        settings: APISettings,
    ) -> None:
        self._store = store
        self._retention = retention
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    def verify_signature(self, payload: bytes, sig_header: str) -> None:
        """Check the ``Stripe-Signature`` header against the webhook secret.

        Raises
        ------
        ValueError
            Malformed payload.
        stripe.SignatureVerificationError
            The signature does not match.
        """
        stripe = self._get_stripe()
        stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self._settings.stripe_webhook_secret.get_secret_value(),
        )

    async def _resolve_user_id(self, obj: Mapping[str, Any], subscription_id: str | None) -> str | None:
        user_id = _metadata_user_id(obj)
        if user_id:
            return user_id
        if subscription_id:
            user = await self._store.get_user_by_stripe_subscription(subscription_id)
            if user is not None:
                return user.id
        return None

    async def to_billing_event(self, event: Mapping[str, Any]) -> BillingEvent | None:
        """Translate a Stripe event, or return ``None`` when it is not relevant.

        Events whose user cannot be resolved are also dropped (logged).
        """
        event_type = event.get("type", "")
        obj: Mapping[str, Any] = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            subscription_id = obj.get("subscription") if isinstance(obj.get("subscription"), str) else None
            user_id = _metadata_user_id(obj) or obj.get("client_reference_id")
            if not user_id:
                logger.warning("Checkout session %s carries no user id", obj.get("id"))
                return None
            return BillingEvent(
                user_id=user_id,
                new_status=SubscriptionStatus.ACTIVE,
                stripe_customer_id=obj.get("customer"),
                stripe_subscription_id=subscription_id,
            )

        if event_type in (
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            subscription_id = obj.get("id")
            user_id = await self._resolve_user_id(obj, subscription_id)
            if user_id is None:
                logger.warning("Subscription event for unknown subscription %s", subscription_id)
                return None
            if event_type == "customer.subscription.deleted":
                # The subscription is gone; the grace period starts now.
                return BillingEvent(
                    user_id=user_id,
                    new_status=SubscriptionStatus.CANCELED,
                    stripe_customer_id=obj.get("customer"),
                    stripe_subscription_id=subscription_id,
                )
            return BillingEvent(
                user_id=user_id,
                new_status=map_subscription_status(obj.get("status")),
                canceled_at=_timestamp(obj.get("canceled_at")),
                current_period_end=_period_end(obj),
                stripe_customer_id=obj.get("customer"),
                stripe_subscription_id=subscription_id,
                subscription_plan=_plan_for(obj),
            )

        if event_type in ("invoice.payment_succeeded", "invoice.paid", "invoice.payment_failed"):
            subscription_id = obj.get("subscription")
            if not isinstance(subscription_id, str):
                subscription_id = None
            details = obj.get("subscription_details") or {}
            user_id = await self._resolve_user_id(details, subscription_id)
            if user_id is None:
                logger.warning("Invoice %s for unknown subscription %s", obj.get("id"), subscription_id)
                return None
            failed = event_type == "invoice.payment_failed"
            return BillingEvent(
                user_id=user_id,
                new_status=SubscriptionStatus.PAST_DUE if failed else SubscriptionStatus.ACTIVE,
                stripe_customer_id=obj.get("customer"),
                stripe_subscription_id=subscription_id,
            )

        return None

    async def handle_webhook_event(self, event: Mapping[str, Any]) -> dict[str, str]:
        """Process a Stripe webhook event.

        Supported events:
        - ``checkout.session.completed``
        - ``customer.subscription.created``
        - ``customer.subscription.updated``
        - ``customer.subscription.deleted``
        - ``invoice.payment_succeeded`` / ``invoice.paid``
        - ``invoice.payment_failed``

        Returns
        -------
        dict
            Contains ``status`` indicating processing result.
        """
        billing_event = await self.to_billing_event(event)
        if billing_event is None:
            logger.debug("Unhandled Stripe event: %s", event.get("type", ""))
            return {"status": "ignored"}

        try:
            await self._retention.handle_billing_event(billing_event)
        except NotFoundError:
            logger.warning("Stripe event %s references unknown user %s", event.get("id"), billing_event.user_id)
            return {"status": "ignored"}
        return {"status": "processed"}
