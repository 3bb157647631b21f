"""Retention windows and billing-driven deletion deadlines.

Defines the two retention rules:

- **Session retention**: a session and its recording are purged
  ``delete_after_days`` whole days (86 400 s each, not calendar-aware) after
  creation.  ``None`` means the session is kept permanently.
- **Account deletion**: after a cancellation or non-payment the account is
  purged ``grace_days`` after the subscription ends.  A later active
  subscription clears the deadline.

These are pure functions; :class:`~consent_engine.retention.scheduler.RetentionScheduler`
applies them against the entity store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from consent_engine.errors import InputValidationError
from consent_engine.models.mutations import BillingWrite
from consent_engine.models.user import BillingEvent, SubscriptionStatus


@dataclass(frozen=True)
class RetentionPolicy:
    """Configurable retention windows.

    Parameters
    ----------
    default_delete_after_days:
        Session retention applied when the initiator does not choose one.
    account_deletion_grace_days:
        Days between subscription end and account purge.
    """

    default_delete_after_days: int = 90
    account_deletion_grace_days: int = 7


DEFAULT_POLICY = RetentionPolicy()


@dataclass(frozen=True)
class DeletionSchedule:
    """Subscription end and the account purge deadline derived from it."""

    subscription_end_date: datetime
    account_deletion_date: datetime


def compute_retention_until(created_at: datetime, delete_after_days: int | None) -> datetime | None:
    """Return the session purge deadline, or ``None`` for permanent retention."""
    if delete_after_days is None:
        return None
    if delete_after_days < 1:
        raise InputValidationError("delete_after_days must be at least 1")
    return created_at + timedelta(days=delete_after_days)


def compute_deletion_schedule(
    event: BillingEvent,
    now: datetime,
    grace_days: int = DEFAULT_POLICY.account_deletion_grace_days,
) -> DeletionSchedule:
    """Derive the account deletion deadline for a cancellation or non-payment.

    The subscription is considered to end at ``current_period_end`` when the
    provider reports one, else at ``canceled_at``, else at *now*.
    """
    end = event.current_period_end or event.canceled_at or now
    return DeletionSchedule(
        subscription_end_date=end,
        account_deletion_date=end + timedelta(days=grace_days),
    )


def billing_write_for(
    event: BillingEvent,
    now: datetime,
    grace_days: int = DEFAULT_POLICY.account_deletion_grace_days,
) -> BillingWrite:
    """Translate a billing event into the user mutation to persist.

    ``active`` clears any pending deletion (idempotent), ``canceled`` and
    ``past_due`` schedule one, and ``none`` records the status only.
    """
    extra = {
        "stripe_customer_id": event.stripe_customer_id,
        "stripe_subscription_id": event.stripe_subscription_id,
        "subscription_plan": event.subscription_plan,
    }
    if event.new_status is SubscriptionStatus.ACTIVE:
        return BillingWrite(
            subscription_status=event.new_status,
            subscription_end_date=None,
            account_deletion_date=None,
            **extra,
        )
    if event.new_status in (SubscriptionStatus.CANCELED, SubscriptionStatus.PAST_DUE):
        schedule = compute_deletion_schedule(event, now, grace_days)
        return BillingWrite(
            subscription_status=event.new_status,
            subscription_end_date=schedule.subscription_end_date,
            account_deletion_date=schedule.account_deletion_date,
            **extra,
        )
    return BillingWrite(subscription_status=event.new_status, touch_deadlines=False, **extra)
