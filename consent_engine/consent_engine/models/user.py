"""User and billing-event domain models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Subscription state as tracked locally."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class User(BaseModel):
    """Snapshot of a ``users`` row without the credential hash."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    full_name: str | None = None
    phone_number: str | None = None
    profile_picture_url: str | None = None
    role: str = "user"
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    subscription_plan: str | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    subscription_end_date: datetime | None = None
    account_deletion_date: datetime | None = None
    created_at: datetime


class UserCreate(BaseModel):
    """Registration payload."""

    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9._-]+$")
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str | None = Field(default=None, max_length=256)
    phone_number: str | None = Field(default=None, max_length=64)
    profile_picture_url: str | None = Field(default=None, max_length=2048)


class BillingEvent(BaseModel):
    """Subscription status change pushed by the billing provider.

    ``canceled_at`` and ``current_period_end`` are only meaningful for
    cancellation and non-payment events.  The Stripe identifiers are
    recorded when present so later invoice events can be correlated.
    """

    user_id: str
    new_status: SubscriptionStatus
    canceled_at: datetime | None = None
    current_period_end: datetime | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    subscription_plan: str | None = None
