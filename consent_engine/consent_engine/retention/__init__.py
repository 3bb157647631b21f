"""Session retention and account deletion."""

from consent_engine.retention.policy import (
    DEFAULT_POLICY,
    DeletionSchedule,
    RetentionPolicy,
    billing_write_for,
    compute_deletion_schedule,
    compute_retention_until,
)
from consent_engine.retention.scheduler import RetentionScheduler, SweepReport

__all__ = [
    "DEFAULT_POLICY",
    "DeletionSchedule",
    "RetentionPolicy",
    "RetentionScheduler",
    "SweepReport",
    "billing_write_for",
    "compute_deletion_schedule",
    "compute_retention_until",
]
