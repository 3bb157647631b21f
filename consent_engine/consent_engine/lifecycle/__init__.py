"""Consent session lifecycle."""

from consent_engine.lifecycle.state_machine import (
    PERMISSIVE_TRANSITIONS,
    STRICT_TRANSITIONS,
    ConsentLifecycle,
    ConsentStateMachine,
    coerce_status,
)

__all__ = [
    "PERMISSIVE_TRANSITIONS",
    "STRICT_TRANSITIONS",
    "ConsentLifecycle",
    "ConsentStateMachine",
    "coerce_status",
]
