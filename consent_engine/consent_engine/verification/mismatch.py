"""Reconciliation of the AI decision with the recipient's button choice."""

from __future__ import annotations

import math

from consent_engine.models.session import AIDecision, ButtonChoice

DEFAULT_MISMATCH_THRESHOLD = 70


def scale_confidence(confidence: float) -> int:
    """Scale an oracle confidence in ``[0, 1]`` to an integer percentage.

    Rounds the float product half up, as stored values have always been
    computed, so ``0.705 -> 71`` but ``0.145 -> 14`` (``0.145 * 100`` is
    ``14.499999999999998``).  Clamped to ``0..100`` so an out-of-range oracle
    value cannot violate the column constraint.
    """
    rounded = math.floor(confidence * 100 + 0.5)
    return max(0, min(100, rounded))


def determine_mismatch(
    ai_decision: AIDecision | str,
    button_choice: ButtonChoice | str,
    confidence: int,
    threshold: int = DEFAULT_MISMATCH_THRESHOLD,
) -> bool:
    """Return whether a confident AI decision disagrees with the button.

    Below *threshold* the AI is never trusted enough to flag anything.
    ``UNCLEAR`` counts as "not granted", so a confident UNCLEAR against a
    ``granted`` click is a mismatch.
    """
    if confidence < threshold:
        return False

    ai_says_granted = AIDecision(ai_decision) is AIDecision.CONSENT_GRANTED
    button_says_granted = ButtonChoice(button_choice) is ButtonChoice.GRANTED
    return ai_says_granted != button_says_granted
