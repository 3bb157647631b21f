"""Error taxonomy shared by the engine and the API layer.

Every error carries a short machine-readable ``code`` so that the HTTP
layer can report, for example, ``analysis_not_ready`` distinctly from a
generic failure and clients know to retry.
"""

from __future__ import annotations


class ConsentError(Exception):
    """Base class for all consent engine errors."""

    code: str = "consent_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(ConsentError):
    """Malformed input, rejected before any storage access."""

    code = "validation_error"


class NotFoundError(ConsentError):
    """Unknown user, session or video asset id."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ConsentError):
    """A consent status change violated the lifecycle rules."""

    code = "invalid_transition"


class AnalysisNotReadyError(ConsentError):
    """Verification was requested before the AI analysis was stored."""

    code = "analysis_not_ready"


class OracleFailureError(ConsentError):
    """The AI oracle errored, timed out, or returned an unusable payload.

    Never surfaced to pipeline callers: the pipeline converts it into a
    degraded, zero-confidence result.
    """

    code = "oracle_failure"


class StorageFailureError(ConsentError):
    """The persistence layer or media store failed.  Always propagated."""

    code = "storage_failure"
