"""
Error taxonomy for the intake pipeline.

    IntakeError (base)
    ├── ExtractionFailure        upstream extraction failed; job goes FAILED
    ├── PersistenceUnavailable   durable store unreachable; lookups degrade to "no data"
    └── QueueFullError           optional queue-depth cap exceeded

    InvalidJobTransition (AssertionError)
        illegal job state change; a programming error, not a recoverable condition

Validation hard errors and warnings are never raised. They are collected
into ValidationResult.errors / ValidationResult.warnings.
"""


class IntakeError(Exception):
    """Base exception for intake errors, with optional structured details."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ExtractionFailure(IntakeError):
    """The extraction adapter could not produce a candidate record."""


class PersistenceUnavailable(IntakeError):
    """The durable store could not be reached or the query failed."""


class QueueFullError(IntakeError):
    """Submitting more work would exceed MAX_QUEUE_DEPTH."""


class InvalidJobTransition(AssertionError):
    """A job was moved along an edge the state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Job {job_id}: illegal transition {current} -> {target}"
        )
