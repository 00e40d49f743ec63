"""
Error types for the ingestion and extraction pipeline.

Only ``StorageFailure`` (and anything uncaught at job level) ends a job; the
rest are raised inside a fallback tier and absorbed by the next one.
"""

from dataclasses import dataclass


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ParseFailure(PipelineError):
    """A document-normalizer tier could not produce pages."""


class ExtractionFailure(PipelineError):
    """Extraction failed for one segment or one prompt."""


class SchemaViolation(ExtractionFailure):
    """Model output could not be parsed into the expected JSON shape."""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response[:500] if raw_response else None


class StorageFailure(PipelineError):
    """Persistence failed; the transaction was rolled back."""


class InvalidJobTransition(PipelineError):
    """A job status change that moves backwards or leaves a terminal state."""


@dataclass
class Attempt:
    """One failed tier in a fallback chain."""

    tier: str
    error: str

    def __str__(self) -> str:
        return f"{self.tier}: {self.error}"


class AllStrategiesFailed(PipelineError):
    """Every tier of a fallback chain failed."""

    def __init__(self, attempts: list[Attempt]):
        self.attempts = attempts
        detail = "; ".join(str(a) for a in attempts) or "no strategies"
        super().__init__(f"all strategies failed ({detail})")
