"""Custom exceptions for the Rejoinder pipeline.

Provides a hierarchy of exceptions for better error handling and reporting.
Stage errors (service, parse, extraction, classification) surface to the
caller as terminal progress events; ``ValidationError`` is recovered inside
the letter assembler and never leaves it.
"""

from __future__ import annotations

from typing import Any


class RejoinderError(Exception):
    """Base exception for all Rejoinder errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for JSON responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ServiceError(RejoinderError):
    """Raised when the completion service fails (network, quota, model)."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.original_error = original_error
        if original_error is not None:
            self.details["original_error_type"] = type(original_error).__name__


class ParseError(RejoinderError):
    """Raised when no structured payload can be located in a response."""

    def __init__(self, message: str, expected: str, sample: str = "") -> None:
        super().__init__(
            message,
            {"expected": expected, "sample": sample[:200]},
        )
        self.expected = expected


class ExtractionError(RejoinderError):
    """Raised when the model reports an error or finds nothing usable."""


class ClassificationError(RejoinderError):
    """Raised when an objection cannot be classified into an array of keys."""


class ValidationError(RejoinderError):
    """Raised when a single-pass letter fails the completeness check."""

    def __init__(self, missing: list[str], word_count: int, required_words: int) -> None:
        summary = ", ".join(missing) if missing else "none"
        super().__init__(
            f"Letter failed completeness check (missing: {summary}; "
            f"words: {word_count}/{required_words})",
            {
                "missing": list(missing),
                "word_count": word_count,
                "required_words": required_words,
            },
        )
        self.missing = list(missing)
        self.word_count = word_count
        self.required_words = required_words


class DocumentConversionError(RejoinderError):
    """Raised when an uploaded document cannot be turned into text."""

    def __init__(self, filename: str, message: str) -> None:
        super().__init__(
            f"Error reading document '{filename}': {message}",
            {"filename": filename},
        )
        self.filename = filename


class InvalidPayloadError(RejoinderError):
    """Raised when input validation fails.

    Used for case payloads, profile payloads, identifiers, etc.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field
        self.value = value
        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)[:100]


class CaseNotFoundError(RejoinderError):
    """Raised when a referenced case does not exist."""

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case '{case_id}' does not exist", {"case_id": case_id})
        self.case_id = case_id


class LetterNotFoundError(RejoinderError):
    """Raised when a referenced request letter does not exist in a case."""

    def __init__(self, case_id: str, letter_id: str) -> None:
        super().__init__(
            f"Request letter '{letter_id}' does not exist in case '{case_id}'",
            {"case_id": case_id, "letter_id": letter_id},
        )
        self.case_id = case_id
        self.letter_id = letter_id


class RequestNotFoundError(RejoinderError):
    """Raised when a referenced request does not exist in a letter."""

    def __init__(self, letter_id: str, request_id: int) -> None:
        super().__init__(
            f"Request {request_id} does not exist in letter '{letter_id}'",
            {"letter_id": letter_id, "request_id": request_id},
        )
        self.letter_id = letter_id
        self.request_id = request_id


class VersionNotFoundError(RejoinderError):
    """Raised when a referenced letter version does not exist."""

    def __init__(self, case_id: str, version_id: int) -> None:
        super().__init__(
            f"Letter version {version_id} does not exist in case '{case_id}'",
            {"case_id": case_id, "version_id": version_id},
        )
        self.case_id = case_id
        self.version_id = version_id


class RunInProgressError(RejoinderError):
    """Raised when a pipeline run is already active for the same letter."""

    def __init__(self, case_id: str, letter_id: str, pipeline: str) -> None:
        super().__init__(
            f"A {pipeline} run is already in progress for letter '{letter_id}'",
            {"case_id": case_id, "letter_id": letter_id, "pipeline": pipeline},
        )
        self.case_id = case_id
        self.letter_id = letter_id
        self.pipeline = pipeline


class ProgressChannelClosedError(RejoinderError):
    """Raised when an event is emitted after a channel's terminal event."""

    def __init__(self, channel: str) -> None:
        super().__init__(
            f"Progress channel '{channel}' already delivered its terminal event",
            {"channel": channel},
        )
        self.channel = channel
