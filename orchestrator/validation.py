"""Input validation utilities for the Rejoinder pipeline service.

Provides validation functions that use Pydantic models and raise
``InvalidPayloadError`` on failure.
"""

from __future__ import annotations

import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from orchestrator.exceptions import InvalidPayloadError
from orchestrator.models import (
    BatchReplyPayload,
    CaseUpdatePayload,
    NewCasePayload,
    ReplyRequestPayload,
    UserProfile,
)

logger = logging.getLogger("rejoinder.orchestrator.validation")

ModelT = TypeVar("ModelT", bound=BaseModel)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def _validate_model(model: type[ModelT], payload: Any, label: str) -> ModelT:
    if payload is None:
        raise InvalidPayloadError(f"{label} payload is required", field=label)

    if not isinstance(payload, dict):
        raise InvalidPayloadError(
            f"{label} payload must be a dictionary, got {type(payload).__name__}",
            field=label,
            value=type(payload).__name__,
        )

    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        first_error = errors[0] if errors else {}
        field_path = ".".join(str(loc) for loc in first_error.get("loc", [])) or label
        message = first_error.get("msg", "Validation failed")
        raise InvalidPayloadError(
            f"Invalid {label}: {message}",
            field=field_path,
            details={"pydantic_errors": [dict(error) for error in errors[:5]]},
        ) from e


def validate_case_id(case_id: Any) -> str:
    """Validate a case identifier.

    Case ids name directories on disk, so only letters, digits, ``.``, ``_``
    and ``-`` are accepted.

    Raises:
        InvalidPayloadError: If the case id is missing or unsafe.
    """
    if not isinstance(case_id, str) or not case_id.strip():
        raise InvalidPayloadError("Case id is required", field="caseId")

    case_id = case_id.strip()
    if not _SAFE_ID.match(case_id):
        raise InvalidPayloadError(
            "Case id must be 1-128 letters, digits, '.', '_' or '-' and start with a letter or digit",
            field="caseId",
            value=case_id,
        )
    return case_id


def slugify_case_name(case_name: str) -> str:
    """Derive a case id from a case name (``Doe v. Acme`` -> ``doe-v-acme``)."""
    slug = _SLUG_STRIP.sub("-", case_name.lower()).strip("-")
    return slug[:64] or "case"


def validate_new_case(payload: Any) -> NewCasePayload:
    """Validate a new-case payload, deriving the case id when absent.

    Raises:
        InvalidPayloadError: If the payload is invalid.
    """
    validated = _validate_model(NewCasePayload, payload, "case")
    if not validated.case_name.strip():
        raise InvalidPayloadError("Case name cannot be empty", field="caseName")

    case_id = validated.case_id or slugify_case_name(validated.case_name)
    return validated.model_copy(update={"case_id": validate_case_id(case_id)})


def validate_case_update(payload: Any) -> CaseUpdatePayload:
    validated = _validate_model(CaseUpdatePayload, payload, "case update")
    if validated.case_name is not None and not validated.case_name.strip():
        raise InvalidPayloadError("Case name cannot be empty", field="caseName")
    return validated


def validate_reply_request(payload: Any) -> ReplyRequestPayload:
    return _validate_model(ReplyRequestPayload, payload or {}, "reply request")


def validate_batch_reply(payload: Any) -> BatchReplyPayload:
    return _validate_model(BatchReplyPayload, payload or {}, "batch reply")


def validate_profile(payload: Any) -> UserProfile:
    """Validate a profile payload.

    Raises:
        InvalidPayloadError: If the payload is invalid. The offending value
            is never echoed back since it may be the API key.
    """
    try:
        return _validate_model(UserProfile, payload, "profile")
    except InvalidPayloadError as exc:
        exc.details.pop("pydantic_errors", None)
        raise


def validate_letter_id(letter_id: Any) -> str:
    """Validate a request letter id.

    Raises:
        InvalidPayloadError: If the letter id is missing or not a string.
    """
    if not isinstance(letter_id, str):
        raise InvalidPayloadError(
            f"Letter id must be a string, got {type(letter_id).__name__}",
            field="letterId",
            value=type(letter_id).__name__,
        )

    letter_id = letter_id.strip()
    if not letter_id:
        raise InvalidPayloadError("Letter id cannot be empty", field="letterId")
    return letter_id


def validate_request_id(request_id: Any) -> int:
    """Validate a request id: a positive integer, or its string form."""
    try:
        value = int(request_id)
    except (TypeError, ValueError):
        raise InvalidPayloadError(
            "Request id must be a positive integer",
            field="requestId",
            value=request_id,
        ) from None

    if value <= 0:
        raise InvalidPayloadError("Request id must be a positive integer", field="requestId", value=request_id)
    return value


def validate_version_id(version_id: Any) -> int:
    try:
        value = int(version_id)
    except (TypeError, ValueError):
        raise InvalidPayloadError(
            "Version id must be a positive integer",
            field="versionId",
            value=version_id,
        ) from None

    if value <= 0:
        raise InvalidPayloadError("Version id must be a positive integer", field="versionId", value=version_id)
    return value
