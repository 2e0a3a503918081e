"""Extraction stage - pull objections (and requests) out of uploaded documents.

Both extractions resolve a whole document in one completion call. A failed
call fails the batch; nothing is salvaged per request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from letter_factory.constants import MAX_TOKENS_EXTRACTION
from letter_factory.parsing import parse_structured
from letter_factory.prompts import build_extraction_prompt, build_request_extraction_prompt
from orchestrator.exceptions import ExtractionError

if TYPE_CHECKING:
    from orchestrator.models import Request
    from tools.llm_client import CompletionService

logger = logging.getLogger("rejoinder.letter_factory.extraction")

NO_OBJECTIONS_MESSAGE = (
    "No objections found in the uploaded document. "
    "Please check that you've uploaded the correct response document."
)
NO_REQUESTS_MESSAGE = (
    "No requests found in the uploaded document. "
    "Please check that you've uploaded the correct request letter."
)


@dataclass(frozen=True, slots=True)
class ExtractedObjection:
    """Objection found for one request id, or ``None`` when absent."""

    id: int
    objection: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "objection": self.objection}


@dataclass(frozen=True, slots=True)
class ExtractedRequest:
    id: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text}


def _coerce_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


async def extract_objections(
    llm: CompletionService,
    requests: Sequence[Request],
    raw_text: str,
) -> list[ExtractedObjection]:
    """Find the opponent's objection to each request in ``raw_text``.

    Args:
        llm: Completion service.
        requests: Requests to look for (id and text).
        raw_text: Plain text of the opponent's response document.

    Returns:
        One entry per well-formed item in the model's answer. Ids are ints and
        blank objections are ``None``.

    Raises:
        ServiceError: If the completion call fails.
        ParseError: If no array or error envelope can be located.
        ExtractionError: If the model reports an error or found nothing.
    """
    prompt = build_extraction_prompt(requests, raw_text)
    logger.info("Extracting objections for %d requests (%d chars of text)", len(requests), len(raw_text))

    response = await llm.submit(prompt, max_tokens=MAX_TOKENS_EXTRACTION)
    result = parse_structured(response, "array")
    if result.is_error_envelope:
        logger.warning("Extraction returned an error envelope: %s", result.error_message)
        raise ExtractionError(result.error_message)

    entries: list[ExtractedObjection] = []
    for item in result.payload:
        if not isinstance(item, Mapping):
            logger.warning("Skipping malformed extraction item: %r", item)
            continue
        request_id = _coerce_id(item.get("id"))
        if request_id is None:
            logger.warning("Skipping extraction item without a usable id: %r", item.get("id"))
            continue
        entries.append(ExtractedObjection(request_id, _clean_text(item.get("objection"))))

    if not any(entry.objection for entry in entries):
        raise ExtractionError(NO_OBJECTIONS_MESSAGE, {"entries": len(entries)})

    found = sum(1 for entry in entries if entry.objection)
    logger.info("Extracted objections for %d of %d requests", found, len(requests))
    return entries


def merge_objections(
    requests: Iterable[Request],
    extracted: Iterable[ExtractedObjection],
) -> list[int]:
    """Apply extracted objections to matching requests in place.

    Unknown ids are ignored, requests missing from ``extracted`` keep their
    objection, and a ``None`` entry never clears an existing objection.

    Returns:
        Ids of the requests whose objection was set.
    """
    by_id = {request.id: request for request in requests}
    updated: list[int] = []
    for entry in extracted:
        request = by_id.get(entry.id)
        if request is None:
            logger.debug("Ignoring objection for unknown request id %d", entry.id)
            continue
        if entry.objection is None:
            continue
        request.objection = entry.objection
        updated.append(entry.id)
    return updated


async def extract_requests(llm: CompletionService, raw_text: str) -> list[ExtractedRequest]:
    """Pull numbered requests out of a request letter.

    Raises:
        ServiceError: If the completion call fails.
        ParseError: If no array can be located.
        ExtractionError: If the model reports an error or the array is empty.
    """
    prompt = build_request_extraction_prompt(raw_text)
    logger.info("Extracting requests (%d chars of text)", len(raw_text))

    response = await llm.submit(prompt, max_tokens=MAX_TOKENS_EXTRACTION)
    result = parse_structured(response, "array")
    if result.is_error_envelope:
        raise ExtractionError(result.error_message)

    requests: dict[int, ExtractedRequest] = {}
    for item in result.payload:
        if not isinstance(item, Mapping):
            logger.warning("Skipping malformed request item: %r", item)
            continue
        request_id = _coerce_id(item.get("id"))
        text = _clean_text(item.get("text"))
        if request_id is None or text is None:
            logger.warning("Skipping request item missing id or text: %r", item)
            continue
        if request_id in requests:
            logger.warning("Duplicate request id %d in extraction, keeping the first", request_id)
            continue
        requests[request_id] = ExtractedRequest(request_id, text)

    if not requests:
        raise ExtractionError(NO_REQUESTS_MESSAGE)

    logger.info("Extracted %d requests", len(requests))
    return sorted(requests.values(), key=lambda request: request.id)
