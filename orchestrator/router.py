"""HTTP routes for cases, the letter pipelines, versions and the profile.

Pipeline endpoints answer with Server-Sent Events: one ``event: <type>`` /
``data: <json>`` frame per progress event, ending with the terminal
``complete``, ``error`` or ``cancel`` frame. Lookups that can fail before a
run starts (unknown case or letter, a run already in progress) are reported
as ordinary HTTP errors instead.
"""

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator, Awaitable
from typing import Any

from fastapi import APIRouter, Body, File, Form, Request, UploadFile, status
from fastapi.responses import Response, StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from letter_factory.constants import MAX_DOCUMENT_BYTES
from orchestrator.exceptions import InvalidPayloadError
from orchestrator.progress import (
    DRAFT_PROGRESS,
    LETTER_PROGRESS,
    REQUEST_PROGRESS,
    UPLOAD_PROGRESS,
    ProgressChannel,
    ProgressEvent,
)
from orchestrator.service import PipelineService

logger = logging.getLogger("rejoinder.api.router")

router = APIRouter()

limiter = Limiter(key_func=get_remote_address)
GENERATION_RATE_LIMIT = os.getenv("REJOINDER_RATE_LIMIT", "30/minute")

_service: PipelineService | None = None

# Pipeline tasks outlive a client that disconnects mid-stream
_background_runs: set[asyncio.Task[Any]] = set()


def configure_service(service: PipelineService | None) -> None:
    """Install the service used by the routes (called from the app lifespan)."""
    global _service
    _service = service


def get_service() -> PipelineService:
    global _service
    if _service is None:
        _service = PipelineService()
    return _service


def format_sse(event: ProgressEvent) -> str:
    return f"event: {event.type}\ndata: {json.dumps(event.to_dict())}\n\n"


def _stream(channel: ProgressChannel, run: Awaitable[Any]) -> StreamingResponse:
    """Start ``run`` in the background and stream ``channel`` as SSE."""
    task = asyncio.ensure_future(run)
    _background_runs.add(task)
    task.add_done_callback(_background_runs.discard)

    async def generate() -> AsyncIterator[str]:
        async for event in channel:
            yield format_sse(event)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


async def _read_upload(file: UploadFile | None) -> tuple[bytes | None, str]:
    """Read an uploaded file; a missing or unnamed part means no file was chosen."""
    if file is None or not file.filename:
        return None, ""

    data = await file.read()
    if len(data) > MAX_DOCUMENT_BYTES:
        raise InvalidPayloadError(
            f"Document too large. Maximum size: {MAX_DOCUMENT_BYTES // (1024 * 1024)}MB",
            field="file",
            value=file.filename,
        )
    return data, file.filename


# ----------------------------------------------------------------------
# Cases
# ----------------------------------------------------------------------


@router.get("/cases")
async def list_cases() -> dict[str, Any]:
    return {"cases": get_service().list_cases()}


@router.post("/cases", status_code=status.HTTP_201_CREATED)
async def create_case(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    return get_service().create_case(payload).to_json_dict()


@router.get("/cases/{case_id}")
async def get_case(case_id: str) -> dict[str, Any]:
    return get_service().get_case(case_id).to_json_dict()


@router.put("/cases/{case_id}")
async def update_case(case_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    return get_service().update_case(case_id, payload).to_json_dict()


@router.delete("/cases/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_case(case_id: str) -> Response:
    get_service().delete_case(case_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/cases/{case_id}/stats")
async def case_stats(case_id: str) -> dict[str, Any]:
    return get_service().case_stats(case_id)


# ----------------------------------------------------------------------
# Pipelines
# ----------------------------------------------------------------------


@router.post("/cases/{case_id}/letters")
@limiter.limit(GENERATION_RATE_LIMIT)
async def import_request_letter(
    request: Request,
    case_id: str,
    file: UploadFile | None = File(None),
    description: str | None = Form(None),
    response_date: str | None = Form(None, alias="responseDate"),
    recipient_emails: str | None = Form(None, alias="recipientEmails"),
    salutation_names: str | None = Form(None, alias="salutationNames"),
) -> StreamingResponse:
    """Import a request letter (PDF or text) and stream ``request-progress``."""
    service = get_service()
    service.get_case(case_id)
    service.ensure_idle(case_id, "import")
    data, filename = await _read_upload(file)

    channel = ProgressChannel(REQUEST_PROGRESS)
    run = service.import_request_letter(
        case_id,
        data,
        filename,
        description=description,
        response_date=response_date,
        recipient_emails=recipient_emails,
        salutation_names=salutation_names,
        channel=channel,
    )
    return _stream(channel, run)


@router.post("/cases/{case_id}/letters/{letter_id}/objections")
@limiter.limit(GENERATION_RATE_LIMIT)
async def extract_objections(
    request: Request,
    case_id: str,
    letter_id: str,
    file: UploadFile | None = File(None),
) -> StreamingResponse:
    """Extract objections from the opponent's response and stream ``upload-progress``."""
    service = get_service()
    service.get_letter(case_id, letter_id)
    service.ensure_idle(case_id, letter_id)
    data, filename = await _read_upload(file)

    channel = ProgressChannel(UPLOAD_PROGRESS)
    run = service.extract_objections_stream(case_id, letter_id, data, filename, channel=channel)
    return _stream(channel, run)


@router.post("/cases/{case_id}/letters/{letter_id}/requests/{request_id}/reply")
@limiter.limit(GENERATION_RATE_LIMIT)
async def draft_reply(
    request: Request,
    case_id: str,
    letter_id: str,
    request_id: int,
    payload: dict[str, Any] | None = Body(None),
) -> dict[str, Any]:
    draft = await get_service().draft_reply(case_id, letter_id, request_id, payload)
    return draft.to_dict()


@router.post("/cases/{case_id}/letters/{letter_id}/replies")
@limiter.limit(GENERATION_RATE_LIMIT)
async def draft_all_replies(
    request: Request,
    case_id: str,
    letter_id: str,
    payload: dict[str, Any] | None = Body(None),
) -> StreamingResponse:
    """Draft every pending reply and stream ``draft-progress``."""
    service = get_service()
    service.get_letter(case_id, letter_id)
    service.ensure_idle(case_id, letter_id)

    channel = ProgressChannel(DRAFT_PROGRESS)
    return _stream(channel, service.draft_all_stream(case_id, letter_id, payload, channel=channel))


@router.post("/cases/{case_id}/letters/{letter_id}/response-letter")
@limiter.limit(GENERATION_RATE_LIMIT)
async def generate_response_letter(request: Request, case_id: str, letter_id: str) -> StreamingResponse:
    """Assemble the response letter and stream ``letter-progress``."""
    service = get_service()
    service.get_letter(case_id, letter_id)
    service.ensure_idle(case_id, letter_id)

    channel = ProgressChannel(LETTER_PROGRESS)
    return _stream(channel, service.assemble_stream(case_id, letter_id, channel=channel))


# ----------------------------------------------------------------------
# Versions, taxonomy and profile
# ----------------------------------------------------------------------


@router.get("/cases/{case_id}/versions")
async def list_versions(case_id: str) -> dict[str, Any]:
    versions = get_service().get_versions(case_id)
    return {
        "versions": [
            version.model_dump(mode="json", by_alias=True, exclude={"content"})
            for version in versions
        ]
    }


@router.get("/cases/{case_id}/versions/{version_id}")
async def get_version(case_id: str, version_id: int) -> dict[str, Any]:
    return get_service().get_version(case_id, version_id).to_json_dict()


@router.get("/taxonomy")
async def get_taxonomy() -> dict[str, Any]:
    taxonomy = get_service().taxonomy
    return {"fallback": taxonomy.fallback_category, "categories": taxonomy.to_dict()}


@router.get("/profile")
async def get_profile() -> dict[str, Any]:
    return get_service().get_profile().public_dict()


@router.put("/profile")
async def update_profile(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    return get_service().save_profile(payload).public_dict()
