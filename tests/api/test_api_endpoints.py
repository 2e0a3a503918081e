from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import FIXED_TODAY, make_case, make_letter
from fastapi.testclient import TestClient

from api.main import app
from letter_factory.taxonomy import ObjectionTaxonomy
from orchestrator import router
from orchestrator.service import PipelineService
from orchestrator.storage import JsonCaseRepository, JsonProfileRepository
from tools.llm_client import LLMClient

REQUEST_LETTER = b"""PLAINTIFF'S FIRST SET OF INTERROGATORIES

INTERROGATORY NO. 1: Identify every witness to the accident.

INTERROGATORY NO. 2: State the basis for your affirmative defenses.
"""

RESPONSE_DOCUMENT = b"""DEFENDANT'S RESPONSES

INTERROGATORY NO. 1: Identify every witness to the accident.
RESPONSE: Defendant objects to this interrogatory as vague and overly broad.

INTERROGATORY NO. 2: State the basis for your affirmative defenses.
RESPONSE: Defendant will produce documents.
"""


def parse_sse(body: str) -> list[tuple[str, dict[str, object]]]:
    events = []
    for frame in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def pipeline_service(
    tmp_path: Path,
    taxonomy: ObjectionTaxonomy,
    monkeypatch: pytest.MonkeyPatch,
    no_api_key: None,
) -> PipelineService:
    data_dir = tmp_path / "data"
    service = PipelineService(
        repository=JsonCaseRepository(data_dir),
        profiles=JsonProfileRepository(data_dir),
        taxonomy=taxonomy,
        llm=LLMClient(api_key=None),
        today=lambda: FIXED_TODAY,
    )
    monkeypatch.setattr("api.main.PipelineService", lambda: service)
    return service


@pytest.fixture
def api_client(pipeline_service: PipelineService) -> Iterator[TestClient]:
    router.limiter.reset()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def saved_case(pipeline_service: PipelineService) -> str:
    pipeline_service.repository.save(make_case(make_letter(2, objections=False, replies=False)))
    return "doe-v-acme"


def test_health_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_liveness_probe(api_client: TestClient) -> None:
    response = api_client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


def test_readiness_probe(api_client: TestClient) -> None:
    response = api_client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert "uptime_seconds" in data
    assert data["checks"] == {"pipeline": True, "storage": True, "taxonomy": True}


def test_security_headers(api_client: TestClient) -> None:
    response = api_client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"].startswith("no-store")


def test_case_lifecycle(api_client: TestClient) -> None:
    created = api_client.post("/cases", json={"caseName": "Doe v. Acme", "caseData": {"court": "Superior Court"}})
    assert created.status_code == 201
    assert created.json()["caseId"] == "doe-v-acme"

    listing = api_client.get("/cases").json()["cases"]
    assert [case["caseId"] for case in listing] == ["doe-v-acme"]

    updated = api_client.put("/cases/doe-v-acme", json={"caseData": {"caseNumber": "24-CV-1"}})
    assert updated.status_code == 200
    assert updated.json()["caseData"] == {"court": "Superior Court", "caseNumber": "24-CV-1"}

    assert api_client.delete("/cases/doe-v-acme").status_code == 204
    assert api_client.get("/cases/doe-v-acme").status_code == 404


def test_missing_case_error_body(api_client: TestClient) -> None:
    response = api_client.get("/cases/nobody")
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["type"] == "CaseNotFoundError"
    assert error["message"] == "Case 'nobody' does not exist"
    assert error["request_id"]


def test_duplicate_and_invalid_cases(api_client: TestClient) -> None:
    api_client.post("/cases", json={"caseName": "Doe v. Acme"})

    duplicate = api_client.post("/cases", json={"caseName": "Doe v. Acme"})
    assert duplicate.status_code == 422
    assert duplicate.json()["error"]["type"] == "InvalidPayloadError"

    assert api_client.post("/cases", json={"caseData": {}}).status_code == 422
    assert api_client.get("/cases/.hidden").status_code == 422


def test_request_validation_error(api_client: TestClient) -> None:
    response = api_client.post("/cases", json=["not", "an", "object"])
    assert response.status_code == 422
    assert response.json()["error"]["type"] == "RequestValidationError"


def test_case_stats(api_client: TestClient, saved_case: str) -> None:
    stats = api_client.get(f"/cases/{saved_case}/stats").json()
    assert stats["totals"]["totalRequests"] == 2
    assert stats["totals"]["qualifying"] == 0


def test_import_request_letter_streams_events(api_client: TestClient, pipeline_service: PipelineService) -> None:
    pipeline_service.repository.save(make_case())

    response = api_client.post(
        "/cases/doe-v-acme/letters",
        files={"file": ("requests.txt", REQUEST_LETTER, "text/plain")},
        data={"recipientEmails": "counsel@defense.example", "salutationNames": "Ms. Rivera"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["Cache-Control"] == "no-cache"
    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["progress"] * 4 + ["complete"]
    letter = events[-1][1]["data"]
    assert letter["id"] == "rog-set1"
    assert letter["recipientEmails"] == ["counsel@defense.example"]
    assert len(letter["requests"]) == 2


def test_import_without_file_cancels(api_client: TestClient, pipeline_service: PipelineService) -> None:
    pipeline_service.repository.save(make_case())

    response = api_client.post("/cases/doe-v-acme/letters", data={"description": "Second set"})

    events = parse_sse(response.text)
    assert events == [
        ("cancel", {"type": "cancel", "stage": "cancel", "message": "No file selected", "progress": 0})
    ]


def test_import_into_missing_case(api_client: TestClient) -> None:
    response = api_client.post(
        "/cases/nobody/letters",
        files={"file": ("requests.txt", REQUEST_LETTER, "text/plain")},
    )
    assert response.status_code == 404


def test_extract_objections(api_client: TestClient, saved_case: str) -> None:
    response = api_client.post(
        f"/cases/{saved_case}/letters/rog-set1/objections",
        files={"file": ("response.txt", RESPONSE_DOCUMENT, "text/plain")},
    )

    events = parse_sse(response.text)
    progress = [payload["progress"] for _, payload in events]
    assert progress == sorted(progress)
    name, payload = events[-1]
    assert name == "complete"
    assert payload["data"]["updated"] == [1]

    case = api_client.get(f"/cases/{saved_case}").json()
    assert "vague" in case["requestLetters"][0]["requests"][0]["objection"]


def test_extract_objections_error_event(api_client: TestClient, saved_case: str) -> None:
    response = api_client.post(
        f"/cases/{saved_case}/letters/rog-set1/objections",
        files={"file": ("response.txt", b"Nothing relevant here.", "text/plain")},
    )

    name, payload = parse_sse(response.text)[-1]
    assert name == "error"
    assert payload["message"] == "No objections found in document"


def test_extract_objections_unknown_letter(api_client: TestClient, saved_case: str) -> None:
    response = api_client.post(
        f"/cases/{saved_case}/letters/rog-set9/objections",
        files={"file": ("response.txt", RESPONSE_DOCUMENT, "text/plain")},
    )
    assert response.status_code == 404
    assert response.json()["error"]["type"] == "LetterNotFoundError"


def test_busy_letter_returns_conflict(
    api_client: TestClient, pipeline_service: PipelineService, saved_case: str
) -> None:
    asyncio.run(pipeline_service.runs.start(saved_case, "rog-set1", "assemble"))

    response = api_client.post(f"/cases/{saved_case}/letters/rog-set1/response-letter")

    assert response.status_code == 409
    assert response.json()["error"]["type"] == "RunInProgressError"


def test_draft_single_reply(api_client: TestClient, pipeline_service: PipelineService) -> None:
    pipeline_service.repository.save(make_case(make_letter(1, replies=False)))

    response = api_client.post(
        "/cases/doe-v-acme/letters/rog-set1/requests/1/reply",
        json={"context": "The incident occurred on May 1."},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["requestId"] == 1
    assert "vague" in body["categories"]
    assert body["reply"].startswith("<p><strong>Refuting:")


def test_draft_reply_errors(api_client: TestClient, saved_case: str) -> None:
    no_objection = api_client.post(f"/cases/{saved_case}/letters/rog-set1/requests/1/reply")
    assert no_objection.status_code == 422

    unknown = api_client.post(f"/cases/{saved_case}/letters/rog-set1/requests/7/reply")
    assert unknown.status_code == 404
    assert unknown.json()["error"]["type"] == "RequestNotFoundError"


def test_draft_all_replies(api_client: TestClient, pipeline_service: PipelineService) -> None:
    pipeline_service.repository.save(make_case(make_letter(2, replies=False)))

    response = api_client.post("/cases/doe-v-acme/letters/rog-set1/replies", json={"overwrite": False})

    name, payload = parse_sse(response.text)[-1]
    assert name == "complete"
    assert [item["requestId"] for item in payload["data"]["drafted"]] == [1, 2]
    assert payload["data"]["failed"] == []


def test_response_letter_and_versions(api_client: TestClient, pipeline_service: PipelineService) -> None:
    pipeline_service.repository.save(make_case(make_letter(6)))

    response = api_client.post("/cases/doe-v-acme/letters/rog-set1/response-letter")

    events = parse_sse(response.text)
    sections = [payload["sectionHtml"] for _, payload in events if "sectionHtml" in payload]
    assert len(sections) == 6
    name, payload = events[-1]
    assert name == "complete"
    assert payload["progress"] == 100
    assert payload["data"]["version"]["strategy"] == "modular"
    assert payload["data"]["singlePassAttempted"] is False

    versions = api_client.get("/cases/doe-v-acme/versions").json()["versions"]
    assert [version["id"] for version in versions] == [1]
    assert "content" not in versions[0]

    version = api_client.get("/cases/doe-v-acme/versions/1").json()
    assert "Interrogatory Number 6" in version["content"]
    assert api_client.get("/cases/doe-v-acme/versions/2").status_code == 404


def test_taxonomy_endpoint(api_client: TestClient) -> None:
    body = api_client.get("/taxonomy").json()
    assert body["fallback"] == "unclassifiable"
    assert "vague" in body["categories"]
    assert body["categories"]["vague"]["argument"]


def test_profile_never_returns_api_key(api_client: TestClient) -> None:
    saved = api_client.put("/profile", json={"name": "Jane Counsel", "apiKey": "sk-secret"})
    assert saved.status_code == 200
    assert saved.json()["hasApiKey"] is True
    assert "apiKey" not in saved.json()

    kept = api_client.put("/profile", json={"name": "Jane Q. Counsel"})
    assert kept.json()["hasApiKey"] is True

    fetched = api_client.get("/profile")
    assert fetched.json()["name"] == "Jane Q. Counsel"
    assert "sk-secret" not in fetched.text
