"""Shared fixtures: a scripted completion service and sample case data."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest

from letter_factory.taxonomy import ObjectionTaxonomy, load_taxonomy
from orchestrator.models import Case, Request, RequestLetter, UserProfile
from orchestrator.storage.json_repository import JsonCaseRepository, JsonProfileRepository

FIXED_TODAY = date(2024, 5, 24)

Responder = Callable[[str], "str | BaseException"]


class ScriptedCompletionService:
    """Completion service answering from a script and recording every prompt.

    Responses are consumed in order; a callable responder computes the answer
    from the prompt instead. An exception instance in either is raised.
    """

    def __init__(self, responses: list[str | BaseException] | None = None, responder: Responder | None = None):
        self.responses = list(responses or [])
        self.responder = responder
        self.prompts: list[str] = []
        self.max_tokens: list[int | None] = []

    async def submit(self, prompt: str, *, max_tokens: int | None = None) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        if self.responder is not None:
            result = self.responder(prompt)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            raise AssertionError(f"Unexpected completion call #{len(self.prompts)}")
        if isinstance(result, BaseException):
            raise result
        return result


def make_letter(
    count: int,
    *,
    letter_id: str = "rog-set1",
    objections: bool = True,
    replies: bool = True,
) -> RequestLetter:
    """A letter of ``count`` requests, optionally objected to and answered."""
    return RequestLetter(
        id=letter_id,
        date_added="2024-05-01",
        description="Plaintiff's First Set of Interrogatories",
        response_date="May 20, 2024",
        recipient_emails=["counsel@defense.example"],
        salutation_names="Ms. Rivera",
        requests=[
            Request(
                id=number,
                text=f"Identify every person with knowledge of incident number {number}.",
                objection=f"Defendant objects that this request is vague and overly broad ({number})."
                if objections
                else None,
                reply=f"<p><strong>Refuting: 'vague'</strong><br>Reply for request {number}.</p>" if replies else None,
            )
            for number in range(1, count + 1)
        ],
    )


def full_letter(request_ids: list[int], words_per_request: int = 120) -> str:
    """Letter HTML carrying every marker the completeness check looks for."""
    sections = "\n".join(
        f'<h3 class="interrogatory-subheading">Interrogatory Number {request_id}</h3>\n'
        f'<div class="legal-argument"><p>{"argument " * words_per_request}</p></div>'
        for request_id in request_ids
    )
    return (
        '<div class="letter-container">\n'
        '<header class="letterhead"><p>Counsel &amp; Partners LLP</p></header>\n'
        '<p class="salutation">Dear Ms. Rivera:</p>\n'
        f"{sections}\n"
        '<p class="conclusion">Please supplement.</p>\n'
        '<div class="signature-block"><p>Sincerely yours,</p></div>\n'
        "</div>"
    )


def make_case(*letters: RequestLetter, case_id: str = "doe-v-acme") -> Case:
    return Case(
        case_id=case_id,
        case_name="Doe v. Acme Corp.",
        case_data={"court": "Superior Court of California", "caseNumber": "24-CV-0001"},
        request_letters=list(letters),
    )


@pytest.fixture
def taxonomy() -> ObjectionTaxonomy:
    return load_taxonomy()


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(
        name="Jane Counsel",
        org="Counsel & Partners LLP",
        org_address="1 Main Street, Springfield, CA 90000",
        phone="555-0100",
        email="jane@counsel.example",
        bar_number="123456",
    )


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def repository(data_dir: Path) -> JsonCaseRepository:
    return JsonCaseRepository(data_dir)


@pytest.fixture
def profiles(data_dir: Path) -> JsonProfileRepository:
    return JsonProfileRepository(data_dir)


@pytest.fixture
def no_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Force the LLM client into stub mode."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
