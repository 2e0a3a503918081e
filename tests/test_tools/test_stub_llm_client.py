"""Tests for the offline stub handler."""

from __future__ import annotations

import json

import pytest
from conftest import make_letter

from letter_factory.parsing import decode_payload
from letter_factory.prompts import (
    build_conclusion_prompt,
    build_deconstructor_prompt,
    build_drafter_prompt,
    build_extraction_prompt,
    build_request_extraction_prompt,
)
from letter_factory.taxonomy import ObjectionTaxonomy
from orchestrator.models import UserProfile
from tools.stub_llm_client import StubLLMHandler


@pytest.fixture
def handler() -> StubLLMHandler:
    return StubLLMHandler()


def answer(handler: StubLLMHandler, prompt: str) -> str:
    return handler.generate_text(system_prompt="", user_prompt=prompt, max_tokens=100)


class TestObjectionExtraction:
    """The stub matches numbered responses to requests."""

    def test_heading_variants(self, handler: StubLLMHandler) -> None:
        letter = make_letter(3, objections=False, replies=False)
        raw_text = (
            "Request No. 1: Identify witnesses.\nAnswer: Defendant objects on privilege grounds.\n"
            "REQUEST NUMBER 2. State damages.\nResponse: None claimed.\n"
            "Interrogatory 3 - Identify experts.\nResponse: Objection, premature.\n"
        )

        result = decode_payload(answer(handler, build_extraction_prompt(letter.requests, raw_text)), "array")

        assert result.payload == [
            {"id": 1, "objection": "Defendant objects on privilege grounds."},
            {"id": 2, "objection": None},
            {"id": 3, "objection": "Objection, premature."},
        ]

    def test_no_objections_gives_envelope(self, handler: StubLLMHandler) -> None:
        letter = make_letter(1, objections=False, replies=False)

        result = decode_payload(answer(handler, build_extraction_prompt(letter.requests, "Hello.")), "array")

        assert result.is_error_envelope


class TestRequestExtraction:
    def test_response_text_is_cut(self, handler: StubLLMHandler) -> None:
        raw_text = "Interrogatory No. 4: Describe the incident.\nResponse: It was raining.\n"

        response = answer(handler, build_request_extraction_prompt(raw_text))

        assert json.loads(response) == [{"id": 4, "text": "Describe the incident."}]


class TestClassificationAndDrafting:
    """The stub classifies by keyword and drafts from the rule."""

    def test_classification_by_keyword(self, handler: StubLLMHandler, taxonomy: ObjectionTaxonomy) -> None:
        prompt = build_deconstructor_prompt("Objection: attorney work product.", taxonomy.categories)
        assert json.loads(answer(handler, prompt)) == ["work product"]

    def test_refutation_uses_rule(self, handler: StubLLMHandler, taxonomy: ObjectionTaxonomy) -> None:
        entry = taxonomy["vague"]
        prompt = build_drafter_prompt(
            "vague",
            entry,
            "Identify every witness to the accident on May 1.",
            "Defendant objects that this request is vague.",
        )

        paragraph = answer(handler, prompt)

        assert paragraph.startswith(entry.argument)
        assert entry.citations[0] in paragraph
        assert '"vague"' in paragraph
        assert paragraph.endswith("Please supplement your response.")


class TestLetterTemplates:
    def test_template_returned_in_fences(self, handler: StubLLMHandler) -> None:
        response = answer(handler, build_conclusion_prompt(UserProfile(name="Jane Counsel"), "June 7, 2024"))

        assert response.startswith("```html\n")
        assert response.endswith("\n```")
        assert "June 7, 2024" in response
        assert "JC/km" in response
