"""Tests for response letter assembly."""

from __future__ import annotations

import re
from datetime import date

import pytest
from conftest import FIXED_TODAY, ScriptedCompletionService, full_letter, make_case, make_letter

from letter_factory.assembler import (
    DEFAULT_RECIPIENT,
    LetterAssembler,
    format_letter_date,
    request_topic,
    strip_code_fences,
)
from letter_factory.registry import SectionType
from orchestrator.exceptions import InvalidPayloadError, ServiceError
from orchestrator.models import UserProfile
from orchestrator.progress import ProgressChannel
from tools.llm_client import LLMClient

COMPLETE_MARKER = "Generate a complete professional legal discovery dispute letter"
HEADER_MARKER = "Generate a professional legal letter header"
SECTION_MARKER = "Generate a professional legal interrogatory section"
CONCLUSION_MARKER = "Generate a professional legal letter conclusion"


def section_responder(single_pass: str | BaseException | None = None):
    """Answer section prompts with small fragments and the complete prompt with ``single_pass``."""

    def respond(prompt: str) -> str | BaseException:
        if COMPLETE_MARKER in prompt:
            if single_pass is None:
                raise AssertionError("single pass should not be attempted")
            return single_pass
        if HEADER_MARKER in prompt:
            return '```html\n<header class="letterhead">Header</header>\n```'
        if SECTION_MARKER in prompt:
            request_id = re.search(r"- Request Number: (\d+)", prompt).group(1)
            return f"<h3>Interrogatory Number {request_id}</h3>"
        if CONCLUSION_MARKER in prompt:
            return '<p class="conclusion">Conclusion</p>'
        raise AssertionError("unexpected prompt")

    return respond


def kinds(llm: ScriptedCompletionService) -> list[str]:
    names = []
    for prompt in llm.prompts:
        if COMPLETE_MARKER in prompt:
            names.append("complete")
        elif HEADER_MARKER in prompt:
            names.append("header")
        elif SECTION_MARKER in prompt:
            names.append("request")
        else:
            names.append("conclusion")
    return names


def assembler(llm) -> LetterAssembler:
    return LetterAssembler(llm, today=lambda: FIXED_TODAY)


class TestHelpers:
    """Tests for the small formatting helpers."""

    def test_request_topic_short_text(self) -> None:
        assert request_topic("State all damages.") == "State all damages."

    def test_request_topic_truncates(self) -> None:
        topic = request_topic("Identify every person with knowledge of incident number 1.")
        assert topic == "Identify every person with knowledge of incident n..."

    def test_request_topic_word_cap(self) -> None:
        assert request_topic("a b c d e f g h i j k l") == "a b c d e f g h i j"

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences("```html\n<p>x</p>\n```") == "<p>x</p>"
        assert strip_code_fences("") == ""

    def test_format_letter_date(self) -> None:
        assert format_letter_date(date(2024, 6, 7)) == "June 7, 2024"


class TestStrategySelection:
    """Single pass is only attempted for small letters."""

    @pytest.mark.asyncio
    async def test_five_requests_attempt_single_pass(self, profile: UserProfile) -> None:
        letter = make_letter(5)
        llm = ScriptedCompletionService(responder=section_responder(f"```html\n{full_letter([1, 2, 3, 4, 5])}\n```"))

        result = await assembler(llm).assemble(make_case(letter), letter, profile)

        assert kinds(llm) == ["complete"]
        assert result.strategy == "single_pass"
        assert result.single_pass_attempted
        assert result.report is not None and result.report.passed
        assert not result.content.startswith("```")

    @pytest.mark.asyncio
    async def test_six_requests_go_straight_to_modular(self, profile: UserProfile) -> None:
        letter = make_letter(6)
        llm = ScriptedCompletionService(responder=section_responder())

        result = await assembler(llm).assemble(make_case(letter), letter, profile)

        assert kinds(llm) == ["header"] + ["request"] * 6 + ["conclusion"]
        assert result.strategy == "modular"
        assert not result.single_pass_attempted
        assert len(result.sections) == 8

    @pytest.mark.asyncio
    async def test_only_qualifying_requests_count(self, profile: UserProfile) -> None:
        letter = make_letter(7)
        letter.requests[5].reply = None
        letter.requests[6].objection = "   "
        llm = ScriptedCompletionService(responder=section_responder(full_letter([1, 2, 3, 4, 5])))

        result = await assembler(llm).assemble(make_case(letter), letter, profile)

        assert result.strategy == "single_pass"
        assert "Request 6:" not in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_no_qualifying_requests(self, profile: UserProfile) -> None:
        letter = make_letter(2, replies=False)
        llm = ScriptedCompletionService()

        with pytest.raises(InvalidPayloadError):
            await assembler(llm).assemble(make_case(letter), letter, profile)

        assert llm.prompts == []


class TestFallback:
    """An unusable single pass falls back to modular generation."""

    @pytest.mark.asyncio
    async def test_incomplete_single_pass_falls_back(self, profile: UserProfile) -> None:
        letter = make_letter(3)
        channel = ProgressChannel("letter-progress")
        llm = ScriptedCompletionService(responder=section_responder("<p>Dear counsel, see attached.</p>"))

        result = await assembler(llm).assemble(make_case(letter), letter, profile, channel)

        assert kinds(llm) == ["complete", "header", "request", "request", "request", "conclusion"]
        assert result.strategy == "modular"
        assert result.single_pass_attempted
        values = [event.progress for event in channel.events]
        assert values == sorted(values)
        assert max(values) <= 100
        switch = next(e for e in channel.events if "switching to modular" in e.message)
        assert switch.progress == 40
        first_header = next(e for e in channel.events if e.stage == "header")
        assert first_header.progress > 40

    @pytest.mark.asyncio
    async def test_service_error_falls_back(self, profile: UserProfile) -> None:
        letter = make_letter(2)
        llm = ScriptedCompletionService(responder=section_responder(ServiceError("overloaded")))

        result = await assembler(llm).assemble(make_case(letter), letter, profile)

        assert result.strategy == "modular"
        assert "Interrogatory Number 2" in result.content

    @pytest.mark.asyncio
    async def test_modular_failure_propagates(self, profile: UserProfile) -> None:
        letter = make_letter(6)
        channel = ProgressChannel("letter-progress")

        def respond(prompt: str) -> str | BaseException:
            if "- Request Number: 2" in prompt:
                return ServiceError("connection reset")
            return section_responder()(prompt)

        with pytest.raises(ServiceError):
            await assembler(ScriptedCompletionService(responder=respond)).assemble(
                make_case(letter), letter, profile, channel
            )

        published = [e.section_html for e in channel.events if e.section_html]
        assert published == ["<h3>Interrogatory Number 1</h3>"]
        assert not channel.closed


class TestModularEvents:
    """Progress and preview events of the modular strategy."""

    @pytest.mark.asyncio
    async def test_two_request_event_order(self, profile: UserProfile) -> None:
        letter = make_letter(3)
        letter.requests[2].reply = None
        channel = ProgressChannel("letter-progress")
        llm = ScriptedCompletionService(responder=section_responder())

        result = await assembler(llm).assemble_modular(make_case(letter), letter, profile, channel)
        await channel.complete({"strategy": result.strategy})

        previews = [
            ("html", e.html) if e.html else ("section", e.section_html)
            for e in channel.events
            if e.html or e.section_html
        ]
        assert previews == [
            ("html", '<header class="letterhead">Header</header>'),
            ("section", "<h3>Interrogatory Number 1</h3>"),
            ("section", "<h3>Interrogatory Number 2</h3>"),
            ("html", '<p class="conclusion">Conclusion</p>'),
        ]
        assert [e.progress for e in channel.events] == [15, 25, 30, 30, 55, 55, 80, 85, 90, 95, 100]
        assert channel.events[-1].type == "complete"
        assert result.content.startswith('<div class="letter-container">')
        assert result.content.index("Number 1") < result.content.index("Number 2")
        assert [s.type for s in result.sections] == [
            SectionType.HEADER,
            SectionType.REQUEST,
            SectionType.REQUEST,
            SectionType.CONCLUSION,
        ]

    @pytest.mark.asyncio
    async def test_framing_uses_profile_case_and_dates(self, profile: UserProfile) -> None:
        letter = make_letter(6)
        letter.recipient_emails = []
        llm = ScriptedCompletionService(responder=section_responder())

        await assembler(llm).assemble(make_case(letter), letter, profile)

        header_prompt, conclusion_prompt = llm.prompts[0], llm.prompts[-1]
        assert "May 24, 2024" in header_prompt
        assert DEFAULT_RECIPIENT in header_prompt
        assert "Superior Court of California" in header_prompt
        assert "Counsel &amp; Partners LLP" in header_prompt
        assert "June 7, 2024" in conclusion_prompt
        assert "JC/km" in conclusion_prompt


class TestGenerateSection:
    """Tests for generate_section dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_type(self, profile: UserProfile) -> None:
        letter = make_letter(1)
        with pytest.raises(ValueError, match="Unknown section type"):
            await assembler(ScriptedCompletionService()).generate_section("footer", make_case(letter), letter, profile)

    @pytest.mark.asyncio
    async def test_request_section_needs_request(self, profile: UserProfile) -> None:
        letter = make_letter(1)
        with pytest.raises(ValueError):
            await assembler(ScriptedCompletionService()).generate_section("request", make_case(letter), letter, profile)

    @pytest.mark.asyncio
    async def test_stub_sections_escape_objection_text(self, profile: UserProfile, no_api_key: None) -> None:
        letter = make_letter(1)
        letter.requests[0].objection = "Objection: scope is x < y & unclear."

        section = await assembler(LLMClient(api_key=None)).generate_section(
            SectionType.REQUEST, make_case(letter), letter, profile, request=letter.requests[0]
        )

        assert section.request_id == 1
        assert "x &lt; y &amp; unclear" in section.html
        assert "Interrogatory Number 1" in section.html
        assert "```" not in section.html


class TestStubAssembly:
    """End to end with the offline client."""

    @pytest.mark.asyncio
    async def test_modular_letter_from_stub(self, profile: UserProfile, no_api_key: None) -> None:
        letter = make_letter(6)

        result = await assembler(LLMClient(api_key=None)).assemble(make_case(letter), letter, profile)

        assert result.strategy == "modular"
        for request_id in range(1, 7):
            assert f"Interrogatory Number {request_id}" in result.content
        assert "signature-block" in result.content
        assert "Reply for request 6." in result.content
