"""Letter assembly - turn drafted replies into a complete response letter.

Two strategies are available:

* **single pass** - one completion produces the whole letter. Used when the
  letter has at most ``SINGLE_PASS_MAX_REQUESTS`` qualifying requests, and
  only kept when it passes the completeness check.
* **modular** - header, one section per qualifying request, and conclusion are
  generated by separate calls in order. Each finished section is published on
  the progress channel so callers can preview the letter while it is built.

A failed or incomplete single pass falls back to the modular strategy; the
modular schedule is then squeezed into the progress range still available so
reported progress never goes backwards.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from letter_factory.completeness import CompletenessReport, ensure_complete
from letter_factory.constants import (
    MAX_TOKENS_COMPLETE_LETTER,
    MIN_WORDS_PER_REQUEST,
    SINGLE_PASS_MAX_REQUESTS,
    SUPPLEMENT_DEADLINE_DAYS,
    TOPIC_MAX_CHARS,
    TOPIC_MAX_WORDS,
)
from letter_factory.prompts import (
    build_complete_letter_prompt,
    build_conclusion_prompt,
    build_header_prompt,
    build_request_section_prompt,
)
from letter_factory.registry import (
    LETTER_CONTAINER_CLASS,
    Section,
    SectionType,
    get_section_template,
)
from orchestrator.exceptions import InvalidPayloadError, ServiceError, ValidationError
from orchestrator.progress import IDENTITY_SCALE, ProgressScale

if TYPE_CHECKING:
    from orchestrator.models import Case, Request, RequestLetter, Strategy, UserProfile
    from orchestrator.progress import ProgressChannel
    from tools.llm_client import CompletionService

logger = logging.getLogger("rejoinder.letter_factory.assembler")

DEFAULT_RECIPIENT = "[opposing counsel e-mail]"

_CODE_FENCE = re.compile(r"```(?:html)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers from model output."""
    return _CODE_FENCE.sub("", text or "").strip()


def request_topic(text: str) -> str:
    """Short topic for a request: its first words, capped in length."""
    words = " ".join(text.split(" ")[:TOPIC_MAX_WORDS])
    if len(words) > TOPIC_MAX_CHARS:
        return words[:TOPIC_MAX_CHARS] + "..."
    return words


def format_letter_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


@dataclass(frozen=True, slots=True)
class AssemblyResult:
    """The assembled letter and how it was produced."""

    content: str
    strategy: Strategy
    sections: tuple[Section, ...] = ()
    report: CompletenessReport | None = None
    single_pass_attempted: bool = False


class LetterAssembler:
    """Assembles a response letter for one request letter."""

    def __init__(
        self,
        llm: CompletionService,
        *,
        single_pass_max_requests: int = SINGLE_PASS_MAX_REQUESTS,
        min_words_per_request: int = MIN_WORDS_PER_REQUEST,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.llm = llm
        self.single_pass_max_requests = single_pass_max_requests
        self.min_words_per_request = min_words_per_request
        self._today = today

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def assemble(
        self,
        case: Case,
        letter: RequestLetter,
        profile: UserProfile,
        channel: ProgressChannel | None = None,
    ) -> AssemblyResult:
        """Assemble the letter, choosing the strategy by request count.

        Raises:
            InvalidPayloadError: If no request has both an objection and a reply.
            ServiceError: If a modular section call fails.
        """
        qualifying = letter.qualifying_requests()
        if not qualifying:
            raise InvalidPayloadError(
                "No requests have both an objection and a reply",
                field="requests",
                details={"letter_id": letter.id},
            )

        if len(qualifying) > self.single_pass_max_requests:
            logger.info(
                "Too many requests (%d > %d), using modular approach directly",
                len(qualifying),
                self.single_pass_max_requests,
            )
            return await self.assemble_modular(case, letter, profile, channel)

        result = await self._try_single_pass(case, letter, profile, qualifying, channel)
        if result is not None:
            return result

        scale = channel.remaining_window() if channel else IDENTITY_SCALE
        modular = await self.assemble_modular(case, letter, profile, channel, scale=scale)
        return AssemblyResult(
            content=modular.content,
            strategy=modular.strategy,
            sections=modular.sections,
            single_pass_attempted=True,
        )

    async def assemble_modular(
        self,
        case: Case,
        letter: RequestLetter,
        profile: UserProfile,
        channel: ProgressChannel | None = None,
        *,
        scale: ProgressScale = IDENTITY_SCALE,
    ) -> AssemblyResult:
        """Generate the letter section by section, publishing each section.

        A failing section aborts the run; sections already published stay
        published.
        """
        qualifying = letter.qualifying_requests()
        total = len(qualifying)
        logger.info("Generating letter with modular approach (%d request sections)", total)

        await self._emit(channel, "header", "Generating letter header...", scale(15))
        header = await self.generate_section(SectionType.HEADER, case, letter, profile)
        await self._emit(channel, "header", "Header generated successfully", scale(25), html=header.html)

        await self._emit(channel, "body", f"Preparing to generate {total} request sections...", scale(30))
        request_sections: list[Section] = []
        for index, request in enumerate(qualifying):
            await self._emit(
                channel,
                "body",
                f"Generating section {index + 1}/{total} (Request #{request.id})...",
                scale(30 + index / total * 50),
            )
            section = await self.generate_section(SectionType.REQUEST, case, letter, profile, request=request)
            request_sections.append(section)
            await self._emit(
                channel,
                "body",
                f"Completed section {index + 1}/{total}",
                scale(30 + (index + 1) / total * 50),
                section_html=section.html,
            )

        await self._emit(channel, "conclusion", "Generating conclusion section...", scale(85))
        conclusion = await self.generate_section(SectionType.CONCLUSION, case, letter, profile)
        await self._emit(
            channel, "conclusion", "Conclusion generated successfully", scale(90), html=conclusion.html
        )

        await self._emit(channel, "formatting", "Finalizing letter formatting...", scale(95))
        sections = (header, *request_sections, conclusion)
        body = "\n".join(section.render() for section in sections)
        content = f'<div class="{LETTER_CONTAINER_CLASS}">\n{body}\n</div>'

        logger.info("Letter generated with modular approach (%d sections)", len(sections))
        return AssemblyResult(content=content, strategy="modular", sections=sections)

    async def generate_section(
        self,
        section_type: str | SectionType,
        case: Case,
        letter: RequestLetter,
        profile: UserProfile,
        *,
        request: Request | None = None,
    ) -> Section:
        """Generate one section selected by its ``type`` discriminator.

        Raises:
            ValueError: If the section type is unknown or a request section
                is asked for without a request.
            ServiceError: If the completion call fails.
        """
        template = get_section_template(section_type)
        if template.type is SectionType.HEADER:
            prompt = build_header_prompt(profile, **self._framing(case, letter))
        elif template.type is SectionType.REQUEST:
            if request is None:
                raise ValueError("A request section needs the request it covers")
            prompt = build_request_section_prompt(request, request_topic(request.text))
        else:
            prompt = build_conclusion_prompt(profile, self._deadline())

        logger.debug("Generating %s", template.name)
        response = await self.llm.submit(prompt, max_tokens=template.max_tokens)
        content = strip_code_fences(response)
        if not content:
            logger.warning("%s came back empty", template.name)
        return Section(
            type=template.type,
            html=content,
            request_id=request.id if request is not None else None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _try_single_pass(
        self,
        case: Case,
        letter: RequestLetter,
        profile: UserProfile,
        qualifying: Sequence[Request],
        channel: ProgressChannel | None,
    ) -> AssemblyResult | None:
        """Attempt the single-pass letter; ``None`` means fall back."""
        prompt = build_complete_letter_prompt(
            profile,
            case_name=case.case_name,
            case_number=case.case_number,
            court=case.court,
            sections=[(request, request_topic(request.text)) for request in qualifying],
            deadline=self._deadline(),
            **self._framing(case, letter),
        )

        logger.info("Attempting single-pass letter generation (%d requests)", len(qualifying))
        await self._emit(channel, "setup", "Attempting single-pass letter generation...", 10)
        try:
            response = await self.llm.submit(prompt, max_tokens=MAX_TOKENS_COMPLETE_LETTER)
            content = strip_code_fences(response)
            await self._emit(channel, "body", "Single-pass generation completed, validating content...", 40)
            report = ensure_complete(
                content,
                [request.id for request in qualifying],
                min_words_per_request=self.min_words_per_request,
            )
        except ValidationError as exc:
            logger.info("Single-pass letter incomplete, falling back to modular: %s", exc.message)
            await self._emit(channel, "setup", "Single-pass incomplete, switching to modular generation...", 0)
            return None
        except ServiceError as exc:
            logger.warning("Single-pass generation failed, falling back to modular: %s", exc.message)
            await self._emit(channel, "setup", "Single-pass failed, switching to modular generation...", 0)
            return None

        await self._emit(channel, "formatting", "Single-pass generation successful!", 95)
        return AssemblyResult(
            content=content,
            strategy="single_pass",
            report=report,
            single_pass_attempted=True,
        )

    def _framing(self, case: Case, letter: RequestLetter) -> dict[str, Any]:
        today = format_letter_date(self._today())
        court = case.court or "Court"
        case_number = case.case_number or "Case Number"
        return {
            "letter_date": today,
            "recipient_emails": list(letter.recipient_emails) or [DEFAULT_RECIPIENT],
            "case_caption": case.case_name,
            "case_info": f"{court} • {case_number}",
            "salutation_names": letter.salutation_names or "Counsel",
            "response_date": letter.response_date or today,
            "letter_description": letter.description,
        }

    def _deadline(self) -> str:
        return format_letter_date(self._today() + timedelta(days=SUPPLEMENT_DEADLINE_DAYS))

    @staticmethod
    async def _emit(
        channel: ProgressChannel | None,
        stage: str,
        message: str,
        progress: int,
        *,
        html: str | None = None,
        section_html: str | None = None,
    ) -> None:
        if channel is None:
            return
        await channel.progress(stage, message, progress, html=html, section_html=section_html)
