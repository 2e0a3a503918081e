"""Stub LLM handler for running the pipeline without API keys.

This module provides deterministic stub implementations that heuristically
answer each prompt the pipeline issues. The stub never performs network
operations but mirrors the shape of the responses expected by the rest of the
system, including the prose and markdown noise real completions carry.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from letter_factory.constants import FALLBACK_CATEGORY
from letter_factory.prompts import NO_OBJECTIONS_ENVELOPE, TEMPLATE_BEGIN, TEMPLATE_END

logger = logging.getLogger("rejoinder.llm_client.stub")

ORIGINAL_REQUESTS = "--- Original Requests ---"
END_ORIGINAL_REQUESTS = "--- End of Original Requests ---"
RESPONSE_DOCUMENT = "--- Raw Text from Opponent's Response Document ---"
REQUEST_DOCUMENT = "--- Raw Text from Request Document ---"
END_RAW_TEXT = "--- End of Raw Text ---"
RULE_TO_APPLY = "--- RULE TO APPLY ---"
CLASSIFY_MARKER = "Identify every distinct legal objection"

# "Interrogatory No. 3:", "REQUEST NUMBER 3.", "Interrogatory 3 -"
_NUMBERED_HEADING = re.compile(
    r"^[ \t]*(?:interrogatory|request)(?:[ \t]+(?:no\.?|number))?[ \t]*(\d+)[ \t]*[:.\-]?[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
_RESPONSE_LABEL = re.compile(r"\b(?:response|answer)\s*:", re.IGNORECASE)


class StubLLMHandler:
    """Handles LLM operations when no API key is available.

    Provides deterministic stub implementations that analyze prompts
    and generate plausible responses for testing purposes.
    """

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
    ) -> str:
        """Generate a text response from prompt analysis."""
        prompt = user_prompt
        if TEMPLATE_BEGIN in prompt:
            return self._stub_letter_template(prompt)
        if RULE_TO_APPLY in prompt:
            return self._stub_refutation(prompt)
        if CLASSIFY_MARKER in prompt:
            return self._stub_classification(prompt)
        if ORIGINAL_REQUESTS in prompt:
            return self._stub_objection_extraction(prompt)
        if REQUEST_DOCUMENT in prompt:
            return self._stub_request_extraction(prompt)

        logger.debug("Stub received an unrecognised prompt (%d chars)", len(prompt))
        return "No structured content could be derived from the supplied prompt."

    # ------------------------------------------------------------------
    # Prompt kinds
    # ------------------------------------------------------------------

    def _stub_objection_extraction(self, prompt: str) -> str:
        requests_block = self._extract_section(prompt, ORIGINAL_REQUESTS, stop_markers=(END_ORIGINAL_REQUESTS,))
        request_ids = [int(value) for value in re.findall(r"^Request (\d+):", requests_block, re.MULTILINE)]
        raw_text = self._extract_section(prompt, RESPONSE_DOCUMENT, stop_markers=(END_RAW_TEXT,))
        segments = self._numbered_segments(raw_text)

        results: list[dict[str, Any]] = []
        for request_id in request_ids:
            segment = segments.get(request_id, "")
            answer = self._after_response_label(segment)
            objection = answer if "object" in answer.lower() else None
            results.append({"id": request_id, "objection": objection})

        if not any(item["objection"] for item in results):
            return NO_OBJECTIONS_ENVELOPE
        return "Here are the extracted objections:\n" + json.dumps(results, indent=2)

    def _stub_request_extraction(self, prompt: str) -> str:
        raw_text = self._extract_section(prompt, REQUEST_DOCUMENT, stop_markers=(END_RAW_TEXT,))
        requests = []
        for request_id, segment in self._numbered_segments(raw_text).items():
            text = _RESPONSE_LABEL.split(segment, maxsplit=1)[0].strip()
            if text:
                requests.append({"id": request_id, "text": text})
        return json.dumps(requests, indent=2)

    def _stub_classification(self, prompt: str) -> str:
        keys_match = re.search(r"from the following list: \[(.*?)\]\.", prompt, re.DOTALL)
        keys = [key.strip() for key in keys_match.group(1).split(",")] if keys_match else []
        objection_match = re.search(r'Objection Text to Analyze: "(.*)"', prompt, re.DOTALL)
        objection = objection_match.group(1).lower() if objection_match else ""

        matched = [key for key in keys if key and key != FALLBACK_CATEGORY and key.lower() in objection]
        if not matched and FALLBACK_CATEGORY in keys:
            matched = [FALLBACK_CATEGORY]
        return json.dumps(matched)

    def _stub_refutation(self, prompt: str) -> str:
        category = self._quoted(self._extract_line(prompt, "- Objection Type:"))
        argument = self._quoted(self._extract_line(prompt, "- Core Argument:"))
        citations = self._extract_line(prompt, "- Relevant Cases:").strip("[] ")
        request_text = self._quoted(self._extract_line(prompt, "- Plaintiff's Request:"))

        topic = " ".join(request_text.split()[:8]) or "the information requested"
        citation_sentence = f" See {citations}." if citations else ""
        return (
            f"{argument}{citation_sentence} Your objection that the request is "
            f"\"{category}\" does not justify withholding information about {topic}. "
            "The objection is stated in boilerplate terms and does not explain how the request "
            "is deficient or what burden answering it would impose. "
            "Please supplement your response."
        )

    def _stub_letter_template(self, prompt: str) -> str:
        template = self._extract_section(prompt, TEMPLATE_BEGIN, stop_markers=(TEMPLATE_END,))
        return f"```html\n{template}\n```"

    # ------------------------------------------------------------------
    # Utility helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _numbered_segments(text: str) -> dict[int, str]:
        """Split text on numbered request headings; first occurrence wins."""
        matches = list(_NUMBERED_HEADING.finditer(text))
        segments: dict[int, str] = {}
        for index, match in enumerate(matches):
            end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
            body = " ".join(text[match.end():end].split())
            segments.setdefault(int(match.group(1)), body)
        return segments

    @staticmethod
    def _after_response_label(segment: str) -> str:
        parts = _RESPONSE_LABEL.split(segment, maxsplit=1)
        return (parts[1] if len(parts) > 1 else parts[0]).strip()

    @staticmethod
    def _quoted(value: str) -> str:
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            return value[1:-1]
        return value

    @staticmethod
    def _extract_line(text: str, header: str) -> str:
        """Extract the content after a header line."""
        prefix = header.strip()
        for raw_line in text.splitlines():
            stripped = raw_line.strip()
            if stripped.startswith(prefix):
                return stripped[len(prefix):].strip()
        return ""

    @staticmethod
    def _extract_section(
        text: str,
        header: str,
        *,
        stop_markers: tuple[str, ...] = (),
    ) -> str:
        """Extract a section of text between a header and stop markers."""
        lines = text.splitlines()
        capture = False
        collected: list[str] = []
        for raw_line in lines:
            stripped = raw_line.strip()
            if not capture:
                if stripped.startswith(header):
                    capture = True
                continue
            if stop_markers and any(marker in stripped for marker in stop_markers):
                break
            collected.append(raw_line.rstrip())
        return "\n".join(collected).strip()
