"""Completeness check for single-pass letters.

The checks are heuristics: a marker per qualifying request, markers for the
structural sections, and a word count proportional to the request count as a
proxy for truncated output. The thresholds live in ``constants``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from letter_factory.constants import MIN_WORDS_PER_REQUEST
from letter_factory.registry import LETTER_CONTAINER_CLASS, SECTION_TEMPLATES, SectionType
from orchestrator.exceptions import ValidationError

logger = logging.getLogger("rejoinder.letter_factory.completeness")

# Sections a letter cannot be sent without; matched as class names, never as bare words
STRUCTURAL_CLASSES: tuple[str, ...] = (
    *SECTION_TEMPLATES[SectionType.HEADER].required_classes,
    *SECTION_TEMPLATES[SectionType.CONCLUSION].required_classes,
    LETTER_CONTAINER_CLASS,
)
LEGAL_ARGUMENT_CLASSES: tuple[str, ...] = SECTION_TEMPLATES[SectionType.REQUEST].required_classes
# Headings some single-pass letters use in place of the legal-argument class
LEGAL_ARGUMENT_PHRASES: tuple[str, ...] = ("Legal Argument", "You asserted various objections")


@dataclass
class CompletenessReport:
    """Outcome of checking one letter."""

    word_count: int
    required_words: int
    missing: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.missing and self.word_count >= self.required_words


def _request_marker(request_id: int) -> re.Pattern[str]:
    return re.compile(rf"Interrogatory\s+Number\s+{request_id}\b", re.IGNORECASE)


def has_class(content: str, class_name: str) -> bool:
    """Whether some element in ``content`` carries ``class_name`` in its class attribute."""
    pattern = rf"""\bclass\s*=\s*["'][^"']*(?<![\w-]){re.escape(class_name)}(?![\w-])[^"']*["']"""
    return re.search(pattern, content, re.IGNORECASE) is not None


def check_completeness(
    content: str,
    request_ids: Sequence[int],
    *,
    min_words_per_request: int = MIN_WORDS_PER_REQUEST,
) -> CompletenessReport:
    """Check ``content`` against the qualifying ``request_ids``."""
    missing: list[str] = []

    for request_id in request_ids:
        if not _request_marker(request_id).search(content):
            missing.append(f"interrogatory-{request_id}")
    if request_ids:
        argued = any(has_class(content, name) for name in LEGAL_ARGUMENT_CLASSES) or any(
            phrase in content for phrase in LEGAL_ARGUMENT_PHRASES
        )
        if not argued:
            missing.append("legal-argument")

    missing.extend(name for name in STRUCTURAL_CLASSES if not has_class(content, name))

    report = CompletenessReport(
        word_count=len(content.split()),
        required_words=len(request_ids) * min_words_per_request,
        missing=missing,
    )
    if report.passed:
        logger.info("Letter passed completeness check (%d words)", report.word_count)
    else:
        logger.info(
            "Letter failed completeness check: missing=%s words=%d/%d",
            report.missing,
            report.word_count,
            report.required_words,
        )
    return report


def ensure_complete(
    content: str,
    request_ids: Sequence[int],
    *,
    min_words_per_request: int = MIN_WORDS_PER_REQUEST,
) -> CompletenessReport:
    """Like ``check_completeness`` but raise ``ValidationError`` on failure."""
    report = check_completeness(content, request_ids, min_words_per_request=min_words_per_request)
    if not report.passed:
        raise ValidationError(report.missing, report.word_count, report.required_words)
    return report
