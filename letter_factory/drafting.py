"""Drafting stage - one refutation paragraph per objection category.

Calls are fanned out concurrently and fanned back in to a single HTML
fragment. The batch is all-or-nothing: the first failure cancels the calls
still in flight and is re-raised.
"""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from letter_factory.constants import MAX_TOKENS_DRAFT
from letter_factory.prompts import build_drafter_prompt

if TYPE_CHECKING:
    from letter_factory.taxonomy import ObjectionTaxonomy
    from tools.llm_client import CompletionService

logger = logging.getLogger("rejoinder.letter_factory.drafting")

PARAGRAPH_SEPARATOR = '<hr style="margin: 16px 0; border: none; border-top: 1px solid #dee2e6;">'


@dataclass(frozen=True, slots=True)
class DisputeContext:
    """What the refutation argues against."""

    request_text: str
    objection_text: str
    user_context: str | None = None


@dataclass(frozen=True, slots=True)
class DraftedParagraph:
    category: str
    text: str

    def render(self) -> str:
        body = html.escape(self.text.strip(), quote=True).replace("\n", "<br>")
        label = html.escape(self.category, quote=True)
        return f"<p><strong>Refuting: '{label}'</strong><br>{body}</p>"


def render_fragment(paragraphs: Sequence[DraftedParagraph]) -> str:
    """Join rendered paragraphs with a rule, preserving order."""
    return PARAGRAPH_SEPARATOR.join(paragraph.render() for paragraph in paragraphs)


async def _draft_one(
    llm: CompletionService,
    taxonomy: ObjectionTaxonomy,
    category: str,
    context: DisputeContext,
) -> DraftedParagraph:
    entry = taxonomy.resolve(category)
    prompt = build_drafter_prompt(
        category,
        entry,
        context.request_text,
        context.objection_text,
        context.user_context,
    )
    text = await llm.submit(prompt, max_tokens=MAX_TOKENS_DRAFT)
    return DraftedParagraph(category=category, text=text)


async def draft_paragraphs(
    llm: CompletionService,
    taxonomy: ObjectionTaxonomy,
    category_keys: Sequence[str],
    context: DisputeContext,
) -> list[DraftedParagraph]:
    """Draft every category concurrently; results keep input order."""
    if not category_keys:
        return []

    tasks = [
        asyncio.create_task(_draft_one(llm, taxonomy, category, context))
        for category in category_keys
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def draft_refutations(
    llm: CompletionService,
    taxonomy: ObjectionTaxonomy,
    category_keys: Sequence[str],
    context: DisputeContext,
) -> str:
    """Draft and merge refutations into one escaped HTML fragment.

    Zero keys produce an empty fragment.

    Raises:
        ServiceError: If any drafting call fails.
    """
    logger.info("Drafting %d refutation paragraphs", len(category_keys))
    paragraphs = await draft_paragraphs(llm, taxonomy, category_keys, context)
    fragment = render_fragment(paragraphs)
    logger.debug("Drafted fragment of %d chars", len(fragment))
    return fragment
