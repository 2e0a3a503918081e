"""Deconstruction stage - classify an objection into taxonomy categories."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from letter_factory.constants import MAX_TOKENS_CLASSIFICATION
from letter_factory.parsing import decode_payload
from letter_factory.prompts import build_deconstructor_prompt
from orchestrator.exceptions import ClassificationError

if TYPE_CHECKING:
    from tools.llm_client import CompletionService

logger = logging.getLogger("rejoinder.letter_factory.deconstruction")


async def classify_objection(
    llm: CompletionService,
    objection_text: str,
    category_keys: Sequence[str],
) -> list[str]:
    """Return the category keys the model finds in ``objection_text``.

    Keys come back in model order. They are not checked against the taxonomy;
    unknown keys resolve to the fallback entry when drafting.

    Raises:
        ServiceError: If the completion call fails.
        ClassificationError: If the response holds no JSON array.
    """
    prompt = build_deconstructor_prompt(objection_text, category_keys)
    response = await llm.submit(prompt, max_tokens=MAX_TOKENS_CLASSIFICATION)

    result = decode_payload(response, "array")
    if not result.ok:
        reason = result.error_message or "no JSON array in response"
        logger.warning("Objection classification failed: %s", reason)
        raise ClassificationError(
            "Could not classify the objection: the model did not return a JSON array",
            {"reason": reason, "sample": (response or "")[:200]},
        )

    categories: list[str] = []
    for item in result.payload:
        if item is None or isinstance(item, (dict, list)):
            continue
        key = str(item).strip()
        if key:
            categories.append(key)

    logger.info("Classified objection into %d categories: %s", len(categories), categories)
    return categories
