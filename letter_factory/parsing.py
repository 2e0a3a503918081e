"""Tolerant decoding of structured payloads embedded in model output.

Completion text routinely wraps the JSON we asked for in prose, markdown
fences or trailing commentary. ``decode_payload`` scans for the first
decodable object or array of the expected shape and reports one of three
outcomes, so every call site handles them the same way:

* ``SUCCESS`` - a payload of the expected shape was decoded.
* ``ERROR_ENVELOPE`` - the model answered with ``{"error": "<message>"}``.
* ``PARSE_FAILURE`` - nothing usable was found.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from orchestrator.exceptions import ParseError

logger = logging.getLogger("rejoinder.letter_factory.parsing")

Shape = Literal["object", "array"]

_OPENERS = "{["
_decoder = json.JSONDecoder()


class DecodeOutcome(Enum):
    """Outcome of a tolerant decode."""

    SUCCESS = "success"
    ERROR_ENVELOPE = "error_envelope"
    PARSE_FAILURE = "parse_failure"


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Result of scanning response text for a structured payload."""

    outcome: DecodeOutcome
    payload: Any = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is DecodeOutcome.SUCCESS

    @property
    def is_error_envelope(self) -> bool:
        return self.outcome is DecodeOutcome.ERROR_ENVELOPE


def _matches_shape(value: Any, shape: Shape) -> bool:
    if shape == "array":
        return isinstance(value, list)
    return isinstance(value, dict)


def _error_message(value: Any) -> str | None:
    """Return the message of an ``{"error": ...}`` envelope, if ``value`` is one."""
    if isinstance(value, dict) and "error" in value and value["error"]:
        return str(value["error"])
    return None


def decode_payload(text: str, shape: Shape) -> DecodeResult:
    """Locate and decode the first structured payload in ``text``.

    Every ``{`` or ``[`` is tried as a start position in order; candidates that
    do not decode are skipped, and decoding stops at the end of the first
    complete value so trailing prose is ignored. An error envelope wins over
    any later payload because it is the model's explicit answer.

    Args:
        text: Raw completion text.
        shape: ``"object"`` or ``"array"``.

    Returns:
        A ``DecodeResult`` describing the outcome.
    """
    if not text:
        return DecodeResult(DecodeOutcome.PARSE_FAILURE)

    index = 0
    length = len(text)
    while index < length:
        if text[index] not in _OPENERS:
            index += 1
            continue
        try:
            value, _end = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index += 1
            continue

        message = _error_message(value)
        if message is not None:
            return DecodeResult(DecodeOutcome.ERROR_ENVELOPE, payload=value, error_message=message)
        if _matches_shape(value, shape):
            return DecodeResult(DecodeOutcome.SUCCESS, payload=value)
        # Wrong shape: keep scanning inside it, e.g. for an array nested in an object.
        index += 1

    return DecodeResult(DecodeOutcome.PARSE_FAILURE)


def parse_structured(text: str, shape: Shape) -> DecodeResult:
    """Decode ``text`` and raise ``ParseError`` when nothing usable is found.

    The caller still has to handle ``ERROR_ENVELOPE``; it is a semantic
    failure whose exception type depends on the stage.
    """
    result = decode_payload(text, shape)
    if result.outcome is DecodeOutcome.PARSE_FAILURE:
        logger.warning("No %s payload found in response (%d chars)", shape, len(text or ""))
        raise ParseError(
            f"No JSON {shape} found in the model response",
            expected=shape,
            sample=text or "",
        )
    return result
