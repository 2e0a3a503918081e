"""LLM client for the completion service (Anthropic Claude).

The pipeline only ever needs "submit prompt text, receive response text".
This module provides a client that operates in two modes:

* When an ``ANTHROPIC_API_KEY`` is available, requests are proxied to the
  official async Anthropic SDK.
* Otherwise, the client falls back to a deterministic stub that answers every
  prompt kind the pipeline issues. The stub never performs network operations
  but mirrors the shape of the responses expected by the rest of the system.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol, runtime_checkable

import anthropic
from anthropic import AsyncAnthropic
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from orchestrator.exceptions import ServiceError
from tools.stub_llm_client import StubLLMHandler

logger = logging.getLogger("rejoinder.llm_client")

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096

# Errors worth another attempt when the caller opts into retries.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


@runtime_checkable
class CompletionService(Protocol):
    """Anything that turns a prompt into response text."""

    async def submit(self, prompt: str, *, max_tokens: int | None = None) -> str:
        """Submit ``prompt`` and return the response text.

        Raises:
            ServiceError: If the service call fails.
        """
        ...


class LLMClient:
    """Wrapper for the Anthropic Claude API with an offline stub mode."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_attempts: int = 1,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        """Initialise the client.

        Args:
            api_key: Anthropic API key. If ``None`` the environment variable
                ``ANTHROPIC_API_KEY`` is consulted.
            model: Claude model to use. Defaults to ``REJOINDER_MODEL`` or
                ``DEFAULT_MODEL``.
            max_attempts: Attempts per call for transient API errors. The
                default of 1 disables retrying.
            default_max_tokens: Token limit used when a call does not pass one.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model or os.getenv("REJOINDER_MODEL") or DEFAULT_MODEL
        self.max_attempts = max_attempts
        self.default_max_tokens = default_max_tokens
        self._stub_mode = not self.api_key
        self.client = None if self._stub_mode else AsyncAnthropic(api_key=self.api_key)
        self._stub_handler = StubLLMHandler() if self._stub_mode else None
        if self._stub_mode:
            logger.info("No Anthropic API key configured, running in stub mode")

    @property
    def stub_mode(self) -> bool:
        return self._stub_mode

    async def _call_anthropic_api(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
    ) -> str:
        """Call the Anthropic API, retrying transient errors up to ``max_attempts``."""
        logger.debug(
            "Calling Anthropic API (model: %s, max_tokens: %d, attempts: %d)",
            self.model,
            max_tokens,
            self.max_attempts,
        )

        request_params: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            request_params["system"] = system_prompt

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        ):
            with attempt:
                response = await self.client.messages.create(**request_params)

        content_parts = [
            block.text
            for block in response.content
            if getattr(block, "type", None) == "text"
        ]
        content = "\n".join(content_parts)
        logger.debug("Received response from Anthropic API (%d chars)", len(content))
        return content

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a plain-text response from the LLM.

        Raises:
            ServiceError: If the API call fails.
        """
        max_tokens = max_tokens or self.default_max_tokens
        if self._stub_mode:
            return self._stub_handler.generate_text(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=max_tokens,
            )

        try:
            return await self._call_anthropic_api(system_prompt, user_prompt, max_tokens)
        except anthropic.APIError as exc:
            logger.error("Anthropic API call failed: %s", exc)
            raise ServiceError(f"Completion service error: {exc}", original_error=exc) from exc

    async def submit(self, prompt: str, *, max_tokens: int | None = None) -> str:
        """Submit a single prompt and return the response text."""
        return await self.generate_text("", prompt, max_tokens=max_tokens)

