"""LLM client wrapper for forkwatch.

Provides a small interface to the Anthropic API used to write the optional
narrative paragraph of the scan summary, with a graceful fallback when no
API key is configured.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass

import anthropic

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

_NOT_CONFIGURED_MSG = "LLM not configured. Set ANTHROPIC_API_KEY."


@dataclass
class LLMResponse:
    """Structured response from an LLM call."""

    content: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


class LLMClient:
    """Thin wrapper around the Anthropic Python SDK.

    Parameters
    ----------
    model : str
        Model identifier to use for completions.
    api_key : str | None
        Anthropic API key.  Falls back to the ``ANTHROPIC_API_KEY``
        environment variable when *None*.
    """

    def __init__(self, model: str = "", api_key: str | None = None) -> None:
        self.model = model or DEFAULT_MODEL
        self.api_key = api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
        self._configured = bool(self.api_key)
        self._client = anthropic.Anthropic(api_key=self.api_key) if self._configured else None

    @property
    def configured(self) -> bool:
        """Return *True* if an API key is available."""
        return self._configured

    def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Send a completion request and return an :class:`LLMResponse`.

        When no API key is configured the method returns a stub response
        with a helpful message instead of raising.
        """
        if not self._configured:
            return LLMResponse(content=_NOT_CONFIGURED_MSG, model=self.model)

        kwargs: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        start = time.monotonic()
        response = self._client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        content = response.content[0].text if response.content else ""
        logger.debug(
            "LLM completion: %d in / %d out tokens, %d ms",
            response.usage.input_tokens,
            response.usage.output_tokens,
            latency_ms,
        )
        return LLMResponse(
            content=content,
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
        )
