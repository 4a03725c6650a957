"""Completion gateway — wraps LiteLLM for provider-agnostic text generation.

One call per invocation, no state beyond configuration. Every failure
(provider error, timeout, empty reply) surfaces as ``CompletionError``;
callers never see a LiteLLM exception or a malformed success.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from litellm import acompletion

from app.core.config import Settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The completion provider failed, timed out or returned nothing."""


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_used: int
    model: str = ""


class CompletionGateway(Protocol):
    async def complete(
        self,
        prompt: str | list[dict],
        max_tokens: int,
    ) -> Completion: ...


class LiteLLMCompletionGateway:
    """CompletionGateway backed by ``litellm.acompletion``.

    Created once at process start (FastAPI lifespan / ARQ startup) and
    passed to the components that need it.
    """

    def __init__(
        self,
        model: str,
        timeout: float = 60.0,
        api_key: str | None = None,
        temperature: float = 0.2,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.api_key = api_key or None
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> LiteLLMCompletionGateway:
        return cls(
            model=settings.default_llm_model,
            timeout=settings.completion_timeout_seconds,
            api_key=settings.llm_api_key,
        )

    async def complete(self, prompt: str | list[dict], max_tokens: int) -> Completion:
        messages = [{"role": "user", "content": prompt}] if isinstance(prompt, str) else prompt

        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = await asyncio.wait_for(acompletion(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise CompletionError(f"completion timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            logger.warning("Completion call failed (%s): %s", self.model, exc)
            raise CompletionError(str(exc)[:500]) from exc

        choices = getattr(response, "choices", None) or []
        text = (choices[0].message.content or "").strip() if choices else ""
        if not text:
            raise CompletionError("completion returned no text")

        usage = getattr(response, "usage", None)
        prompt_tokens = (usage.prompt_tokens or 0) if usage else 0
        completion_tokens = (usage.completion_tokens or 0) if usage else 0

        return Completion(
            text=text,
            tokens_used=prompt_tokens + completion_tokens,
            model=self.model,
        )
