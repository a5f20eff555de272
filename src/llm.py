"""LLM client using LiteLLM for model abstraction."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import litellm
from litellm import acompletion, completion
from litellm.exceptions import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

# Provider failures worth another attempt.
TRANSIENT_LLM_ERRORS = (
    Timeout,
    RateLimitError,
    APIConnectionError,
    ServiceUnavailableError,
    InternalServerError,
)


class LLMResponseError(ValueError):
    """Raised when a model reply cannot be parsed."""


@dataclass(frozen=True)
class TokenUsage:
    """Tokens and cost reported for one or more completions."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True)
class LLMCompletion:
    text: str
    usage: TokenUsage


def _completion_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Price tokens with LiteLLM's model table; unknown models cost 0."""
    try:
        cost = litellm.completion_cost(
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
    except Exception as e:
        logger.debug("Could not calculate cost for %s: %s", model, e)
        return 0.0
    return float(cost or 0.0)


def usage_from_response(model: str, response: Any) -> TokenUsage:
    """Read token counts from a LiteLLM response and price them."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
    completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
    total_tokens = int(getattr(usage, "total_tokens", 0) or 0) or prompt_tokens + completion_tokens
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        cost_usd=_completion_cost(model, prompt_tokens, completion_tokens),
    )


class LLMClient:
    """Wrapper around LiteLLM for consistent LLM access."""

    def __init__(self, model: Optional[str] = None):
        """Initialize the client with a default model if omitted."""
        self.model = model or settings.llm.model

    def _litellm_kwargs(self) -> Dict[str, Any]:
        """Build LiteLLM keyword arguments from settings."""
        extra: Dict[str, Any] = {}
        if settings.llm.base_url:
            extra["api_base"] = settings.llm.base_url
        if settings.llm.api_key:
            extra["api_key"] = settings.llm.api_key
        return extra

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 4000,
        **kwargs,
    ) -> str:
        """Async completion request returning the response text."""
        response = await acompletion(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=settings.llm.timeout,
            **self._litellm_kwargs(),
            **kwargs,
        )
        return response.choices[0].message.content

    def complete_sync(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 4000,
        **kwargs,
    ) -> str:
        """Synchronous completion request returning the response text."""
        return self.complete_sync_with_usage(
            messages, temperature=temperature, max_tokens=max_tokens, **kwargs
        ).text

    def complete_sync_with_usage(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 4000,
        **kwargs,
    ) -> LLMCompletion:
        """Synchronous completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature
            max_tokens: Maximum response tokens
            **kwargs: Additional LiteLLM parameters

        Returns:
            Response text with the token usage and cost it was billed
        """
        response = completion(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=settings.llm.timeout,
            **self._litellm_kwargs(),
            **kwargs,
        )
        return LLMCompletion(
            text=response.choices[0].message.content,
            usage=usage_from_response(self.model, response),
        )


def parse_json_response(text: str) -> Any:
    """Parse a JSON document from a model reply, tolerating markdown fences."""
    if text is None:
        raise LLMResponseError("LLM response is empty")
    match = _FENCED_JSON.search(text)
    candidate = match.group(1) if match else text
    try:
        return json.loads(candidate.strip())
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"LLM response is not valid JSON: {exc}") from exc


# Global instance
llm_client = LLMClient()
