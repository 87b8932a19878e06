from __future__ import annotations

from typing import Any, Dict, Optional

from anthropic import Anthropic

from siterag.config import get_settings
from siterag.services.llm.types import LLMProviderError


class AnthropicProvider:
    name = "anthropic"

    def __init__(self) -> None:
        settings = get_settings()
        if not settings.anthropic_api_key:
            raise LLMProviderError("ANTHROPIC_API_KEY not configured", retryable=False)
        self._client = Anthropic(api_key=settings.anthropic_api_key)

    def generate(
        self,
        *,
        model: str,
        prompt: str,
        timeout_seconds: int,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        expect_json: bool = False,
    ) -> str:
        del expect_json
        kwargs: Dict[str, Any] = {}
        if system_prompt:
            kwargs["system"] = system_prompt
        if temperature is not None:
            kwargs["temperature"] = temperature
        try:
            response = self._client.messages.create(
                model=model,
                max_tokens=max_tokens or 4000,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout_seconds,
                **kwargs,
            )
            text_parts = []
            for block in getattr(response, "content", []) or []:
                value = getattr(block, "text", None)
                if value:
                    text_parts.append(str(value))
            return "\n".join(text_parts).strip()
        except Exception as exc:
            raise LLMProviderError(str(exc), retryable=True) from exc
