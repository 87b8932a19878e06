from __future__ import annotations

from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from siterag.config import get_settings
from siterag.services.llm.types import LLMProviderError


class GeminiProvider:
    name = "gemini"

    def __init__(self) -> None:
        settings = get_settings()
        if not settings.gemini_api_key:
            raise LLMProviderError("GEMINI_API_KEY not configured", retryable=False)
        self._client = genai.Client(api_key=settings.gemini_api_key)

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
        config_kwargs: Dict[str, Any] = {
            "http_options": types.HttpOptions(timeout=int(timeout_seconds) * 1000),
        }
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt
        if temperature is not None:
            config_kwargs["temperature"] = temperature
        if max_tokens is not None:
            config_kwargs["max_output_tokens"] = max_tokens
        if expect_json:
            config_kwargs["response_mime_type"] = "application/json"
        try:
            response = self._client.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
            return str(response.text or "").strip()
        except Exception as exc:
            raise LLMProviderError(str(exc), retryable=True) from exc
