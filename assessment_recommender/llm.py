from __future__ import annotations

"""
Large-language-model client used by the semantic ranker.

The ranker only needs ``generate(prompt) -> str``.  The production
implementation talks to the Gemini ``generateContent`` REST endpoint
with httpx; tests substitute a scripted client.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import (
    GEMINI_API_BASE_URL,
    GEMINI_GENERATION_CONFIG,
    GEMINI_MODEL,
    LLM_TIMEOUT,
    Settings,
)
from .errors import ConfigurationError, ExternalServiceError


class LLMClient(ABC):
    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return the model's text completion for ``prompt``."""


class GeminiClient(LLMClient):
    """Blocking Gemini REST client; one request per call, no retries."""

    def __init__(
        self,
        api_key: str,
        model: str = GEMINI_MODEL,
        timeout: float = LLM_TIMEOUT,
        base_url: str = GEMINI_API_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the LLM stage")
        self.model = model
        self._api_key = api_key
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(GEMINI_GENERATION_CONFIG),
        }

    def generate(self, prompt: str) -> str:
        try:
            r = self._client.post(
                f"/models/{self.model}:generateContent",
                params={"key": self._api_key},
                json=self._payload(prompt),
            )
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            raise ExternalServiceError(f"Gemini API error: {detail}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError(f"Gemini API error: {exc}") from exc

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("Gemini response contained no text candidate") from exc

    def close(self) -> None:
        self._client.close()


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {response.status_code}"


def create_llm_client(settings: Settings) -> Optional[LLMClient]:
    """Gemini client when a key is configured, otherwise ``None``."""
    if not settings.llm_enabled:
        logger.info("GEMINI_API_KEY not set; LLM ranking disabled")
        return None
    logger.info("LLM ranking enabled (model={})", settings.gemini_model)
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout=settings.llm_timeout,
    )
