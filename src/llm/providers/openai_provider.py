from __future__ import annotations
import logging
from typing import Optional

import httpx

from talk2task.config import Settings
from talk2task.errors import UpstreamError
from .base import LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Chat completions provider for any OpenAI-compatible endpoint (OpenRouter by default)."""

    name = "openai"

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = settings.llm_api_key
        self.model = settings.llm_model
        self.base_url = settings.llm_base_url.rstrip("/")
        self.timeout_s = settings.llm_timeout_s
        self._transport = transport

        if not self.api_key:
            raise RuntimeError("LLM_API_KEY is missing")

    def generate(self, *, system: str, user: str, model: str | None = None) -> str:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": model or self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }

        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
                r = client.post(url, headers=headers, json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text
            logger.error(f"Completion provider returned {e.response.status_code}: {body[:200]}")
            raise UpstreamError(
                f"API request failed with status {e.response.status_code}",
                upstream_status=e.response.status_code,
                body=body,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Completion provider unreachable: {e}")
            raise UpstreamError(f"Completion provider unreachable: {e}") from e
        except ValueError as e:
            raise UpstreamError("Completion provider returned a non-JSON envelope") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not content:
            raise UpstreamError("No response content from completion provider", body=str(data)[:500])
        return content
