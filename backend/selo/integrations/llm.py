"""
Text-completion client for the audit executive summary.

Speaks two wire formats over httpx:
- OpenAI-compatible chat completions (OpenAI, LM Studio, Ollama, ...)
- Anthropic messages
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from selo.config import settings

ANTHROPIC_VERSION = "2023-06-01"


class LLMProvider(str, Enum):
    LOCAL = "local"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class Completion(BaseModel):
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMConfig:
    provider: LLMProvider
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.4
    # 200-300 words fits comfortably
    max_tokens: int = 800
    timeout: float = 60.0

    @classmethod
    def from_settings(cls) -> "LLMConfig":
        return cls(
            provider=LLMProvider(settings.LLM_PROVIDER),
            base_url=settings.LLM_BASE_URL.rstrip("/"),
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
        )


class LLMClient:
    """Single-turn completions: one system prompt, one user prompt."""

    def __init__(self, config: Optional[LLMConfig] = None, http: Optional[httpx.AsyncClient] = None):
        self.config = config or LLMConfig.from_settings()
        self._http = http
        self._owns_http = http is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.provider == LLMProvider.ANTHROPIC:
            headers["x-api-key"] = self.config.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        elif self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                headers=self._headers(),
            )
            self._owns_http = True
        return self._http

    async def complete(self, system: str, prompt: str) -> Completion:
        if self.config.provider == LLMProvider.ANTHROPIC:
            return await self._complete_anthropic(system, prompt)
        return await self._complete_openai(system, prompt)

    async def _complete_openai(self, system: str, prompt: str) -> Completion:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        response = await self._client().post(
            f"{self.config.base_url}/chat/completions", json=payload, headers=self._headers()
        )
        response.raise_for_status()
        data = response.json()

        usage = data.get("usage") or {}
        return Completion(
            text=data["choices"][0]["message"]["content"] or "",
            model=data.get("model", self.config.model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
        )

    async def _complete_anthropic(self, system: str, prompt: str) -> Completion:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "system": system,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        response = await self._client().post(
            f"{self.config.base_url}/messages", json=payload, headers=self._headers()
        )
        response.raise_for_status()
        data = response.json()

        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage") or {}
        return Completion(
            text=text,
            model=data.get("model", self.config.model),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.is_closed:
            await self._http.aclose()
