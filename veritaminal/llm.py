"""LLM client — HTTP connection to a text-generation backend.

The content provider injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` identifies which provider call is being made ("document",
"judgment", "hint", "narrative"). HttpLLM uses it to pick generation
settings; test doubles use it to route canned responses.

Production code constructs an HttpLLM from AppConfig and passes it to the
ContentProvider. Tests use StubLLM (defined in conftest) instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Per-stage generation settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationSettings:
    max_tokens: int
    temperature: float


STAGE_SETTINGS: dict[str, GenerationSettings] = {
    "document": GenerationSettings(max_tokens=300, temperature=0.95),
    "judgment": GenerationSettings(max_tokens=300, temperature=0.7),
    "hint": GenerationSettings(max_tokens=100, temperature=0.8),
    "narrative": GenerationSettings(max_tokens=100, temperature=0.9),
}
DEFAULT_SETTINGS = GenerationSettings(max_tokens=200, temperature=0.9)


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "gemini"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "koboldcpp"  — POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     — POST /v1/completions   {"model": ..., "prompt": ...}
                     Response: {"choices": [{"text": "..."}]}
      "gemini"     — POST /v1beta/models/{model}:generateContent
                     Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         API key, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier (openai and gemini formats).
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            if self._format == "gemini":
                headers["x-goog-api-key"] = self._api_key
            else:
                headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, stage: str, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        settings = STAGE_SETTINGS.get(stage, DEFAULT_SETTINGS)

        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {
                "prompt": prompt,
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
            }
            if self._model:
                body["model"] = self._model
            return url, body

        if self._format == "gemini":
            url = f"{self._base_url}/v1beta/models/{self._model}:generateContent"
            return url, {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "maxOutputTokens": settings.max_tokens,
                    "temperature": settings.temperature,
                },
            }

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {
            "prompt": prompt,
            "max_length": settings.max_tokens,
            "temperature": settings.temperature,
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict) \
                    or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        if self._format == "gemini":
            try:
                parts = data["candidates"][0]["content"]["parts"]
                return "".join(p.get("text", "") for p in parts)
            except (KeyError, IndexError, TypeError, AttributeError) as e:
                raise LLMError("Unexpected response format from Gemini backend") from e

        # koboldcpp
        results = data.get("results")
        if not isinstance(results, list) or not results or not isinstance(results[0], dict) \
                or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(stage, prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise LLMError(f"LLM request to {self._base_url} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise LLMError("Unexpected response format from LLM backend")

        text = self._parse_response(data)
        if not isinstance(text, str):
            raise LLMError("LLM backend returned non-text completion")
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
