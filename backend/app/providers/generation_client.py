"""
backend/app/providers/generation_client.py

Purpose:
    Boundary adapter to the generative text service (Gemini generateContent
    REST API). Sends one prompt, returns the raw text. No business logic.

Dependencies:
    - httpx (via app.providers.http_client.ResilientClient)
    - app.config
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from app.config import settings
from app.models.generation import BetslipGenerationError, GenerationErrorKind
from app.providers.http_client import CircuitOpenError, ResilientClient

logger = logging.getLogger("betai.generation_client")


@dataclass(frozen=True)
class GenerationConfig:
    model: str
    max_output_tokens: int
    temperature: float

    @classmethod
    def from_settings(cls) -> "GenerationConfig":
        return cls(
            model=settings.GENERATION_MODEL,
            max_output_tokens=settings.GENERATION_MAX_OUTPUT_TOKENS,
            temperature=settings.GENERATION_TEMPERATURE,
        )


class TextGenerator(Protocol):
    async def generate(self, prompt: str, config: GenerationConfig) -> str: ...


def _unavailable(detail: str) -> BetslipGenerationError:
    return BetslipGenerationError(
        GenerationErrorKind.GENERATION_SERVICE_UNAVAILABLE, detail=detail,
    )


def extract_text(payload: Any) -> str:
    """Concatenate the text parts of the first candidate, '' if none."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiGenerationClient:
    """Single-shot client for ``models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self._base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self._http = ResilientClient(
            "gemini",
            timeout=settings.GENERATION_TIMEOUT_SECONDS if timeout is None else timeout,
            max_retries=settings.GENERATION_MAX_RETRIES if max_retries is None else max_retries,
            transport=transport,
        )

    @property
    def circuit_open(self) -> bool:
        return self._http.circuit.is_open

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        url = f"{self._base_url}/models/{config.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_output_tokens,
            },
        }
        headers = {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

        try:
            resp = await self._http.post(url, json=body, headers=headers)
        except CircuitOpenError as exc:
            raise _unavailable(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise _unavailable(f"transport error: {type(exc).__name__}") from exc

        if not resp.is_success:
            logger.warning("Generation service returned HTTP %d", resp.status_code)
            raise _unavailable(f"HTTP {resp.status_code}")

        try:
            text = extract_text(resp.json())
        except ValueError as exc:
            raise _unavailable("non-JSON response envelope") from exc

        if not text.strip():
            raise _unavailable("empty response")

        logger.info("Generation response received (%d chars, model=%s)", len(text), config.model)
        return text

    async def aclose(self) -> None:
        await self._http.aclose()
