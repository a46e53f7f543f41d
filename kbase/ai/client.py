"""
Gemini REST client — outbound calls for summaries, tags and embeddings.

Uses httpx.AsyncClient (one pooled client per process, owned by the runtime).
Failures raise KBIntegrationError; callers in kbase.ai.assistant absorb them
into fallback values.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from kbase.engine.errors import KBIntegrationError

logger = logging.getLogger("kbase.ai.client")


# ---------------------------------------------------------------------------
# Circuit Breaker
# ---------------------------------------------------------------------------

class CircuitBreaker:
    """
    Per-collaborator circuit breaker.

    States:
        CLOSED  → requests flow normally
        OPEN    → requests fail fast (no outbound call)
        HALF    → single trial request allowed; success → CLOSED, fail → OPEN
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ):
        self.name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0

    @property
    def state(self) -> str:
        if self._state == self.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = self.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state != self.OPEN

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self._failure_threshold or self._state == self.HALF_OPEN:
            self._state = self.OPEN
            logger.warning(
                f"Circuit breaker OPEN for '{self.name}': "
                f"{self._failure_count} consecutive failures"
            )


# ---------------------------------------------------------------------------
# Gemini client
# ---------------------------------------------------------------------------

class GeminiClient:
    """Thin async wrapper over the generateContent / embedContent endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-1.5-flash",
        embedding_model: str = "text-embedding-004",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._model = model
        self._embedding_model = embedding_model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"x-goog-api-key": api_key},
            transport=transport,
        )

    async def generate(self, prompt: str) -> str:
        """Single-turn text generation. Returns the first candidate's text."""
        data = await self._post(
            f"/models/{self._model}:generateContent",
            {"contents": [{"parts": [{"text": prompt}]}]},
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise KBIntegrationError(
                "Malformed generateContent response",
                collaborator="gemini",
                operation="generate",
            ) from e

    async def embed(self, text: str) -> List[float]:
        data = await self._post(
            f"/models/{self._embedding_model}:embedContent",
            {
                "model": f"models/{self._embedding_model}",
                "content": {"parts": [{"text": text}]},
            },
        )
        try:
            return [float(v) for v in data["embedding"]["values"]]
        except (KeyError, TypeError, ValueError) as e:
            raise KBIntegrationError(
                "Malformed embedContent response",
                collaborator="gemini",
                operation="embed",
            ) from e

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise KBIntegrationError(
                f"Gemini request failed: {e}",
                collaborator="gemini",
                operation=path,
            ) from e

        if response.status_code >= 400:
            raise KBIntegrationError(
                f"Gemini returned HTTP {response.status_code}",
                collaborator="gemini",
                operation=path,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise KBIntegrationError(
                "Gemini returned a non-JSON body",
                collaborator="gemini",
                operation=path,
                status=response.status_code,
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"<GeminiClient model='{self._model}' embedding_model='{self._embedding_model}'>"
