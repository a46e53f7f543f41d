"""
AI collaborators — summarize / tag / embed with degrade-to-fallback.

Every public call returns an AIResult: either ``ok`` with the collaborator's
value or ``degraded`` with the deterministic fallback. Both satisfy the same
contract, so the document store never branches on collaborator health.

Subclasses implement the ``_summarize`` / ``_tag`` / ``_embed`` hooks; the
base class applies the timeout, validates the value and substitutes the
fallback on any failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from kbase.ai.client import CircuitBreaker, GeminiClient
from kbase.ai.fallbacks import fallback_embedding, fallback_summary, fallback_tags
from kbase.engine.config import AIConfig
from kbase.engine.errors import KBIntegrationError
from kbase.engine.logging import log, log_ai_call

logger = logging.getLogger("kbase.ai.assistant")

SUMMARY_PROMPT = "Summarize the following document in 3-5 bullet points:\n\n{text}"
TAGS_PROMPT = (
    "Read the content and return {count} concise single-word or short-phrase tags "
    "as a JSON array of strings only. Content:\n\n{text}"
)


@dataclass(frozen=True)
class AIResult:
    """Collaborator value, or the fallback that replaced it."""

    value: Any
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> "AIResult":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: Any, error: Optional[str] = None) -> "AIResult":
        return cls(value=value, degraded=True, error=error)


@dataclass(frozen=True)
class DerivedFields:
    summary: AIResult
    tags: AIResult
    embedding: AIResult

    @property
    def degraded(self) -> List[str]:
        return [
            name for name in ("summary", "tags", "embedding")
            if getattr(self, name).degraded
        ]


class AIAssistant:
    """Base collaborator. Hooks are async and may raise anything."""

    name = "base"

    def __init__(self, timeout_seconds: float = 10.0, tag_count: int = 6):
        self._timeout = timeout_seconds
        self._tag_count = tag_count

    @property
    def tag_count(self) -> int:
        return self._tag_count

    # -------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------

    async def summarize(self, text: str) -> AIResult:
        return await self._call(
            "summarize",
            lambda: self._summarize(text),
            _require_text,
            lambda: fallback_summary(text),
        )

    async def tag(self, text: str, count: Optional[int] = None) -> AIResult:
        k = count or self._tag_count
        return await self._call(
            "tag",
            lambda: self._tag(text, k),
            lambda value: _require_tags(value, k),
            lambda: fallback_tags(text, k),
        )

    async def embed(self, text: str) -> AIResult:
        return await self._call(
            "embed",
            lambda: self._embed(text),
            _require_vector,
            lambda: fallback_embedding(text),
        )

    async def derive(self, title: str, content: str, tag_count: Optional[int] = None) -> DerivedFields:
        """Summary of the content; tags and embedding of title + content. Run concurrently."""
        combined = f"{title}\n{content}"
        summary, tags, embedding = await asyncio.gather(
            self.summarize(content),
            self.tag(combined, tag_count),
            self.embed(combined),
        )
        return DerivedFields(summary=summary, tags=tags, embedding=embedding)

    async def aclose(self) -> None:
        """Release collaborator resources (HTTP pools)."""
        return None

    # -------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------

    async def _summarize(self, text: str) -> str:
        raise NotImplementedError

    async def _tag(self, text: str, count: int) -> List[str]:
        raise NotImplementedError

    async def _embed(self, text: str) -> List[float]:
        raise NotImplementedError

    # -------------------------------------------------------------------
    # Degrade policy
    # -------------------------------------------------------------------

    async def _call(
        self,
        operation: str,
        hook: Callable[[], Awaitable[Any]],
        validate: Callable[[Any], Any],
        fallback: Callable[[], Any],
    ) -> AIResult:
        start = time.monotonic()
        try:
            value = validate(await asyncio.wait_for(hook(), timeout=self._timeout))
            result = AIResult.ok(value)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.info(f"AI {operation} via '{self.name}' degraded to fallback ({error})")
            result = AIResult.fallback(fallback(), error)

        duration_ms = (time.monotonic() - start) * 1000
        log(log_ai_call(self.name, operation, duration_ms, result.degraded, result.error))
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} timeout={self._timeout}s tags={self._tag_count}>"


def _require_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("empty summary")
    return value.strip()


def _require_tags(value: Any, count: int) -> List[str]:
    if not isinstance(value, (list, tuple)):
        raise ValueError("tags must be a list")
    tags = [str(t).strip() for t in value if str(t).strip()]
    if not tags:
        raise ValueError("no tags returned")
    return tags[:count]


def _require_vector(value: Any) -> List[float]:
    if not isinstance(value, (list, tuple)) or not value:
        raise ValueError("empty embedding")
    return [float(v) for v in value]


# ---------------------------------------------------------------------------
# Concrete collaborators
# ---------------------------------------------------------------------------

class OfflineAssistant(AIAssistant):
    """No AI provider configured: every call degrades to its fallback."""

    name = "offline"

    async def _summarize(self, text: str) -> str:
        raise KBIntegrationError("AI collaborator not configured", collaborator=self.name)

    async def _tag(self, text: str, count: int) -> List[str]:
        raise KBIntegrationError("AI collaborator not configured", collaborator=self.name)

    async def _embed(self, text: str) -> List[float]:
        raise KBIntegrationError("AI collaborator not configured", collaborator=self.name)


class GeminiAssistant(AIAssistant):
    """Gemini-backed collaborator guarded by a circuit breaker."""

    name = "gemini"

    def __init__(
        self,
        client: GeminiClient,
        breaker: Optional[CircuitBreaker] = None,
        timeout_seconds: float = 10.0,
        tag_count: int = 6,
    ):
        super().__init__(timeout_seconds=timeout_seconds, tag_count=tag_count)
        self._client = client
        self._breaker = breaker or CircuitBreaker("gemini")

    async def _summarize(self, text: str) -> str:
        return await self._guarded(lambda: self._client.generate(SUMMARY_PROMPT.format(text=text)))

    async def _tag(self, text: str, count: int) -> List[str]:
        raw = await self._guarded(
            lambda: self._client.generate(TAGS_PROMPT.format(count=count, text=text))
        )
        return parse_tag_response(raw, count)

    async def _embed(self, text: str) -> List[float]:
        return await self._guarded(lambda: self._client.embed(text))

    async def _guarded(self, call: Callable[[], Awaitable[Any]]) -> Any:
        if not self._breaker.allow_request():
            raise KBIntegrationError(
                f"Circuit breaker OPEN for '{self._breaker.name}'",
                collaborator=self.name,
            )
        try:
            value = await call()
        except Exception:
            self._breaker.record_failure()
            raise
        self._breaker.record_success()
        return value

    async def aclose(self) -> None:
        await self._client.aclose()


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_tag_response(raw: str, count: int) -> List[str]:
    """JSON array if the model complied, otherwise split on quotes/commas/newlines."""
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(t) for t in parsed][:count]

    text = re.sub(r"^[\[\]]", "", text)
    parts = [p.strip() for p in re.split(r'[",\n]', text)]
    return [p for p in parts if p and p not in ("[", "]")][:count]


def build_assistant(config: AIConfig) -> AIAssistant:
    """Pick the collaborator for this process. Called by the runtime bootstrap."""
    if config.provider == "offline" or not config.api_key:
        logger.info("No AI provider configured; using offline fallbacks")
        return OfflineAssistant(timeout_seconds=config.timeout_seconds, tag_count=config.tag_count)

    client = GeminiClient(
        api_key=config.api_key,
        base_url=config.base_url,
        model=config.model,
        embedding_model=config.embedding_model,
        timeout=config.timeout_seconds,
    )
    breaker = CircuitBreaker(
        "gemini",
        failure_threshold=config.failure_threshold,
        recovery_timeout=config.recovery_timeout,
    )
    return GeminiAssistant(
        client,
        breaker=breaker,
        timeout_seconds=config.timeout_seconds,
        tag_count=config.tag_count,
    )
