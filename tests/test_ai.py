"""Unit tests for kbase.ai — fallbacks, degrade policy, Gemini client, circuit breaker."""

import asyncio
import json

import httpx
import pytest

from kbase.ai.assistant import (
    AIAssistant,
    AIResult,
    GeminiAssistant,
    OfflineAssistant,
    build_assistant,
    parse_tag_response,
)
from kbase.ai.client import CircuitBreaker, GeminiClient
from kbase.ai.fallbacks import fallback_embedding, fallback_summary, fallback_tags
from kbase.engine.config import AIConfig
from kbase.engine.errors import KBIntegrationError


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------

class TestFallbacks:
    def test_short_summary_is_text(self):
        assert fallback_summary("Step one. Step two.") == "Step one. Step two."

    def test_long_summary_truncated(self):
        text = "x" * 500
        summary = fallback_summary(text)
        assert summary == "x" * 200 + "…"

    def test_summary_boundary(self):
        assert fallback_summary("y" * 220) == "y" * 220

    def test_tags_by_frequency(self):
        assert fallback_tags("Runbook\nStep one. Step two.", 2) == ["step", "runbook"]

    def test_tags_ignore_punctuation(self):
        assert fallback_tags("deploy, deploy! rollback?", 5) == ["deploy", "rollback"]

    def test_embedding_shape_and_determinism(self):
        vec = fallback_embedding("Runbook")
        assert len(vec) == 64
        assert vec == fallback_embedding("Runbook")
        assert vec[0] == ord("R") / 1000
        assert all(0 <= v < 1 for v in vec)

    def test_embedding_wraps_mod_1000(self):
        vec = fallback_embedding("z" * 129, dimensions=64)
        # three 'z' (122) land in slot 0
        assert vec[0] == (122 * 3 % 1000) / 1000


# ---------------------------------------------------------------------------
# Degrade policy
# ---------------------------------------------------------------------------

class SlowAssistant(AIAssistant):
    name = "slow"

    async def _summarize(self, text):
        await asyncio.sleep(5)
        return "late"

    async def _tag(self, text, count):
        return ["", "  "]

    async def _embed(self, text):
        return [1, 2, 3]


class TestDegradePolicy:
    @pytest.mark.asyncio
    async def test_timeout_degrades(self):
        result = await SlowAssistant(timeout_seconds=0.05).summarize("hello")
        assert result.degraded
        assert result.value == "hello"
        assert "TimeoutError" in result.error

    @pytest.mark.asyncio
    async def test_invalid_value_degrades(self):
        result = await SlowAssistant().tag("ops ops deploy", 2)
        assert result.degraded
        assert result.value == ["ops", "deploy"]

    @pytest.mark.asyncio
    async def test_ok_value_normalized(self):
        result = await SlowAssistant().embed("x")
        assert not result.degraded
        assert result.value == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_offline_always_degraded(self):
        derived = await OfflineAssistant().derive("Runbook", "Step one. Step two.")
        assert derived.degraded == ["summary", "tags", "embedding"]
        assert derived.summary.value == "Step one. Step two."
        assert derived.tags.value[0] == "step"
        assert derived.embedding.value == fallback_embedding("Runbook\nStep one. Step two.")

    @pytest.mark.asyncio
    async def test_derive_runs_concurrently(self):
        class Parallel(AIAssistant):
            async def _summarize(self, text):
                await asyncio.sleep(0.2)
                return "s"

            async def _tag(self, text, count):
                await asyncio.sleep(0.2)
                return ["t"]

            async def _embed(self, text):
                await asyncio.sleep(0.2)
                return [0.5]

        loop = asyncio.get_running_loop()
        start = loop.time()
        derived = await Parallel(timeout_seconds=2).derive("T", "C")
        assert loop.time() - start < 0.5
        assert derived.degraded == []

    @pytest.mark.asyncio
    async def test_failures_isolated(self):
        class HalfBroken(AIAssistant):
            async def _summarize(self, text):
                raise RuntimeError("boom")

            async def _tag(self, text, count):
                return ["ok"]

            async def _embed(self, text):
                return [0.1]

        derived = await HalfBroken().derive("T", "content here")
        assert derived.degraded == ["summary"]
        assert derived.tags.value == ["ok"]

    def test_result_variants(self):
        assert not AIResult.ok(1).degraded
        fb = AIResult.fallback(2, "why")
        assert fb.degraded and fb.error == "why"


# ---------------------------------------------------------------------------
# Tag parsing
# ---------------------------------------------------------------------------

class TestParseTagResponse:
    def test_json_array(self):
        assert parse_tag_response('["ops", "deploy"]', 6) == ["ops", "deploy"]

    def test_fenced_json(self):
        assert parse_tag_response('```json\n["a", "b", "c"]\n```', 2) == ["a", "b"]

    def test_comma_separated(self):
        assert parse_tag_response("ops, deploy\nrollback", 6) == ["ops", "deploy", "rollback"]


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("g", failure_threshold=2, recovery_timeout=60)
        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN
        assert not breaker.allow_request()

    def test_half_open_allows_one_trial(self):
        breaker = CircuitBreaker("g", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        breaker._last_failure_time -= 61
        assert breaker.state == CircuitBreaker.HALF_OPEN
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN

    def test_success_closes(self):
        breaker = CircuitBreaker("g", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        breaker._last_failure_time -= 61
        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state == CircuitBreaker.CLOSED


# ---------------------------------------------------------------------------
# Gemini client (httpx.MockTransport)
# ---------------------------------------------------------------------------

def _gemini(handler):
    return GeminiClient(api_key="k", transport=httpx.MockTransport(handler))


class TestGeminiClient:
    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "- point one"}]}}],
            })

        client = _gemini(handler)
        assert await client.generate("hi") == "- point one"
        assert seen["path"] == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert seen["key"] == "k"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "hi"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_embed(self):
        def handler(request):
            assert request.url.path.endswith("text-embedding-004:embedContent")
            return httpx.Response(200, json={"embedding": {"values": [0.25, 0.5]}})

        client = _gemini(handler)
        assert await client.embed("x") == [0.25, 0.5]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = _gemini(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(KBIntegrationError) as exc:
            await client.generate("hi")
        assert exc.value.status == 503
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        client = _gemini(lambda request: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(KBIntegrationError):
            await client.generate("hi")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        client = _gemini(handler)
        with pytest.raises(KBIntegrationError):
            await client.embed("x")
        await client.aclose()


class TestGeminiAssistant:
    @pytest.mark.asyncio
    async def test_tags_parsed_from_generation(self):
        def handler(request):
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": '["Ops", "Deploy"]'}]}}],
            })

        assistant = GeminiAssistant(_gemini(handler))
        result = await assistant.tag("text", 6)
        assert not result.degraded
        assert result.value == ["Ops", "Deploy"]
        await assistant.aclose()

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        breaker = CircuitBreaker("gemini", failure_threshold=1, recovery_timeout=60)
        assistant = GeminiAssistant(_gemini(handler), breaker=breaker)

        first = await assistant.summarize("short text")
        second = await assistant.summarize("short text")
        assert first.degraded and second.degraded
        assert second.value == "short text"
        assert len(calls) == 1
        await assistant.aclose()


class TestBuildAssistant:
    def test_offline_without_key(self):
        assert isinstance(build_assistant(AIConfig(api_key=None)), OfflineAssistant)

    def test_offline_provider(self):
        assert isinstance(build_assistant(AIConfig(provider="offline", api_key="k")), OfflineAssistant)

    @pytest.mark.asyncio
    async def test_gemini_with_key(self):
        assistant = build_assistant(AIConfig(api_key="k", tag_count=4))
        assert isinstance(assistant, GeminiAssistant)
        assert assistant.tag_count == 4
        await assistant.aclose()
