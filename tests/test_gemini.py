import asyncio
import json

import httpx
import pytest

from conftest import build_settings, gemini_json, gemini_response, make_gateway
from schoolhub.services.gemini import (
    AIFailure, AIJsonResult, AITextResult, GeminiService, RateLimitWindow,
    calculate_confidence, format_error_message, format_prompt,
)

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_rate_limit_window_rolls_after_a_minute():
    clock = FakeClock()
    window = RateLimitWindow(2, clock=clock)

    assert window.try_acquire()
    assert window.try_acquire()
    assert not window.try_acquire()
    assert window.is_limited

    clock.now += 59.9
    assert not window.try_acquire()

    clock.now += 0.1
    assert window.try_acquire()
    assert window.remaining == 1


def test_format_prompt():
    assert format_prompt("Analisis nilai") == "Analisis nilai"

    prompt = format_prompt("Analisis nilai", {"rata_rata": 72.5})
    assert prompt.startswith("Context Data:\n")
    assert '"rata_rata": 72.5' in prompt
    assert prompt.endswith("Analysis Request:\nAnalisis nilai")


def test_confidence_heuristic():
    assert calculate_confidence("ok", False) == 0.5
    assert calculate_confidence("ok", True) == pytest.approx(0.7)

    long_text = "berdasarkan analisis data, rekomendasi strategi " + "x" * 600
    assert calculate_confidence(long_text, False) == pytest.approx(0.5 + 0.1 + 0.1 + 0.2 * 5 / 8)
    assert calculate_confidence(long_text, True) == 1.0


def test_error_messages_are_localized():
    assert format_error_message("Invalid API key") == "API key tidak valid atau tidak dikonfigurasi"
    assert format_error_message("quota exceeded") == "Kuota API telah habis"
    assert format_error_message("something else") == "something else"


async def test_json_response():
    requests = []

    def handler(request):
        requests.append(request)
        return gemini_json({"recommendations": []})

    gateway = make_gateway(handler)
    result = await gateway.generate_content("Analisis", context={"siswa": 10}, temperature=0.3)

    assert isinstance(result, AIJsonResult)
    assert result.data == {"recommendations": []}
    assert result.metadata.model == "gemini-1.5-flash"
    assert result.metadata.total_tokens == result.metadata.prompt_tokens + result.metadata.completion_tokens

    payload = json.loads(requests[0].content)
    assert payload["generationConfig"]["temperature"] == 0.3
    assert requests[0].url.params["key"] == "test-gemini-key"
    assert requests[0].url.path.endswith("/models/gemini-1.5-flash:generateContent")


async def test_text_response():
    gateway = make_gateway(lambda request: gemini_response("Rekomendasi: tingkatkan kehadiran"))

    result = await gateway.generate_content("Analisis")

    assert isinstance(result, AITextResult)
    assert result.text == "Rekomendasi: tingkatkan kehadiran"


async def test_retries_with_backoff_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, json={"error": {"message": "overloaded"}})
        return gemini_json([])

    gateway = make_gateway(handler, AI_RETRY_DELAY_MS=100)
    result = await gateway.generate_content("Analisis")

    assert isinstance(result, AIJsonResult)
    assert len(calls) == 3
    assert gateway._sleep.delays == [0.1, 0.2]


async def test_exhausted_retries_return_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "API key not valid"}})

    gateway = make_gateway(handler)
    result = await gateway.generate_content("Analisis")

    assert isinstance(result, AIFailure)
    assert result.error_code == "AI_ERROR"
    assert result.error == "API key tidak valid atau tidak dikonfigurasi"
    assert len(calls) == 3


async def test_blocked_prompt_is_a_failure():
    gateway = make_gateway(
        lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}),
        AI_RETRY_ATTEMPTS=1,
    )

    result = await gateway.generate_content("Analisis")

    assert isinstance(result, AIFailure)
    assert "SAFETY" in result.error


async def test_timeout():
    async def handler(request):
        await asyncio.sleep(1)
        return gemini_json([])

    gateway = make_gateway(handler, AI_REQUEST_TIMEOUT_MS=20, AI_RETRY_ATTEMPTS=2)
    result = await gateway.generate_content("Analisis")

    assert isinstance(result, AIFailure)
    assert result.error_code == "AI_TIMEOUT"
    assert result.error == "Request timeout - silakan coba lagi"


async def test_rate_limited_requests_are_not_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return gemini_json([])

    gateway = make_gateway(handler, AI_RATE_LIMIT_PER_MINUTE=1)

    first = await gateway.generate_content("Analisis")
    second = await gateway.generate_content("Analisis")

    assert isinstance(first, AIJsonResult)
    assert isinstance(second, AIFailure)
    assert second.error_code == "RATE_LIMITED"
    assert len(calls) == 1
    assert gateway.get_stats()["is_rate_limited"] is True


async def test_health_check():
    healthy = make_gateway(lambda request: gemini_json({"status": "ok"}))
    unhealthy = make_gateway(lambda request: httpx.Response(500, json={}), AI_RETRY_ATTEMPTS=1)

    assert (await healthy.health_check())["status"] == "healthy"
    assert (await unhealthy.health_check())["status"] == "unhealthy"


def test_gateway_uses_configured_model():
    gateway = GeminiService(build_settings(GEMINI_MODEL="gemini-1.5-pro"))

    assert gateway.model_name == "gemini-1.5-pro"
    assert gateway.rate_limit.limit == 60
