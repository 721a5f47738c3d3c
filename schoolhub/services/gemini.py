import asyncio
import json
import logging
import math
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

import httpx
from pydantic import BaseModel

from schoolhub.config import Settings, settings, AI_SAFETY_SETTINGS

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60

CONFIDENCE_KEYWORDS = [
    "analisis",
    "rekomendasi",
    "data",
    "berdasarkan",
    "peningkatan",
    "perbaikan",
    "strategi",
    "implementasi",
]


class AIGatewayError(Exception):
    """Upstream call failed in a way worth retrying."""


# Result types
class AIMetadata(BaseModel):
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    processing_time_ms: int = 0


class AIJsonResult(BaseModel):
    kind: Literal["json"] = "json"
    data: Any
    confidence: float
    metadata: AIMetadata


class AITextResult(BaseModel):
    kind: Literal["text"] = "text"
    text: str
    confidence: float
    metadata: AIMetadata


class AIFailure(BaseModel):
    kind: Literal["error"] = "error"
    error_code: str
    error: str
    metadata: Optional[AIMetadata] = None


AIResult = Union[AIJsonResult, AITextResult, AIFailure]


class RateLimitWindow:
    """
    Fixed request quota per 60 second window.

    The window restarts on the first call made 60 seconds or more after it
    opened. State lives in this object only, so every process (and every
    gateway instance) counts on its own.
    """

    def __init__(self, limit_per_minute: int, clock: Callable[[], float] = time.time):
        self.limit = limit_per_minute
        self.clock = clock
        self.count = 0
        self.window_start = clock()

    def _roll(self) -> None:
        now = self.clock()
        if now - self.window_start >= RATE_LIMIT_WINDOW_SECONDS:
            self.count = 0
            self.window_start = now

    def try_acquire(self) -> bool:
        self._roll()
        if self.count >= self.limit:
            return False
        self.count += 1
        return True

    @property
    def remaining(self) -> int:
        self._roll()
        return max(0, self.limit - self.count)

    @property
    def is_limited(self) -> bool:
        return self.remaining == 0


def format_prompt(prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
    if not context:
        return prompt
    context_json = json.dumps(context, indent=2, ensure_ascii=False, default=str)
    return f"Context Data:\n{context_json}\n\nAnalysis Request:\n{prompt}"


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def calculate_confidence(text: str, is_json: bool) -> float:
    """
    Heuristic confidence of a model response.

    Base 0.5, +0.1 over 100 chars, +0.1 over 500 chars, +0.2 for valid JSON
    and up to +0.2 for domain keyword hits. Clamped to 1.0.
    """
    confidence = 0.5
    if len(text) > 100:
        confidence += 0.1
    if len(text) > 500:
        confidence += 0.1
    if is_json:
        confidence += 0.2
    lowered = text.lower()
    hits = sum(1 for keyword in CONFIDENCE_KEYWORDS if keyword in lowered)
    confidence += (hits / len(CONFIDENCE_KEYWORDS)) * 0.2
    return min(confidence, 1.0)


def format_error_message(message: str) -> str:
    lowered = message.lower()
    if "api key" in lowered:
        return "API key tidak valid atau tidak dikonfigurasi"
    if "quota" in lowered:
        return "Kuota API telah habis"
    if "timeout" in lowered:
        return "Request timeout - silakan coba lagi"
    if "rate limit" in lowered:
        return "Rate limit exceeded - terlalu banyak request"
    return message


class GeminiService:
    """
    Gateway to the Gemini generateContent REST endpoint.

    Adds a per-minute request quota, retries with exponential backoff and a
    timeout per attempt. Responses are returned as an AIResult: parsed JSON,
    raw text when the output is not JSON, or a failure.
    """

    def __init__(
        self,
        config: Settings = settings,
        rate_limit: Optional[RateLimitWindow] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.rate_limit = rate_limit or RateLimitWindow(config.AI_RATE_LIMIT_PER_MINUTE)
        self.client = client
        self._sleep = sleep

    @property
    def model_name(self) -> str:
        return self.config.GEMINI_MODEL

    def _build_payload(self, prompt: str, temperature: Optional[float]) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.AI_TEMPERATURE if temperature is None else temperature,
                "topP": self.config.AI_TOP_P,
                "topK": self.config.AI_TOP_K,
                "maxOutputTokens": self.config.AI_MAX_TOKENS,
                "responseMimeType": self.config.AI_RESPONSE_MIME_TYPE,
            },
            "safetySettings": AI_SAFETY_SETTINGS,
        }

    async def _post(self, client: httpx.AsyncClient, prompt: str, temperature: Optional[float]) -> str:
        response = await client.post(
            f"{self.config.GEMINI_API_URL}/models/{self.model_name}:generateContent",
            params={"key": self.config.GEMINI_API_KEY},
            json=self._build_payload(prompt, temperature),
        )

        try:
            response_data = response.json()
        except ValueError:
            raise AIGatewayError(f"Invalid response from Gemini API (status {response.status_code})")

        if response.status_code != 200:
            message = response_data.get("error", {}).get("message", "Unknown error")
            raise AIGatewayError(f"Gemini API error {response.status_code}: {message}")

        candidates = response_data.get("candidates") or []
        if not candidates:
            reason = response_data.get("promptFeedback", {}).get("blockReason", "no candidates")
            raise AIGatewayError(f"Empty response from model: {reason}")

        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise AIGatewayError("Empty response from model")
        return text

    async def _request(self, prompt: str, temperature: Optional[float]) -> str:
        if self.client is not None:
            return await self._post(self.client, prompt, temperature)
        async with httpx.AsyncClient() as client:
            return await self._post(client, prompt, temperature)

    async def _request_with_retry(self, prompt: str, temperature: Optional[float]) -> str:
        attempts = max(self.config.AI_RETRY_ATTEMPTS, 1)
        timeout = self.config.AI_REQUEST_TIMEOUT_MS / 1000

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(self._request(prompt, temperature), timeout=timeout)
            except (asyncio.TimeoutError, httpx.HTTPError, AIGatewayError) as e:
                if attempt == attempts - 1:
                    raise
                delay = self.config.AI_RETRY_DELAY_MS / 1000 * (2 ** attempt)
                logger.warning(
                    f"Gemini request failed (attempt {attempt + 1}/{attempts}): {str(e) or type(e).__name__}; "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

    async def generate_content(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
    ) -> AIResult:
        """
        Send a prompt to the model.

        Args:
            prompt: The analysis request
            context: Optional data embedded in the prompt as JSON
            temperature: Overrides the configured temperature

        Returns:
            AIJsonResult, AITextResult or AIFailure
        """
        start_time = time.perf_counter()

        if not self.rate_limit.try_acquire():
            logger.warning("Gemini rate limit reached, request rejected")
            return AIFailure(error_code="RATE_LIMITED", error=format_error_message("rate limit exceeded"))

        full_prompt = format_prompt(prompt, context)

        try:
            text = await self._request_with_retry(full_prompt, temperature)
        except asyncio.TimeoutError:
            logger.error("Gemini request timed out after all retry attempts")
            return AIFailure(error_code="AI_TIMEOUT", error=format_error_message("timeout"))
        except (httpx.HTTPError, AIGatewayError) as e:
            logger.error(f"Gemini request failed: {str(e)}")
            return AIFailure(error_code="AI_ERROR", error=format_error_message(str(e)))

        prompt_tokens = estimate_tokens(full_prompt)
        completion_tokens = estimate_tokens(text)
        metadata = AIMetadata(
            model=self.model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )

        try:
            data = json.loads(text)
        except ValueError:
            return AITextResult(text=text, confidence=calculate_confidence(text, False), metadata=metadata)

        return AIJsonResult(data=data, confidence=calculate_confidence(text, True), metadata=metadata)

    async def health_check(self) -> Dict[str, Any]:
        result = await self.generate_content('Respond with the JSON object {"status": "ok"}', temperature=0)
        if isinstance(result, AIFailure):
            return {"status": "unhealthy", "model": self.model_name, "error": result.error}
        return {"status": "healthy", "model": self.model_name}

    def get_stats(self) -> Dict[str, Any]:
        return {
            "request_count": self.rate_limit.count,
            "rate_limit_per_minute": self.rate_limit.limit,
            "remaining_requests": self.rate_limit.remaining,
            "window_started_at": datetime.utcfromtimestamp(self.rate_limit.window_start),
            "is_rate_limited": self.rate_limit.is_limited,
        }
