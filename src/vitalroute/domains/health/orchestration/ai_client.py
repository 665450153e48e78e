"""Client for the remote AI analysis service.

The client owns the retry policy (per-attempt timeout, exponential backoff,
no retry on 4xx client errors) and payload validation. The wire is
abstracted behind :class:`AIServiceTransport` so the same client can talk to
an HTTP analysis backend or drive an LLM provider directly.

Usage::

    transport = HttpAITransport("https://analysis.example.com/api")
    client = RemoteAIClient(transport)
    insights = await client.analyze(snapshot, profile, goals, language="en")
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx

from vitalroute.core.llm.provider import LLMProvider
from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile
from vitalroute.domains.health.orchestration.errors import (
    AIClientError,
    AIDecodeError,
    AINetworkError,
    AIServerError,
    AIServiceError,
    AITimeoutError,
)
from vitalroute.domains.health.orchestration.models import AIInsights

logger = logging.getLogger(__name__)

ANALYZE_ENDPOINT = "analyze"
QUICK_ANALYZE_ENDPOINT = "quick-analyze"


@runtime_checkable
class AIServiceTransport(Protocol):
    """Wire-level access to the analysis service."""

    async def post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]: ...


# ------------------------------------------------------------------
# Transports
# ------------------------------------------------------------------

class HttpAITransport:
    """JSON-over-HTTP transport using httpx."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/{endpoint}"
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            raise AITimeoutError(f"Request to {endpoint} timed out") from exc
        except httpx.HTTPError as exc:
            raise AINetworkError(f"Request to {endpoint} failed: {exc}") from exc
        except (TypeError, ValueError) as exc:
            # Payload could not be encoded as strict JSON (e.g. NaN readings).
            raise AIDecodeError(f"Could not encode request to {endpoint}: {exc}") from exc

        status = response.status_code
        if 400 <= status < 500:
            retry_after = _retry_after(response.headers.get("Retry-After"))
            raise AIClientError(
                f"Client error {status} from {endpoint}: {response.text[:200]}",
                status_code=status,
                retry_delay=retry_after,
            )
        if status >= 500:
            raise AIServerError(f"Server error {status} from {endpoint}", status_code=status)

        try:
            data = response.json()
        except ValueError as exc:
            raise AIDecodeError(f"Invalid JSON from {endpoint}: {exc}") from exc
        if isinstance(data, dict) and "data" in data and isinstance(data["data"], dict):
            # {"success": true, "data": {...}} envelope
            return data["data"]
        if not isinstance(data, dict):
            raise AIDecodeError(f"Expected JSON object from {endpoint}, got {type(data).__name__}")
        return data


_SYSTEM_PROMPT = """\
You are a careful health analysis assistant. You receive a JSON object with a
user's recent biometric snapshot, profile, analysis goals, and language.
Respond with ONE JSON object and nothing else, using exactly these keys:
  "summary": string, two or three sentences,
  "insights": list of short strings,
  "recommendations": list of objects with "category", "title", "steps",
  "confidence": number between 0 and 1.
Write all text in the requested language. Do not diagnose conditions.
"""

_QUICK_SYSTEM_PROMPT = _SYSTEM_PROMPT + "Keep the summary to one sentence and at most three insights.\n"


class LLMAITransport:
    """Transport that asks an LLM provider for the analysis JSON directly."""

    def __init__(self, provider: LLMProvider, max_tokens: int = 1500) -> None:
        self._provider = provider
        self._max_tokens = max_tokens

    async def post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        system = _QUICK_SYSTEM_PROMPT if endpoint == QUICK_ANALYZE_ENDPOINT else _SYSTEM_PROMPT
        try:
            response = await self._provider.generate(
                system_message=system,
                user_message=json.dumps(payload, sort_keys=True),
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            raise _classify_provider_error(exc) from exc

        logger.info(
            "AI analysis call: endpoint=%s, model=%s, tokens=%d+%d, latency=%.0fms",
            endpoint,
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )
        data = _parse_json_object(response.content, endpoint)
        data.setdefault("tokens_used", response.total_tokens)
        return data


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------

class RemoteAIClient:
    """Retrying, validating client over an :class:`AIServiceTransport`."""

    def __init__(
        self,
        transport: AIServiceTransport,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._sleep = sleep

    # ---- Public API ----

    async def analyze(
        self,
        snapshot: HealthSnapshot,
        profile: UserProfile,
        goals: list[str],
        language: str = "en",
    ) -> AIInsights:
        payload = {
            "health_data": snapshot.to_dict(),
            "user_profile": profile.to_dict(),
            "goals": goals,
            "language": language,
        }
        data = await self._post_with_retry(ANALYZE_ENDPOINT, payload)
        return _validate_insights(data, ANALYZE_ENDPOINT)

    async def quick_analyze(
        self,
        snapshot: HealthSnapshot,
        profile: UserProfile,
        language: str = "en",
    ) -> AIInsights:
        payload = {
            "health_data": snapshot.to_dict(),
            "user_profile": profile.to_dict(),
            "analysis_type": "quick",
            "language": language,
        }
        data = await self._post_with_retry(QUICK_ANALYZE_ENDPOINT, payload)
        return _validate_insights(data, QUICK_ANALYZE_ENDPOINT)

    # ---- Internal helpers ----

    async def _post_with_retry(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        last_error: AIServiceError | None = None
        for attempt in range(self.max_attempts):
            try:
                return await asyncio.wait_for(
                    self._transport.post(endpoint, payload), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                last_error = AITimeoutError(
                    f"{endpoint} did not answer within {self.timeout:.0f}s"
                )
            except AIServiceError as exc:
                last_error = exc

            if not last_error.is_retriable or attempt == self.max_attempts - 1:
                break
            delay = self.backoff_base * (2 ** attempt) + random.uniform(0, self.backoff_base)
            if isinstance(last_error, AIClientError):
                delay = max(delay, last_error.retry_delay)
            logger.warning(
                "AI call to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                endpoint,
                attempt + 1,
                self.max_attempts,
                last_error,
                delay,
            )
            await self._sleep(delay)

        assert last_error is not None
        logger.error("AI call to %s gave up: %s", endpoint, last_error)
        raise last_error


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _classify_provider_error(exc: Exception) -> AIServiceError:
    """Map an LLM SDK exception onto the service error taxonomy."""
    if isinstance(exc, AIServiceError):
        return exc
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and 400 <= status < 500:
        return AIClientError(f"Provider rejected request: {exc}", status_code=status)
    if isinstance(status, int) and status >= 500:
        return AIServerError(f"Provider error: {exc}", status_code=status)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return AITimeoutError(f"Provider timed out: {exc}")
    return AINetworkError(f"Provider call failed: {exc}")


def _parse_json_object(content: str, endpoint: str) -> dict[str, Any]:
    text = content.strip()
    if text.startswith("```"):
        # Strip a markdown code fence if the model added one.
        text = text.split("\n", 1)[-1]
        text = text.rsplit("```", 1)[0]
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise AIDecodeError(f"Invalid JSON from {endpoint}: {exc}") from exc
    if not isinstance(data, dict):
        raise AIDecodeError(f"Expected JSON object from {endpoint}, got {type(data).__name__}")
    return data


def _validate_insights(data: dict[str, Any], endpoint: str) -> AIInsights:
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise AIDecodeError(f"Missing 'summary' in response from {endpoint}")
    insights = data.get("insights", [])
    recommendations = data.get("recommendations", [])
    if not isinstance(insights, list) or not isinstance(recommendations, list):
        raise AIDecodeError(f"Malformed insights/recommendations in response from {endpoint}")
    try:
        confidence = float(data.get("confidence", 0.0))
        tokens = int(data.get("tokens_used", 0))
    except (TypeError, ValueError) as exc:
        raise AIDecodeError(f"Malformed numeric field from {endpoint}: {exc}") from exc
    return AIInsights(
        summary=summary.strip(),
        insights=[str(i) for i in insights],
        recommendations=[r for r in recommendations if isinstance(r, dict)],
        confidence=max(0.0, min(1.0, confidence)),
        tokens_used=tokens,
        raw=data,
    )
