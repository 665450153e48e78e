"""Shared test fixtures for VitalRoute tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("AI_BACKEND", "llm")
    monkeypatch.setenv("AI_BACKOFF_BASE_SECONDS", "0")
    monkeypatch.setenv("OFFLINE_MODE", "false")
    monkeypatch.setenv("RATE_LIMIT_PERSIST", "false")
    monkeypatch.setenv("CACHE_PERSIST", "false")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("QUOTA_POLICY_PATH", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from vitalroute.domains.health.domain_logic.health_models import (  # noqa: E402
    HealthSnapshot,
    UserProfile,
)
from vitalroute.domains.health.orchestration.errors import AIServiceError  # noqa: E402

# Wednesday afternoon, mid-month: no window boundary is close.
FIXED_NOW = datetime(2026, 10, 14, 14, 30, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_snapshot(**overrides: Any) -> HealthSnapshot:
    """A complete, unremarkable snapshot captured at FIXED_NOW."""
    data: dict[str, Any] = {
        "resting_heart_rate": 62,
        "hrv": 40,
        "systolic": 115,
        "diastolic": 75,
        "sleep_hours": 7.5,
        "sleep_efficiency": 0.9,
        "deep_sleep_pct": 18,
        "rem_sleep_pct": 22,
        "steps": 10500,
        "exercise_minutes": 30,
        "active_calories": 500,
        "weight_kg": 72,
        "height_cm": 178,
        "body_fat_pct": 18,
        "water_liters": 2.0,
        "sodium_mg": 1800,
        "timestamp": FIXED_NOW.isoformat(),
    }
    data.update(overrides)
    return HealthSnapshot.from_dict({k: v for k, v in data.items() if v is not None})


def make_profile(**overrides: Any) -> UserProfile:
    data: dict[str, Any] = {
        "age": 40,
        "gender": "male",
        "weight_kg": 72,
        "height_cm": 178,
        "goals": ["stay_fit"],
        "exercise_frequency": "3x_week",
        "exercise_habits": ["running"],
        "dietary_preferences": ["omnivore"],
    }
    data.update(overrides)
    return UserProfile.from_dict(data)


_DEFAULT_AI_PAYLOAD: dict[str, Any] = {
    "summary": "Your markers look steady this week.",
    "insights": ["Resting heart rate is stable.", "Sleep is consistent."],
    "recommendations": [{"category": "sleep", "title": "Keep your bedtime", "steps": []}],
    "confidence": 0.9,
    "tokens_used": 1200,
}


class ScriptedTransport:
    """AIServiceTransport double that replays scripted outcomes.

    Each entry of ``script`` is either a response dict or an exception to
    raise. Once the script is exhausted, ``default`` is returned.
    """

    def __init__(
        self,
        script: list[dict[str, Any] | Exception] | None = None,
        default: dict[str, Any] | None = None,
    ) -> None:
        self.script = list(script or [])
        self.default = dict(default if default is not None else _DEFAULT_AI_PAYLOAD)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((endpoint, payload))
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return dict(self.default)


class FailingTransport(ScriptedTransport):
    """Always raises the given AI service error."""

    def __init__(self, error: AIServiceError) -> None:
        super().__init__()
        self.error = error

    async def post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((endpoint, payload))
        raise self.error


async def instant_sleep(_delay: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quota_policy():
    from vitalroute.domains.health.orchestration.cost import load_quota_policy

    return load_quota_policy()


@pytest.fixture
def rate_limiter(quota_policy, clock):
    from vitalroute.domains.health.orchestration.rate_limiter import AIRequestRateLimiter

    return AIRequestRateLimiter(quota_policy, clock=clock)


@pytest.fixture
def result_cache(clock):
    from vitalroute.domains.health.orchestration.cache import AnalysisResultCache

    return AnalysisResultCache(clock=clock)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def ai_client(transport):
    from vitalroute.domains.health.orchestration.ai_client import RemoteAIClient

    return RemoteAIClient(transport, timeout=5.0, max_attempts=3, sleep=instant_sleep)


@pytest.fixture
def make_orchestrator(rate_limiter, result_cache):
    """Factory for orchestrators sharing the fixture limiter and cache."""
    from vitalroute.domains.health.domain_logic.local_analyzer import LocalHealthAnalyzer
    from vitalroute.domains.health.orchestration.decision_engine import DecisionEngine
    from vitalroute.domains.health.orchestration.orchestrator import HealthAnalysisOrchestrator

    def _make(ai_client=None, **kwargs):
        return HealthAnalysisOrchestrator(
            decision_engine=DecisionEngine(),
            rate_limiter=kwargs.pop("rate_limiter", rate_limiter),
            cache=kwargs.pop("cache", result_cache),
            local_analyzer=LocalHealthAnalyzer(),
            ai_client=ai_client,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def state_db():
    """Create an in-memory StateDatabase for testing."""
    from vitalroute.core.storage.database import StateDatabase

    db = StateDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def value_encryptor():
    """Create a ValueEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from vitalroute.core.storage.encryption import ValueEncryptor

    return ValueEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def sqlite_store(state_db):
    from vitalroute.core.storage.kv_store import SQLiteKeyValueStore

    return SQLiteKeyValueStore(state_db)
