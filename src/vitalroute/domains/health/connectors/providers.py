"""Concrete data source and profile store implementations."""

from __future__ import annotations

from datetime import datetime, timezone

from vitalroute.domains.health.connectors.mock_data import (
    get_mock_profile_data,
    get_mock_snapshot_data,
)
from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile


class MockHealthDataSource:
    """Serves a realistic sample snapshot stamped with the current time."""

    def __init__(self, overrides: dict | None = None) -> None:
        self._overrides = dict(overrides or {})

    async def get_snapshot(self) -> HealthSnapshot:
        data = get_mock_snapshot_data()
        data.update(self._overrides)
        data.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        return HealthSnapshot.from_dict(data)

    @property
    def data_source(self) -> str:
        return "mock"


class StaticProfileStore:
    """Holds a single in-memory profile (the mock profile by default)."""

    def __init__(self, profile: UserProfile | None = None) -> None:
        self._profile = profile or UserProfile.from_dict(get_mock_profile_data())

    async def get_profile(self) -> UserProfile:
        return self._profile

    def update(self, profile: UserProfile) -> None:
        self._profile = profile
