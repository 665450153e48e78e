"""Health data connectors: where snapshots and profiles come from."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile


@runtime_checkable
class HealthDataSource(Protocol):
    """Supplies the latest biometric snapshot.

    The snapshot may be stale; recency feeds data-quality scoring rather
    than being treated as an error.
    """

    async def get_snapshot(self) -> HealthSnapshot:
        ...

    @property
    def data_source(self) -> str:
        """Label for the active data source, e.g. 'mock'."""
        ...


@runtime_checkable
class UserProfileStore(Protocol):
    """Supplies the user's demographic and preference profile."""

    async def get_profile(self) -> UserProfile:
        ...
