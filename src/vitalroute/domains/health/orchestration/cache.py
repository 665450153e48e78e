"""Result cache for completed analyses.

Entries are keyed by a fingerprint of (request kind, coarse snapshot digest,
stable profile digest). A lookup hits only while the entry is unexpired and
its source data is similar enough to the request's. All reads and writes
are serialized through one ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from vitalroute.core.storage.database import DatabaseError
from vitalroute.core.storage.encryption import EncryptionError
from vitalroute.core.storage.kv_store import KeyValueStore
from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile
from vitalroute.domains.health.orchestration.models import AnalysisRequest, AnalysisResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "cache/"
DEFAULT_TTL = timedelta(hours=1)
DEFAULT_MAX_ENTRIES = 50
DEFAULT_SIMILARITY_THRESHOLD = 0.9


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Fingerprinting
# ---------------------------------------------------------------------------

def _canonical_hash(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def snapshot_digest(snapshot: HealthSnapshot) -> str:
    """Metric values rounded to one decimal, capture time bucketed to the hour."""
    metrics = {
        name: round(getattr(snapshot, name), 1) for name in snapshot.present_metrics()
    }
    hour_bucket = snapshot.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")
    return _canonical_hash({"metrics": metrics, "hour": hour_bucket})


def profile_digest(profile: UserProfile) -> str:
    return _canonical_hash({
        "age": profile.age,
        "gender": profile.gender,
        "exercise_frequency": profile.exercise_frequency,
        "goals": sorted(profile.goals),
        "chronic_conditions": sorted(profile.chronic_conditions),
    })


def fingerprint(request: AnalysisRequest) -> str:
    return _canonical_hash({
        "kind": request.kind.value,
        "language": request.language,
        "force_local": request.force_local,
        "snapshot": snapshot_digest(request.snapshot),
        "profile": profile_digest(request.profile),
    })


def data_similarity(cached_at: datetime, requested_at: datetime) -> float:
    delta = abs((requested_at - cached_at).total_seconds())
    if delta < 3600:
        return 0.95
    if delta < 86400:
        return 0.8
    return 0.5


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    fingerprint: str
    result: AnalysisResult
    created_at: datetime
    expires_at: datetime
    data_timestamp: datetime
    hit_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "result": self.result.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "data_timestamp": self.data_timestamp.isoformat(),
            "hit_count": self.hit_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            fingerprint=data["fingerprint"],
            result=AnalysisResult.from_dict(data["result"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            data_timestamp=datetime.fromisoformat(data["data_timestamp"]),
            hit_count=int(data.get("hit_count", 0)),
        )


class AnalysisResultCache:
    """Bounded TTL cache of analysis results with optional KV mirroring."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        store: KeyValueStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self.similarity_threshold = similarity_threshold
        self._store = store
        self._clock = clock or _utc_now
        self._lock = asyncio.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._loaded = store is None
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, request: AnalysisRequest) -> AnalysisResult | None:
        """Return the cached result flagged ``cache_hit``, or ``None`` on a miss."""
        key = fingerprint(request)
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                return None
            similarity = data_similarity(entry.data_timestamp, request.snapshot.timestamp)
            if similarity < self.similarity_threshold:
                self._misses += 1
                return None

            entry.hit_count += 1
            self._hits += 1
            self._persist(entry)
            logger.debug("Cache hit %s (hits=%d)", key[:12], entry.hit_count)
            return copy.deepcopy(entry.result).with_cache_hit()

    async def put(self, request: AnalysisRequest, result: AnalysisResult) -> None:
        """Insert or replace the entry for this request's fingerprint."""
        key = fingerprint(request)
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            entry = CacheEntry(
                fingerprint=key,
                result=copy.deepcopy(result),
                created_at=now,
                expires_at=now + self.ttl,
                data_timestamp=request.snapshot.timestamp,
            )
            self._entries[key] = entry
            self._persist(entry)
            self._enforce_capacity(now)

    async def size(self) -> int:
        async with self._lock:
            self._ensure_loaded()
            return len(self._entries)

    async def clear(self) -> None:
        async with self._lock:
            for key in list(self._entries):
                self._remove(key)

    async def stats(self) -> dict[str, int]:
        async with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _enforce_capacity(self, now: datetime) -> None:
        if len(self._entries) <= self.max_entries:
            return
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            self._remove(key)
            self._evictions += 1
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:overflow]
            for entry in oldest:
                self._remove(entry.fingerprint)
                self._evictions += 1
            logger.debug("Evicted %d cache entries over capacity", overflow)

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        if self._store is None:
            return
        try:
            self._store.delete(KEY_PREFIX + key)
        except DatabaseError as exc:
            logger.warning("Could not delete persisted cache entry: %s", exc)

    def _persist(self, entry: CacheEntry) -> None:
        if self._store is None:
            return
        try:
            payload = json.dumps(entry.to_dict(), sort_keys=True).encode("utf-8")
            self._store.set(KEY_PREFIX + entry.fingerprint, payload)
        except (DatabaseError, EncryptionError, TypeError, ValueError) as exc:
            logger.warning("Could not persist cache entry: %s", exc)

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            keys = self._store.keys(KEY_PREFIX)
        except DatabaseError as exc:
            logger.warning("Could not list persisted cache entries: %s", exc)
            return
        now = self._clock()
        for store_key in keys:
            try:
                raw = self._store.get(store_key)
                if raw is None:
                    continue
                entry = CacheEntry.from_dict(json.loads(raw))
            except (DatabaseError, EncryptionError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable cache entry %s: %s", store_key, exc)
                continue
            if entry.is_expired(now):
                self._remove(entry.fingerprint)
                continue
            self._entries[entry.fingerprint] = entry
        logger.info("Restored %d cached analyses", len(self._entries))
        self._enforce_capacity(now)
