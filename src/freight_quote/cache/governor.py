# src/freight_quote/cache/governor.py
"""Response cache and monthly quota governor.

The live rate provider allows only a handful of calls per month, so every
successful response is kept for ``ttl_s`` (24h by default): the same route
queried again inside the window is served from the cache and costs nothing.
Each stored response counts one call against the month's quota; once usage
reaches the warning threshold a single warning is raised for that month.

Neither class ever raises on a store failure: a broken store degrades to a
cache miss and an unchanged quota reading.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .stores import CacheStore, MemoryStore, StoredEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_TTL_S = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(endpoint: str, params: Mapping[str, Any]) -> str:
    """Deterministic key over the endpoint and *all* request params."""
    raw = f"{endpoint}:{_canonical_json(params)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    endpoint: str
    payload_json: str
    created_at: datetime
    call_count: int

    @property
    def payload(self) -> Dict[str, Any]:
        return json.loads(self.payload_json)


@dataclass(frozen=True)
class QuotaStatus:
    period: str
    used: int
    limit: int
    warning_threshold: int
    warning: bool = False  # True only on the call that crossed the threshold

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def running_low(self) -> bool:
        return self.used >= self.warning_threshold

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def as_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "warning_threshold": self.warning_threshold,
            "warning": self.warning,
            "running_low": self.running_low,
            "exhausted": self.exhausted,
        }


class QuotaGovernor:
    """Durable per-month count of live provider calls."""

    def __init__(
        self,
        store: CacheStore,
        *,
        monthly_limit: int = 50,
        warning_threshold: int = 40,
        clock: Clock = _utcnow,
        on_warning: Optional[Callable[[QuotaStatus], None]] = None,
    ) -> None:
        if warning_threshold > monthly_limit:
            raise ValueError("warning_threshold cannot exceed monthly_limit")
        self.store = store
        self.monthly_limit = monthly_limit
        self.warning_threshold = warning_threshold
        self.clock = clock
        self.on_warning = on_warning

    def period(self) -> str:
        return self.clock().strftime("%Y-%m")

    def status(self) -> QuotaStatus:
        period = self.period()
        try:
            used, _ = self.store.quota(period)
        except Exception:
            logger.warning("Quota read failed for %s; reporting zero usage", period, exc_info=True)
            used = 0
        return QuotaStatus(period, used, self.monthly_limit, self.warning_threshold)

    @property
    def exhausted(self) -> bool:
        return self.status().exhausted

    def record_call(self) -> QuotaStatus:
        period = self.period()
        try:
            used = self.store.increment_quota(period)
        except Exception:
            logger.warning("Quota increment failed for %s", period, exc_info=True)
            return self.status()

        fired = False
        if used >= self.warning_threshold:
            try:
                fired = self.store.mark_warned(period)
            except Exception:
                logger.warning("Quota warning flag failed for %s", period, exc_info=True)

        status = QuotaStatus(period, used, self.monthly_limit, self.warning_threshold, warning=fired)
        if fired:
            logger.warning(
                "[Provider quota] %s/%s API calls used this month", used, self.monthly_limit
            )
            if self.on_warning is not None:
                try:
                    self.on_warning(status)
                except Exception:
                    logger.exception("Quota warning callback failed")
        return status


class ResponseCache:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        *,
        governor: Optional[QuotaGovernor] = None,
        ttl_s: int = DEFAULT_TTL_S,
        clock: Clock = _utcnow,
    ) -> None:
        self.store = store or MemoryStore()
        self.clock = clock
        self.governor = governor or QuotaGovernor(self.store, clock=clock)
        self.ttl_s = ttl_s

    def get(self, endpoint: str, params: Mapping[str, Any]) -> Optional[CacheEntry]:
        key = cache_key(endpoint, params)
        try:
            stored = self.store.get_entry(key)
        except Exception:
            logger.warning("Cache read failed for %s; treating as miss", endpoint, exc_info=True)
            return None
        if stored is None:
            return None

        age_s = (self.clock() - stored.created_at).total_seconds()
        if age_s > self.ttl_s:
            logger.debug("Cache entry for %s expired (%.0f s old)", endpoint, age_s)
            self._discard(key)
            return None

        logger.info("[Cache HIT] %s saved an API call; data age %d minutes", endpoint, int(age_s // 60))
        return CacheEntry(
            key=stored.key,
            endpoint=stored.endpoint,
            payload_json=stored.payload_json,
            created_at=stored.created_at,
            call_count=stored.call_count,
        )

    def put(self, endpoint: str, params: Mapping[str, Any], payload: Mapping[str, Any]) -> QuotaStatus:
        """Store a fresh provider payload and count the call it cost."""
        entry = StoredEntry(
            key=cache_key(endpoint, params),
            endpoint=endpoint,
            payload_json=_canonical_json(payload),
            created_at=self.clock(),
            call_count=1,
        )
        try:
            self.store.put_entry(entry)
        except Exception:
            logger.warning("Cache write failed for %s", endpoint, exc_info=True)
        return self.governor.record_call()

    def evict(self, endpoint: str, params: Mapping[str, Any]) -> None:
        self._discard(cache_key(endpoint, params))

    def _discard(self, key: str) -> None:
        try:
            self.store.delete_entry(key)
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    def clear(self) -> None:
        try:
            self.store.clear()
        except Exception:
            logger.warning("Cache clear failed", exc_info=True)
        else:
            logger.info("Cache cleared")

    def approximate_calls(self) -> int:
        """Legacy quota estimate: call markers summed over live entries.

        Undercounts once entries expire; ``QuotaGovernor`` is authoritative.
        """
        now = self.clock()
        try:
            entries = list(self.store.entries())
        except Exception:
            logger.warning("Cache scan failed", exc_info=True)
            return 0
        return sum(
            e.call_count for e in entries if (now - e.created_at).total_seconds() <= self.ttl_s
        )

    def stats(self) -> Dict[str, int]:
        now = self.clock()
        try:
            entries = list(self.store.entries())
        except Exception:
            logger.warning("Cache scan failed", exc_info=True)
            entries = []
        active = sum(1 for e in entries if (now - e.created_at).total_seconds() <= self.ttl_s)
        return {
            "total_entries": len(entries),
            "active_entries": active,
            "expired_entries": len(entries) - active,
        }
