# src/freight_quote/cache/stores.py
"""Backing stores for the response cache and the quota ledger.

``MemoryStore`` keeps everything in process (tests, single-worker dev).
``SqlStore`` persists to any SQLAlchemy database so quota accounting
survives restarts.
"""
from __future__ import annotations

import datetime
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from ..db import init_db, make_session_factory
from ..models import CachedResponse, QuotaUsage


@dataclass(frozen=True)
class StoredEntry:
    key: str
    endpoint: str
    payload_json: str
    created_at: datetime.datetime
    call_count: int = 1


class CacheStore(ABC):
    @abstractmethod
    def get_entry(self, key: str) -> Optional[StoredEntry]: ...

    @abstractmethod
    def put_entry(self, entry: StoredEntry) -> None: ...

    @abstractmethod
    def delete_entry(self, key: str) -> None: ...

    @abstractmethod
    def entries(self) -> Iterable[StoredEntry]: ...

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def quota(self, period: str) -> Tuple[int, bool]:
        """Return ``(calls, warned)`` for a month period."""

    @abstractmethod
    def increment_quota(self, period: str) -> int:
        """Add one call to ``period`` and return the new total."""

    @abstractmethod
    def mark_warned(self, period: str) -> bool:
        """Flag ``period`` as warned. Returns False if it already was."""


class MemoryStore(CacheStore):
    def __init__(self) -> None:
        self._entries: Dict[str, StoredEntry] = {}
        self._quota: Dict[str, List] = {}
        self._lock = threading.RLock()

    def get_entry(self, key: str) -> Optional[StoredEntry]:
        return self._entries.get(key)

    def put_entry(self, entry: StoredEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry

    def delete_entry(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def entries(self) -> Iterable[StoredEntry]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def quota(self, period: str) -> Tuple[int, bool]:
        calls, warned = self._quota.get(period, (0, False))
        return calls, warned

    def increment_quota(self, period: str) -> int:
        with self._lock:
            row = self._quota.setdefault(period, [0, False])
            row[0] += 1
            return row[0]

    def mark_warned(self, period: str) -> bool:
        with self._lock:
            row = self._quota.setdefault(period, [0, False])
            if row[1]:
                return False
            row[1] = True
            return True


def _aware(ts: datetime.datetime) -> datetime.datetime:
    # SQLite drops tzinfo on the way back out.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


class SqlStore(CacheStore):
    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self.engine = engine
        self.SessionLocal = make_session_factory(engine)
        if create_tables:
            init_db(engine)

    @staticmethod
    def _to_entry(row: CachedResponse) -> StoredEntry:
        return StoredEntry(
            key=row.key,
            endpoint=row.endpoint,
            payload_json=row.payload,
            created_at=_aware(row.created_at),
            call_count=row.call_count,
        )

    def get_entry(self, key: str) -> Optional[StoredEntry]:
        with self.SessionLocal() as db:
            row = db.get(CachedResponse, key)
            return self._to_entry(row) if row else None

    def put_entry(self, entry: StoredEntry) -> None:
        with self.SessionLocal.begin() as db:
            db.merge(
                CachedResponse(
                    key=entry.key,
                    endpoint=entry.endpoint,
                    payload=entry.payload_json,
                    created_at=entry.created_at,
                    call_count=entry.call_count,
                )
            )

    def delete_entry(self, key: str) -> None:
        with self.SessionLocal.begin() as db:
            db.execute(delete(CachedResponse).where(CachedResponse.key == key))

    def entries(self) -> Iterable[StoredEntry]:
        with self.SessionLocal() as db:
            rows = db.execute(select(CachedResponse)).scalars().all()
            return [self._to_entry(r) for r in rows]

    def clear(self) -> None:
        with self.SessionLocal.begin() as db:
            db.execute(delete(CachedResponse))

    def quota(self, period: str) -> Tuple[int, bool]:
        with self.SessionLocal() as db:
            row = db.get(QuotaUsage, period)
            if row is None:
                return 0, False
            return row.calls, bool(row.warned)

    def increment_quota(self, period: str) -> int:
        with self.SessionLocal.begin() as db:
            row = db.get(QuotaUsage, period, with_for_update=True)
            if row is None:
                row = QuotaUsage(period=period, calls=0, warned=False)
                db.add(row)
            row.calls = (row.calls or 0) + 1
            return row.calls

    def mark_warned(self, period: str) -> bool:
        with self.SessionLocal.begin() as db:
            row = db.get(QuotaUsage, period, with_for_update=True)
            if row is None:
                row = QuotaUsage(period=period, calls=0, warned=False)
                db.add(row)
            if row.warned:
                return False
            row.warned = True
            return True
