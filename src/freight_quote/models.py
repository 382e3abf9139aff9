from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CachedResponse(Base):
    """A provider response kept for the cache TTL window."""

    __tablename__ = "cached_responses"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    endpoint: Mapped[str] = mapped_column(String(120))
    payload: Mapped[str] = mapped_column(Text)  # JSON document
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    call_count: Mapped[int] = mapped_column(Integer, default=1)


class QuotaUsage(Base):
    """Provider calls spent per calendar month, independent of cache lifetime."""

    __tablename__ = "quota_usage"

    period: Mapped[str] = mapped_column(String(7), primary_key=True)  # YYYY-MM
    calls: Mapped[int] = mapped_column(Integer, default=0)
    warned: Mapped[bool] = mapped_column(Boolean, default=False)
