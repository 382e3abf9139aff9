from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

os.environ.setdefault("DATABASE_URL", "")

from freight_quote.cache.governor import QuotaGovernor, ResponseCache
from freight_quote.cache.stores import MemoryStore
from freight_quote.clients.estimation_client import EstimationFallback, MarkupConfig
from freight_quote.clients.provider_client import ProviderGateway

PROXY_URL = "http://proxy.test/rates-proxy"


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def completion(content: Optional[str]) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_openai(content: Optional[str] = "2000", *, side_effect: Any = None) -> SimpleNamespace:
    create = AsyncMock(return_value=completion(content), side_effect=side_effect)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def ok_payload(*quotes: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": True,
        "quotes": list(quotes)
        or [
            {
                "carrier": "Maersk",
                "total_rate": 2000,
                "transit_time": "25-30 days",
                "breakdown": {"ocean_freight": 1800, "baf": 200},
            }
        ],
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    store = MemoryStore()
    governor = QuotaGovernor(store, monthly_limit=50, warning_threshold=40, clock=clock)
    return ResponseCache(store, governor=governor, clock=clock)


class RecordingHandler:
    """httpx.MockTransport handler that counts calls and replays a script."""

    def __init__(self, respond: Callable[[httpx.Request], Any]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.respond(request)
        if hasattr(result, "__await__"):
            result = await result
        return result

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def make_gateway(cache: ResponseCache):
    def _make(respond: Callable[[httpx.Request], Any], **kwargs: Any):
        handler = RecordingHandler(respond)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = ProviderGateway(cache, base_url=PROXY_URL, client=client, **kwargs)
        return gateway, handler

    return _make


@pytest.fixture
def make_estimator():
    def _make(content: Optional[str] = "2000", *, side_effect: Any = None, **kwargs: Any):
        client = fake_openai(content, side_effect=side_effect)
        return EstimationFallback(MarkupConfig(), client=client, **kwargs), client

    return _make
