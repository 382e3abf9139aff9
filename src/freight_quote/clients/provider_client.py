# src/freight_quote/clients/provider_client.py
"""
Live rate provider gateway.

- Calls go through the trusted backend proxy, never to the provider directly,
  so API keys stay server-side. Wire format:
  ``{"endpoint", "params", "useSandbox"} -> {"success", "quotes", "error"?}``.
- Cache first: a fresh cached response is returned without spending quota.
- Each live call is bounded by a per-endpoint timeout; on expiry the transport
  coroutine is cancelled, not just ignored.
- Concurrent identical misses share one in-flight request.
- Failures are classified into the ``errors`` taxonomy.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import httpx

from ..cache.governor import QuotaStatus, ResponseCache, cache_key
from ..errors import (
    MalformedResponse,
    ProviderError,
    ProviderNotFound,
    ProviderTimeout,
    ProviderUnavailable,
    QuotaExceeded,
)
from ..schemas import Provenance, QuoteRequest, ServiceType

logger = logging.getLogger(__name__)

UA = "FreightQuote/0.3 (+rates-proxy)"

LOGISTICS_EXPLORER = "/logistics-explorer"
PARCEL_RATES = "/parcel-rates"
CONTAINER_TRACKING = "/container-tracking"
DEMURRAGE = "/demurrage"
DISTANCE = "/distance"
CARBON = "/carbon-emissions"
LOAD_CALCULATOR = "/load-calculator"
FREIGHT_INDEX = "/freight-index"

# Rate queries are user-facing and get a tighter bound than the 30s default.
ENDPOINT_TIMEOUTS_S: Dict[str, float] = {
    LOGISTICS_EXPLORER: 25.0,
    PARCEL_RATES: 25.0,
    CONTAINER_TRACKING: 15.0,
    LOAD_CALCULATOR: 15.0,
    DEMURRAGE: 10.0,
    DISTANCE: 10.0,
    CARBON: 10.0,
    FREIGHT_INDEX: 10.0,
}
DEFAULT_TIMEOUT_S = 30.0

Validator = Callable[[Mapping[str, Any]], None]


def endpoint_for(service_type: ServiceType) -> str:
    if service_type is ServiceType.PARCEL:
        return PARCEL_RATES
    return LOGISTICS_EXPLORER


@dataclass
class GatewayResult:
    payload: Dict[str, Any]
    provenance: Provenance
    quota: Optional[QuotaStatus] = None


@dataclass
class _InFlight:
    task: "asyncio.Task[Tuple[Dict[str, Any], QuotaStatus]]"
    waiters: int = 0


def _classify_message(message: str) -> ProviderError:
    txt = (message or "").lower()
    if "quota" in txt or "limit" in txt:
        return QuotaExceeded(message)
    if "not found" in txt or "not yet implemented" in txt or "disabled" in txt:
        return ProviderNotFound(message)
    return ProviderUnavailable(message or "provider reported failure")


class ProviderGateway:
    def __init__(
        self,
        cache: ResponseCache,
        *,
        base_url: str,
        token: Optional[str] = None,
        use_sandbox: bool = False,
        enabled_endpoints: Optional[Iterable[str]] = None,
        timeouts_s: Optional[Mapping[str, float]] = None,
        default_timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
        validator: Optional[Validator] = None,
    ) -> None:
        self.cache = cache
        self.base_url = base_url
        self.use_sandbox = use_sandbox
        self.enabled_endpoints = set(enabled_endpoints) if enabled_endpoints is not None else {LOGISTICS_EXPLORER}
        self.timeouts_s = dict(ENDPOINT_TIMEOUTS_S)
        if timeouts_s:
            self.timeouts_s.update(timeouts_s)
        self.default_timeout_s = default_timeout_s
        self.validator = validator

        headers = {"User-Agent": UA, "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._owns_client = client is None
        # The per-call bound is enforced by wait_for; the transport limit is a backstop.
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(default_timeout_s + 5.0))
        self._inflight: Dict[str, _InFlight] = {}

        logger.info(
            "Provider gateway initialized url=%s sandbox=%s endpoints=%s",
            self.base_url, self.use_sandbox, sorted(self.enabled_endpoints),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def timeout_for(self, endpoint: str) -> float:
        return self.timeouts_s.get(endpoint, self.default_timeout_s)

    def is_enabled(self, endpoint: str) -> bool:
        return endpoint in self.enabled_endpoints

    # ---------------- Public API ----------------

    async def call(
        self,
        endpoint: str,
        params: Mapping[str, Any],
        timeout_s: Optional[float] = None,
        *,
        bypass_cache: bool = False,
    ) -> GatewayResult:
        """Cache-first provider call. Raises a ``ProviderError`` subclass on failure."""
        if not bypass_cache:
            cached = self.cached(endpoint, params)
            if cached is not None:
                return cached
        return await self.fetch(endpoint, params, timeout_s)

    def cached(self, endpoint: str, params: Mapping[str, Any]) -> Optional[GatewayResult]:
        if not self.is_enabled(endpoint):
            return None
        entry = self.cache.get(endpoint, params)
        if entry is None:
            return None
        return GatewayResult(payload=entry.payload, provenance=Provenance.CACHED)

    async def fetch(
        self,
        endpoint: str,
        params: Mapping[str, Any],
        timeout_s: Optional[float] = None,
    ) -> GatewayResult:
        """Live call, bypassing the cache read but storing the result."""
        if not self.is_enabled(endpoint):
            raise ProviderNotFound(f"endpoint {endpoint} is not enabled")

        if self.cache.governor.exhausted:
            status = self.cache.governor.status()
            raise QuotaExceeded(
                f"monthly provider quota exhausted ({status.used}/{status.limit})",
                details=status.as_dict(),
            )

        timeout = timeout_s if timeout_s is not None else self.timeout_for(endpoint)
        key = cache_key(endpoint, params)
        inflight = self._inflight.get(key)
        if inflight is None:
            logger.info("[Provider] live call to %s - will count against monthly quota", endpoint)
            task = asyncio.ensure_future(self._fetch_and_store(endpoint, dict(params)))
            inflight = _InFlight(task=task)
            self._inflight[key] = inflight
            task.add_done_callback(lambda _t, k=key, f=inflight: self._forget(k, f))
        else:
            logger.debug("[Provider] joining in-flight call to %s", endpoint)

        inflight.waiters += 1
        try:
            payload, quota = await asyncio.wait_for(asyncio.shield(inflight.task), timeout)
        except asyncio.TimeoutError:
            raise ProviderTimeout(f"{endpoint} did not answer within {timeout:g}s") from None
        finally:
            inflight.waiters -= 1
            if inflight.waiters == 0 and not inflight.task.done():
                # Nobody is waiting any more; abort the transport call.
                inflight.task.cancel()

        return GatewayResult(payload=payload, provenance=Provenance.LIVE, quota=quota)

    async def logistics_rates(self, request: QuoteRequest, *, bypass_cache: bool = False) -> GatewayResult:
        endpoint = endpoint_for(request.service_type)
        return await self.call(endpoint, request.provider_params(), bypass_cache=bypass_cache)

    # ---------------- Internals ----------------

    def _forget(self, key: str, inflight: _InFlight) -> None:
        if self._inflight.get(key) is inflight:
            del self._inflight[key]
        if not inflight.task.cancelled():
            # Mark the exception retrieved; every waiter already saw it via shield.
            inflight.task.exception()

    async def _fetch_and_store(self, endpoint: str, params: Dict[str, Any]) -> Tuple[Dict[str, Any], QuotaStatus]:
        body = {"endpoint": endpoint, "params": params, "useSandbox": self.use_sandbox}
        try:
            resp = await self.client.post(self.base_url, json=body, headers=self._headers)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"transport timeout calling {endpoint}: {e}") from e
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"rate proxy unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"rate proxy call failed: {e}") from e
        except httpx.InvalidURL as e:
            raise ProviderUnavailable(f"rate proxy URL is invalid: {e}") from e

        if resp.status_code == 404:
            raise ProviderNotFound(f"{endpoint} not found on rate proxy")
        if resp.status_code == 429:
            raise QuotaExceeded(f"provider rejected {endpoint}: rate/quota limit")
        if resp.status_code >= 400:
            raise ProviderUnavailable(f"rate proxy returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse(f"{endpoint} returned a non-JSON body") from e

        if not isinstance(data, dict) or "success" not in data:
            raise MalformedResponse(f"{endpoint} response missing 'success'")

        if not data.get("success"):
            raise _classify_message(str(data.get("error") or data.get("message") or ""))

        quotes = data.get("quotes")
        if not isinstance(quotes, list):
            raise MalformedResponse(f"{endpoint} response missing 'quotes' list")
        if not quotes:
            raise ProviderUnavailable(f"no quotes available from {endpoint}")

        if self.validator is not None:
            self.validator(data)

        quota = self.cache.put(endpoint, params, data)
        return data, quota
