# src/freight_quote/resolver.py
"""
Quote resolution: cache → live provider → generative estimate.

The resolver walks a one-way state machine per request:

    idle → cache_check → cache_hit ⇒ done
                       → cache_miss → live_call → live_success → normalize → cache ⇒ done
                                               → live_failure → classify_error
    classify_error → recoverable → fallback → fallback_success ⇒ done
                                            → fallback_failure → surface_error
                   → fatal → surface_error

The live provider is never retried within a request. Recoverable provider
errors are logged and swallowed; fatal ones are raised to the caller.
Successful quotes are enriched with a port-fee breakdown when the route has
port codes and the cargo names a container type; enrichment failures never
fail the quote.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .cache.governor import QuotaGovernor, QuotaStatus, ResponseCache
from .cache.stores import MemoryStore, SqlStore
from .clients.estimation_client import EstimationFallback, MarkupConfig
from .clients.provider_client import (
    LOGISTICS_EXPLORER,
    PARCEL_RATES,
    GatewayResult,
    ProviderGateway,
    endpoint_for,
)
from .db import build_engine
from .errors import EstimationFailure, MalformedResponse, ProviderError, ProviderUnavailable, QuoteEngineError
from .normalizer import QuoteNormalizer
from .rules.cost_breakdown import breakdown_for
from .rules.port_fees import extract_port_code
from .schemas import Provenance, Quote, QuoteRequest
from .settings import Settings

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    LIVE_CALL = "live_call"
    LIVE_SUCCESS = "live_success"
    NORMALIZE = "normalize"
    CACHE = "cache"
    LIVE_FAILURE = "live_failure"
    CLASSIFY_ERROR = "classify_error"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    FALLBACK = "fallback"
    FALLBACK_SUCCESS = "fallback_success"
    FALLBACK_FAILURE = "fallback_failure"
    DONE = "done"
    SURFACE_ERROR = "surface_error"


TRANSITIONS: Dict[State, FrozenSet[State]] = {
    State.IDLE: frozenset({State.CACHE_CHECK}),
    State.CACHE_CHECK: frozenset({State.CACHE_HIT, State.CACHE_MISS}),
    State.CACHE_HIT: frozenset({State.DONE}),
    State.CACHE_MISS: frozenset({State.LIVE_CALL}),
    State.LIVE_CALL: frozenset({State.LIVE_SUCCESS, State.LIVE_FAILURE}),
    State.LIVE_SUCCESS: frozenset({State.NORMALIZE}),
    State.NORMALIZE: frozenset({State.CACHE, State.CLASSIFY_ERROR}),
    State.CACHE: frozenset({State.DONE}),
    State.LIVE_FAILURE: frozenset({State.CLASSIFY_ERROR}),
    State.CLASSIFY_ERROR: frozenset({State.RECOVERABLE, State.FATAL}),
    State.RECOVERABLE: frozenset({State.FALLBACK}),
    State.FATAL: frozenset({State.SURFACE_ERROR}),
    State.FALLBACK: frozenset({State.FALLBACK_SUCCESS, State.FALLBACK_FAILURE}),
    State.FALLBACK_SUCCESS: frozenset({State.DONE}),
    State.FALLBACK_FAILURE: frozenset({State.SURFACE_ERROR}),
    State.DONE: frozenset(),
    State.SURFACE_ERROR: frozenset(),
}

TERMINAL_STATES = frozenset({State.DONE, State.SURFACE_ERROR})


@dataclass
class Resolution:
    request: QuoteRequest
    quotes: List[Quote] = field(default_factory=list)
    provenance: Optional[Provenance] = None
    quota: Optional[QuotaStatus] = None
    trail: List[State] = field(default_factory=lambda: [State.IDLE])
    swallowed: List[QuoteEngineError] = field(default_factory=list)
    error: Optional[QuoteEngineError] = None

    @property
    def state(self) -> State:
        return self.trail[-1]

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, nxt: State) -> None:
        if nxt not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal resolver transition {self.state.value} -> {nxt.value}")
        logger.debug("resolve %s→%s: %s -> %s", self.request.origin, self.request.destination,
                     self.state.value, nxt.value)
        self.trail.append(nxt)


class QuoteResolver:
    def __init__(
        self,
        gateway: Optional[ProviderGateway],
        estimator: EstimationFallback,
        *,
        normalizer: Optional[QuoteNormalizer] = None,
    ) -> None:
        self.gateway = gateway
        self.estimator = estimator
        self.normalizer = normalizer or QuoteNormalizer()
        if gateway is not None and gateway.validator is None:
            gateway.validator = self.normalizer.validate_payload

    @classmethod
    def from_settings(cls, cfg: Settings) -> "QuoteResolver":
        url = cfg.sqlalchemy_url
        store = SqlStore(build_engine(url)) if url else MemoryStore()
        governor = QuotaGovernor(
            store,
            monthly_limit=cfg.quota_monthly_limit,
            warning_threshold=cfg.quota_warning_threshold,
        )
        cache = ResponseCache(store, governor=governor, ttl_s=cfg.cache_ttl_s)
        normalizer = QuoteNormalizer()
        gateway = ProviderGateway(
            cache,
            base_url=cfg.rate_proxy_url,
            token=cfg.rate_proxy_token,
            use_sandbox=cfg.rate_proxy_sandbox,
            enabled_endpoints=cfg.endpoint_flags,
            timeouts_s={LOGISTICS_EXPLORER: cfg.rate_timeout_s, PARCEL_RATES: cfg.rate_timeout_s},
            default_timeout_s=cfg.provider_timeout_s,
            validator=normalizer.validate_payload,
        )
        estimator = EstimationFallback(
            MarkupConfig(**cfg.markups),
            model=cfg.estimator_model,
            timeout_s=cfg.estimator_timeout_s,
            base_url=cfg.estimator_base_url,
            api_key=cfg.estimator_api_key,
        )
        return cls(gateway, estimator, normalizer=normalizer)

    async def aclose(self) -> None:
        if self.gateway is not None:
            await self.gateway.aclose()

    async def resolve(self, request: QuoteRequest) -> List[Quote]:
        """Resolve a request into quotes; raises fatal ``QuoteEngineError``s."""
        res = await self.resolve_detailed(request)
        return res.quotes

    async def resolve_detailed(self, request: QuoteRequest) -> Resolution:
        res = Resolution(request=request)
        try:
            quotes = await self._run(res)
        except QuoteEngineError as e:
            res.error = e
            if State.SURFACE_ERROR in TRANSITIONS[res.state]:
                res.advance(State.SURFACE_ERROR)
            logger.error("Quote resolution failed (%s): %s", e.code, e.message)
            raise
        res.quotes = [self._enrich(q, request) for q in quotes]
        res.advance(State.DONE)
        return res

    async def _run(self, res: Resolution) -> List[Quote]:
        request = res.request
        endpoint = endpoint_for(request.service_type)
        params = request.provider_params()

        res.advance(State.CACHE_CHECK)
        hit = self.gateway.cached(endpoint, params) if self.gateway is not None else None
        if hit is not None:
            try:
                quotes = self._normalize(hit, request)
            except MalformedResponse:
                logger.warning("Discarding unreadable cache entry for %s", endpoint)
                self.gateway.cache.evict(endpoint, params)
            else:
                res.advance(State.CACHE_HIT)
                res.provenance = Provenance.CACHED
                return quotes

        res.advance(State.CACHE_MISS)
        res.advance(State.LIVE_CALL)
        try:
            if self.gateway is None:
                raise ProviderUnavailable("no live provider configured")
            live = await self.gateway.fetch(endpoint, params)
        except ProviderError as e:
            res.advance(State.LIVE_FAILURE)
            return await self._classify(res, e)

        res.advance(State.LIVE_SUCCESS)
        res.quota = live.quota
        res.advance(State.NORMALIZE)
        try:
            quotes = self._normalize(live, request)
        except ProviderError as e:
            return await self._classify(res, e)
        # Payload was validated and stored by the gateway before it returned.
        res.advance(State.CACHE)
        res.provenance = Provenance.LIVE
        return self._with_quota_notice(quotes, live.quota)

    async def _classify(self, res: Resolution, err: ProviderError) -> List[Quote]:
        res.advance(State.CLASSIFY_ERROR)
        if not err.recoverable:
            res.advance(State.FATAL)
            raise err
        res.advance(State.RECOVERABLE)
        res.swallowed.append(err)
        logger.warning("Live rates unavailable (%s: %s); falling back to estimate", err.code, err.message)
        return await self._fallback(res)

    async def _fallback(self, res: Resolution) -> List[Quote]:
        request = res.request
        res.advance(State.FALLBACK)
        try:
            estimate = await self.estimator.estimate_detail(
                request.service_type,
                request.origin,
                request.destination,
                request.cargo,
                request.currency,
            )
        except EstimationFailure:
            res.advance(State.FALLBACK_FAILURE)
            raise
        res.advance(State.FALLBACK_SUCCESS)
        res.provenance = Provenance.ESTIMATED
        return [self.normalizer.from_estimate(estimate, request)]

    def _normalize(self, result: GatewayResult, request: QuoteRequest) -> List[Quote]:
        return self.normalizer.normalize(result.payload, provenance=result.provenance, request=request)

    @staticmethod
    def _with_quota_notice(quotes: List[Quote], quota: Optional[QuotaStatus]) -> List[Quote]:
        if quota is None or not quota.running_low:
            return quotes
        notice = f"Provider quota running low: {quota.used}/{quota.limit} calls used this month"
        return [q.model_copy(update={"notices": [*q.notices, notice]}) for q in quotes]

    def _enrich(self, quote: Quote, request: QuoteRequest) -> Quote:
        container = request.cargo.primary_container()
        origin_code = extract_port_code(request.origin)
        dest_code = extract_port_code(request.destination)
        if container is None or not origin_code or not dest_code:
            return quote

        try:
            breakdown = breakdown_for(
                quote.total_cost,
                origin_code,
                dest_code,
                container.type,
                max(container.quantity, 1),
                request.arrival_date,
                request.pickup_date,
            )
        except Exception:
            logger.warning("Cost breakdown unavailable for %s→%s", origin_code, dest_code, exc_info=True)
            return quote.model_copy(
                update={"notices": [*quote.notices, "Cost breakdown unavailable"], "breakdown_available": False}
            )

        notices = list(quote.notices)
        if breakdown.estimated:
            notices.append("Port fees are estimated for ports not in our fee table")
        return quote.model_copy(
            update={"port_costs": breakdown, "breakdown_available": True, "notices": notices}
        )
