"""Classified errors raised by the quote engine.

Recoverable errors (provider unavailable, timeout, quota exhausted, endpoint
disabled) make the resolver continue to the estimation fallback. Fatal errors
reach the caller, who decides whether to retry, show an error or ask for
manual input.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "QuoteEngineError",
    "ProviderError",
    "ProviderUnavailable",
    "ProviderTimeout",
    "QuotaExceeded",
    "ProviderNotFound",
    "MalformedResponse",
    "EstimationFailure",
    "UnknownPort",
]


class QuoteEngineError(Exception):
    code = "quote_engine_error"
    recoverable = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ProviderError(QuoteEngineError):
    """Failure classified by the provider gateway."""

    code = "provider_error"


class ProviderUnavailable(ProviderError):
    code = "provider_unavailable"
    recoverable = True


class ProviderTimeout(ProviderError):
    code = "provider_timeout"
    recoverable = True


class QuotaExceeded(ProviderError):
    code = "quota_exceeded"
    recoverable = True


class ProviderNotFound(ProviderError):
    code = "provider_not_found"
    recoverable = True


class MalformedResponse(ProviderError):
    code = "malformed_response"


class EstimationFailure(QuoteEngineError):
    code = "estimation_failure"


class UnknownPort(QuoteEngineError):
    """Carried (not raised) when a port falls back to the default fee profile."""

    code = "unknown_port"
    recoverable = True

    def __init__(self, port_code: str):
        super().__init__(f"port {port_code!r} is not in the fee table; default fees applied")
        self.port_code = port_code
