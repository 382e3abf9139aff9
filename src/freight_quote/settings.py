from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, List, Optional
from urllib.parse import quote_plus, urlparse

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("freight-quote-api")


class Settings(BaseSettings):
    # Persistent cache/quota store; in-memory when unset.
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    rate_proxy_url: str = Field(default="http://localhost:8080/rates-proxy", alias="RATE_PROXY_URL")
    rate_proxy_token: Optional[str] = Field(default=None, alias="RATE_PROXY_TOKEN")
    rate_proxy_sandbox: bool = Field(default=False, alias="RATE_PROXY_SANDBOX")
    rate_timeout_s: float = Field(default=25.0, alias="RATE_TIMEOUT_S")
    provider_timeout_s: float = Field(default=30.0, alias="PROVIDER_TIMEOUT_S")
    enabled_endpoints: str = Field(default="/logistics-explorer", alias="ENABLED_ENDPOINTS")

    quota_monthly_limit: int = Field(default=50, alias="QUOTA_MONTHLY_LIMIT")
    quota_warning_threshold: int = Field(default=40, alias="QUOTA_WARNING_THRESHOLD")
    cache_ttl_s: int = Field(default=24 * 60 * 60, alias="CACHE_TTL_S")

    estimator_base_url: Optional[str] = Field(default=None, alias="ESTIMATOR_BASE_URL")
    estimator_api_key: Optional[str] = Field(default=None, alias="ESTIMATOR_API_KEY")
    estimator_model: str = Field(default="gpt-4o-mini", alias="ESTIMATOR_MODEL")
    estimator_timeout_s: float = Field(default=20.0, alias="ESTIMATOR_TIMEOUT_S")

    markup_fcl: float = Field(default=0.15, alias="MARKUP_FCL")
    markup_lcl: float = Field(default=0.20, alias="MARKUP_LCL")
    markup_air: float = Field(default=0.18, alias="MARKUP_AIR")
    markup_rail: float = Field(default=0.15, alias="MARKUP_RAIL")
    markup_road: float = Field(default=0.12, alias="MARKUP_ROAD")
    markup_parcel: float = Field(default=0.25, alias="MARKUP_PARCEL")

    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"env_file": ".env", "extra": "ignore", "populate_by_name": True}

    @property
    def endpoint_flags(self) -> List[str]:
        return [e.strip() for e in self.enabled_endpoints.split(",") if e.strip()]

    @property
    def markups(self) -> Dict[str, float]:
        return {
            "fcl": self.markup_fcl,
            "lcl": self.markup_lcl,
            "air": self.markup_air,
            "rail": self.markup_rail,
            "road": self.markup_road,
            "parcel": self.markup_parcel,
        }

    @property
    def sqlalchemy_url(self) -> Optional[str]:
        if not self.database_url:
            return None

        url = self.database_url
        parsed = urlparse(url)
        logger.info(
            "Cache store target → host=%s db=%s", parsed.hostname, parsed.path.lstrip("/")
        )

        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+psycopg://", 1)
        elif url.startswith("postgresql+psycopg2://"):
            url = url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

        # Passwords with special characters must be re-encoded.
        if parsed.password and parsed.scheme.startswith("postgres"):
            scheme = url.split("://", 1)[0]
            port = f":{parsed.port}" if parsed.port else ""
            query = f"?{parsed.query}" if parsed.query else ""
            url = (
                f"{scheme}://{parsed.username}:{quote_plus(parsed.password)}"
                f"@{parsed.hostname}{port}{parsed.path}{query}"
            )
        return url


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
