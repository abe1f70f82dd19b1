"""Environment-driven configuration for the census analyzer."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from fields import DEFAULT_THRESHOLD

load_dotenv()


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name, default) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Settings:
    census_api_key: str | None = None
    census_year: int = 2023
    census_dataset: str = "acs/acs1"
    region_scope: str = "state:*"
    threshold: float = DEFAULT_THRESHOLD
    cache_ttl_seconds: float = 3600.0
    narrative_enabled: bool = True
    narrative_model: str = "gpt-4o-mini"
    http_timeout_seconds: float = 30.0
    http_retries: int = 3
    allowed_origins: tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _env_str("ALLOWED_ORIGINS", ",".join(cls.allowed_origins))
        return cls(
            census_api_key=_env_str("CENSUS_API_KEY", "") or None,
            census_year=_env_int("CENSUS_YEAR", cls.census_year),
            census_dataset=_env_str("CENSUS_DATASET", cls.census_dataset),
            region_scope=_env_str("CENSUS_REGION_SCOPE", cls.region_scope),
            threshold=_env_float("CUMULATIVE_THRESHOLD", cls.threshold),
            cache_ttl_seconds=_env_float("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            narrative_enabled=_env_bool("NARRATIVE_ENABLED", cls.narrative_enabled),
            narrative_model=_env_str("NARRATIVE_MODEL", cls.narrative_model),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds),
            http_retries=max(1, _env_int("HTTP_RETRIES", cls.http_retries)),
            allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            port=_env_int("PORT", cls.port),
        )
