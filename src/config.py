from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

TIMEZONE = "Asia/Seoul"

DEFAULT_TRUSTED_SOURCES: frozenset[str] = frozenset({
    "data_go_kr",
    "localdata",
    "kopis",
    "tour_api",
    "seoul_gov",
})


def _env_str(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_set(name: str, default: frozenset[str]) -> frozenset[str]:
    raw = _env_str(name)
    if raw is None:
        return default
    return frozenset(s.strip() for s in raw.split(",") if s.strip())


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration, built once at startup and passed down.

    Business logic never reads the environment directly; adapters, the
    ingestion coordinator and the batch jobs receive this object.
    """
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    tour_api_key: Optional[str] = None
    kopis_api_key: Optional[str] = None
    seoul_api_key: Optional[str] = None
    naver_client_id: Optional[str] = None
    naver_client_secret: Optional[str] = None
    kakao_rest_key: Optional[str] = None

    timezone: str = TIMEZONE
    http_timeout_s: float = 10.0
    fetch_retries: int = 3
    collect_max_workers: int = 1

    trusted_sources: frozenset[str] = field(default_factory=lambda: DEFAULT_TRUSTED_SOURCES)
    places_per_district_top_n: int = 20
    default_ttl_days: int = 180

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=_env_str("SUPABASE_URL") or _env_str("NEXT_PUBLIC_SUPABASE_URL"),
            supabase_key=_env_str("SUPABASE_SERVICE_ROLE_KEY"),
            tour_api_key=_env_str("TOUR_API_KEY"),
            kopis_api_key=_env_str("KOPIS_API_KEY"),
            seoul_api_key=_env_str("SEOUL_API_KEY"),
            naver_client_id=_env_str("NAVER_CLIENT_ID"),
            naver_client_secret=_env_str("NAVER_CLIENT_SECRET"),
            kakao_rest_key=_env_str("KAKAO_REST_KEY"),
            timezone=_env_str("TIMEZONE") or TIMEZONE,
            http_timeout_s=_env_float("HTTP_TIMEOUT_S", 10.0),
            fetch_retries=max(1, _env_int("FETCH_RETRIES", 3)),
            collect_max_workers=max(1, _env_int("COLLECT_MAX_WORKERS", 1)),
            trusted_sources=_env_set("TRUSTED_SOURCES", DEFAULT_TRUSTED_SOURCES),
            places_per_district_top_n=max(1, _env_int("PLACES_PER_DISTRICT_TOP_N", 20)),
            default_ttl_days=max(1, _env_int("DEFAULT_TTL_DAYS", 180)),
        )

    def require_supabase(self) -> tuple[str, str]:
        """Fail fast if the Supabase credentials are missing."""
        missing = []
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Copy .env.example to .env and fill in your Supabase credentials."
            )
        return self.supabase_url, self.supabase_key  # type: ignore[return-value]
