from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse

# Upper bound on symbols per quote request; longer query strings get rejected upstream.
MAX_QUOTE_BATCH_SIZE = 40


def _load_dotenv(path: str = ".env") -> None:
    candidates = [Path(path)]
    resolved = Path(__file__).resolve()
    for parent in resolved.parents:
        candidates.append(parent / ".env")
    seen: set[Path] = set()
    for env_path in candidates:
        if env_path in seen or not env_path.exists():
            continue
        seen.add(env_path)
        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    except json.JSONDecodeError:
        pass
    return [token.strip() for token in raw.split(",") if token.strip()] or default


@dataclass
class Settings:
    app_name: str = "Ledgerline Market Engine"
    environment: str = "development"
    log_level: str = "INFO"

    frontend_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    quote_api_url: str = "https://query1.finance.yahoo.com/v7/finance/quote"
    quote_batch_size: int = 40
    quote_timeout_seconds: float = 10.0
    live_feed_enabled: bool = True

    # Fast UI cadence and the slower, rate-limited live cadence.
    fallback_tick_seconds: float = 6.0
    live_refresh_seconds: float = 60.0
    simulated_volatility: float = 0.03
    refresh_delay_seconds: float = 0.0

    market_engine_autostart: bool = True
    default_watchlist: List[str] = field(default_factory=lambda: ["AAPL", "MSFT", "NVDA"])

    poke_api_key: str = ""


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _validate_settings(settings: Settings) -> None:
    if settings.environment.lower() == "production":
        required = {
            "SUPABASE_URL": settings.supabase_url,
            "SUPABASE_SERVICE_KEY": settings.supabase_service_key or settings.supabase_key,
        }
        missing = [key for key, value in required.items() if not str(value or "").strip()]
        if missing:
            raise RuntimeError(f"Missing required production environment variables: {', '.join(sorted(missing))}")

    invalid_origins = [origin for origin in settings.frontend_origins if not _is_http_url(origin)]
    if invalid_origins:
        raise RuntimeError(f"Invalid FRONTEND_ORIGINS entries: {', '.join(invalid_origins)}")

    if not _is_http_url(settings.quote_api_url):
        raise RuntimeError(f"Invalid QUOTE_API_URL: {settings.quote_api_url}")
    if not 1 <= settings.quote_batch_size <= MAX_QUOTE_BATCH_SIZE:
        raise RuntimeError(f"QUOTE_BATCH_SIZE must be between 1 and {MAX_QUOTE_BATCH_SIZE}")
    if settings.fallback_tick_seconds <= 0 or settings.live_refresh_seconds < 0:
        raise RuntimeError("FALLBACK_TICK_SECONDS must be positive and LIVE_REFRESH_SECONDS non-negative")
    if not 0 < settings.simulated_volatility < 1:
        raise RuntimeError("SIMULATED_VOLATILITY must be between 0 and 1")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()
    settings = Settings(
        app_name=_env("APP_NAME", "Ledgerline Market Engine"),
        environment=_env("ENVIRONMENT", "development"),
        log_level=_env("LOG_LEVEL", "INFO"),
        frontend_origins=_env_list("FRONTEND_ORIGINS", ["http://localhost:5173", "http://localhost:3000"]),
        supabase_url=_env("SUPABASE_URL"),
        supabase_key=_env("SUPABASE_KEY"),
        supabase_service_key=_env("SUPABASE_SERVICE_KEY"),
        quote_api_url=_env("QUOTE_API_URL", "https://query1.finance.yahoo.com/v7/finance/quote"),
        quote_batch_size=_env_int("QUOTE_BATCH_SIZE", 40),
        quote_timeout_seconds=_env_float("QUOTE_TIMEOUT_SECONDS", 10.0),
        live_feed_enabled=_env_bool("LIVE_FEED_ENABLED", True),
        fallback_tick_seconds=_env_float("FALLBACK_TICK_SECONDS", 6.0),
        live_refresh_seconds=_env_float("LIVE_REFRESH_SECONDS", 60.0),
        simulated_volatility=_env_float("SIMULATED_VOLATILITY", 0.03),
        refresh_delay_seconds=_env_float("REFRESH_DELAY_SECONDS", 0.0),
        market_engine_autostart=_env_bool("MARKET_ENGINE_AUTOSTART", True),
        default_watchlist=_env_list("DEFAULT_WATCHLIST", ["AAPL", "MSFT", "NVDA"]),
        poke_api_key=_env("POKE_API_KEY"),
    )
    _validate_settings(settings)
    return settings
