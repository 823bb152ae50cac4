"""
Application configuration.

Settings are read once from the environment (a `.env` file in the project root
is loaded first) and passed explicitly to whatever needs them. Nothing in the
codebase reads `os.environ` directly except `Settings.from_env()`.

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)

Optional:
- STRIPE_SECRET_KEY, WAVE_API_KEY: a gateway without a key is not enabled
- WAVE_API_URL, FRONTEND_URL, QR_SECRET_KEY, EXCHANGE_RATE_API_URL
- RATE_CACHE_TTL_SECONDS, GATEWAY_TIMEOUT_SECONDS, DEFAULT_CURRENCY, LOG_LEVEL
- CORS_ORIGINS: extra comma-separated browser origins besides FRONTEND_URL
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).parent / ".env"

_DEFAULT_FRONTEND_URL = "http://localhost:3000"

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: str
    supabase_key: str
    stripe_secret_key: Optional[str] = None
    wave_api_key: Optional[str] = None
    wave_api_url: str = "https://api.wave.com/v1"
    frontend_url: str = _DEFAULT_FRONTEND_URL
    qr_secret_key: str = "change-me"
    exchange_rate_api_url: str = "https://open.er-api.com/v6/latest"
    rate_cache_ttl_seconds: int = 3600
    gateway_timeout_seconds: float = 10.0
    default_currency: str = "GMD"
    log_level: str = "INFO"

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build Settings from the process environment.

        Raises:
            RuntimeError: if a required variable is missing
        """

        if environ is None:
            load_dotenv(dotenv_path=_ENV_PATH)
            environ = os.environ

        supabase_url = environ.get("SUPABASE_URL")
        supabase_key = environ.get("SUPABASE_KEY")

        if not supabase_url:
            raise RuntimeError(
                "Missing environment variable: SUPABASE_URL. "
                "Set SUPABASE_URL to your Supabase project URL."
            )
        if not supabase_key:
            raise RuntimeError(
                "Missing environment variable: SUPABASE_KEY. "
                "Set SUPABASE_KEY to your Supabase API key."
            )

        defaults = Settings(supabase_url=supabase_url, supabase_key=supabase_key)
        return Settings(
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            stripe_secret_key=environ.get("STRIPE_SECRET_KEY") or None,
            wave_api_key=environ.get("WAVE_API_KEY") or None,
            wave_api_url=environ.get("WAVE_API_URL", defaults.wave_api_url).rstrip("/"),
            frontend_url=environ.get("FRONTEND_URL", defaults.frontend_url).rstrip("/"),
            qr_secret_key=environ.get("QR_SECRET_KEY", defaults.qr_secret_key),
            exchange_rate_api_url=environ.get("EXCHANGE_RATE_API_URL", defaults.exchange_rate_api_url).rstrip("/"),
            rate_cache_ttl_seconds=int(environ.get("RATE_CACHE_TTL_SECONDS", defaults.rate_cache_ttl_seconds)),
            gateway_timeout_seconds=float(environ.get("GATEWAY_TIMEOUT_SECONDS", defaults.gateway_timeout_seconds)),
            default_currency=environ.get("DEFAULT_CURRENCY", defaults.default_currency).upper(),
            log_level=environ.get("LOG_LEVEL", defaults.log_level).upper(),
        )


def cors_origins(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """
    Browser origins allowed to call the API: FRONTEND_URL plus CORS_ORIGINS.

    Read on its own so the app can be built without database credentials.
    """

    if environ is None:
        load_dotenv(dotenv_path=_ENV_PATH)
        environ = os.environ

    origins = [environ.get("FRONTEND_URL", _DEFAULT_FRONTEND_URL).rstrip("/")]
    for origin in environ.get("CORS_ORIGINS", "").split(","):
        origin = origin.strip().rstrip("/")
        if origin and origin not in origins:
            origins.append(origin)
    return origins


def configure_logging(level: str = "INFO") -> None:
    """Install a single timestamped stream handler on the root logger."""

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)


__all__ = ["Settings", "configure_logging", "cors_origins"]
