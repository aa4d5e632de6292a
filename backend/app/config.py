"""
Service configuration.

All settings are read once from the environment (after loading a local .env
file) and frozen into a Settings instance. Call get_settings() everywhere;
tests build their own Settings directly instead of touching os.environ.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from app.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

DECORATION_MODES = ("per_unit", "flat")


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration."""

    environment: str = "production"
    port: int = 3000
    version: str = "1.0.0"

    # Shopify Admin API
    shopify_shop_domain: str = "api-gnp"
    shopify_access_token: str = ""
    shopify_api_version: str = "2023-10"

    # Outbound email
    sendgrid_api_key: str = ""
    from_email: str = "noreply@em949.generandoideas.com"
    from_name: str = "GNP"

    remote_timeout_seconds: float = 5.0
    cache_reset_interval_seconds: float = 60 * 60
    max_processing_attempts: int = 3
    retry_window_seconds: float = 5 * 60
    decoration_total_mode: str = "per_unit"
    cors_origins: str = "*"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def email_delivery_enabled(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def shopify_base_url(self) -> str:
        return (
            f"https://{self.shopify_shop_domain}.myshopify.com"
            f"/admin/api/{self.shopify_api_version}"
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Raises ConfigurationError for malformed numeric values or an unknown
    DECORATION_TOTAL_MODE. A missing SENDGRID_API_KEY is allowed: emails are
    simulated instead of sent.
    """
    defaults = Settings()

    mode = os.getenv("DECORATION_TOTAL_MODE", defaults.decoration_total_mode).strip().lower()
    if mode not in DECORATION_MODES:
        raise ConfigurationError(
            f"DECORATION_TOTAL_MODE must be one of {DECORATION_MODES}, got {mode!r}"
        )

    settings = Settings(
        environment=os.getenv("ENVIRONMENT", defaults.environment),
        port=_env_number("PORT", defaults.port, int),
        version=os.getenv("APP_VERSION", defaults.version),
        shopify_shop_domain=os.getenv("SHOPIFY_SHOP_DOMAIN", defaults.shopify_shop_domain),
        shopify_access_token=os.getenv("SHOPIFY_ACCESS_TOKEN", ""),
        shopify_api_version=os.getenv("SHOPIFY_API_VERSION", defaults.shopify_api_version),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
        from_email=os.getenv("FROM_EMAIL", defaults.from_email),
        from_name=os.getenv("FROM_NAME", defaults.from_name),
        remote_timeout_seconds=_env_number(
            "REMOTE_TIMEOUT_SECONDS", defaults.remote_timeout_seconds, float
        ),
        cache_reset_interval_seconds=_env_number(
            "CACHE_RESET_INTERVAL_SECONDS", defaults.cache_reset_interval_seconds, float
        ),
        max_processing_attempts=_env_number(
            "MAX_PROCESSING_ATTEMPTS", defaults.max_processing_attempts, int
        ),
        retry_window_seconds=_env_number(
            "RETRY_WINDOW_SECONDS", defaults.retry_window_seconds, float
        ),
        decoration_total_mode=mode,
        cors_origins=os.getenv("CORS_ORIGINS", defaults.cors_origins),
    )

    logger.info(
        "Settings loaded: environment=%s shop=%s sendgrid=%s from=%s",
        settings.environment,
        settings.shopify_shop_domain,
        "configured" if settings.email_delivery_enabled else "not configured",
        settings.from_email,
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
