import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth (Supabase-issued HS256 access tokens)
    JWT_SECRET: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = "authenticated"
    ALLOW_USER_ID_HEADER: bool = True  # forced off in production

    # Service-to-service key used by the ebook pipeline callback
    SERVICE_API_KEY: Optional[str] = None

    # Entitlements
    FREE_CREATION_LIMIT: int = 3
    CREDIT_EXPIRY_DAYS: int = 365

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Product availability
    EBOOK_ENABLED: bool = True
    SOFTCOVER_ENABLED: bool = True
    HARDCOVER_ENABLED: bool = True

    # Lulu print API
    LULU_API_KEY: Optional[str] = None
    LULU_API_SECRET: Optional[str] = None
    LULU_SANDBOX: bool = True
    LULU_TIMEOUT_SECONDS: float = 15.0
    BOOK_PAGE_COUNT: int = 32

    # Object storage signing
    STORAGE_BASE_URL: str = "http://localhost:54321/storage/v1/object/sign"
    STORAGE_SIGNING_KEY: Optional[str] = None
    SIGNED_URL_TTL_SECONDS: int = 3600
    EBOOK_DOWNLOAD_TTL_SECONDS: int = 7 * 24 * 3600

    # Fulfillment polling (client side)
    FULFILLMENT_POLL_INTERVAL_SECONDS: float = 3.0
    FULFILLMENT_MAX_POLLS: int = 40

    # App URLs
    BACKEND_URL: str = "http://localhost:8000"
    SITE_URL: str = "http://localhost:5173"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def is_production(cfg: Optional[Settings] = None) -> bool:
    return (cfg or settings).ENV.lower() == "production"


def lulu_base_url(cfg: Optional[Settings] = None) -> str:
    cfg = cfg or settings
    return "https://api.sandbox.lulu.com" if cfg.LULU_SANDBOX else "https://api.lulu.com"


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("drawbook")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "LULU_API_KEY",
        "LULU_API_SECRET",
        "STORAGE_SIGNING_KEY",
        "SERVICE_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
