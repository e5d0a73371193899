import logging
import os
import sys
from decimal import Decimal
from typing import List, Optional

import structlog
from pydantic import BaseModel


class Settings(BaseModel):
    stripe_api_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_timeout: float = 10.0
    webhook_tolerance: int = 300
    admin_secret_key: Optional[str] = None
    site_url: str = "http://localhost:3000"
    currency: str = "usd"
    allowed_countries: List[str] = ["US", "CA", "GB", "AU", "IN"]
    free_shipping_threshold: Decimal = Decimal("50.00")
    flat_shipping_fee: Decimal = Decimal("5.99")


def get_settings() -> Settings:
    """Read settings from the environment. Called per request so it can be overridden."""
    return Settings(
        stripe_api_key=os.getenv("STRIPE_API_KEY") or os.getenv("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
        stripe_timeout=float(os.getenv("STRIPE_TIMEOUT", "10")),
        admin_secret_key=os.getenv("ADMIN_SECRET_KEY"),
        site_url=(os.getenv("SITE_URL") or os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/"),
    )


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if (fmt or os.getenv("LOG_FORMAT", "console")) == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
