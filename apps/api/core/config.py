"""Centralized application configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance. The parse library itself
never reads the environment: ``parse_options()`` turns Settings into the
plain ParseOptions it expects.
"""

import json
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from packages.statement_ingest import config as ingest_config
from packages.statement_ingest.config import ParseOptions


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # CORS
    ALLOWED_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated allowed origins for CORS",
    )

    # Redis (Celery broker/backend)
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )

    # App
    APP_VERSION: str = Field(default="0.1.0", description="Application version")

    # Ingestion
    MAX_UPLOAD_BYTES: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted statement upload in bytes",
    )
    REPORTING_CURRENCY: str = Field(
        default="",
        description="Currency all amounts are reported in; empty = leave as-is",
    )
    CURRENCY_RATES: str = Field(
        default="",
        description='Static rates into REPORTING_CURRENCY as JSON, e.g. {"THB": "2.5"}',
    )
    DEFAULT_DAY_FIRST: bool = Field(
        default=True,
        description="Date order used when no value disambiguates day/month",
    )
    HEADER_SCAN_ROWS: int = Field(default=ingest_config.HEADER_SCAN_ROWS, ge=1)
    SNIFF_SAMPLE_ROWS: int = Field(default=ingest_config.SNIFF_SAMPLE_ROWS, ge=1)
    PARSE_WORKERS: int = Field(
        default=2,
        ge=1,
        description="Worker processes used for statement parsing",
    )

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def currency_rates(self) -> Dict[str, Decimal]:
        if not self.CURRENCY_RATES.strip():
            return {}
        raw = json.loads(self.CURRENCY_RATES)
        return {str(code).upper(): Decimal(str(rate)) for code, rate in raw.items()}

    def parse_options(
        self, sheet: Optional[str] = None, password: Optional[str] = None
    ) -> ParseOptions:
        """Build per-request ParseOptions from the configured defaults."""
        return ParseOptions(
            sheet=sheet,
            password=password,
            header_scan_rows=self.HEADER_SCAN_ROWS,
            sniff_sample_rows=self.SNIFF_SAMPLE_ROWS,
            default_day_first=self.DEFAULT_DAY_FIRST,
            reporting_currency=self.REPORTING_CURRENCY.strip().upper() or None,
            rates=self.currency_rates,
        )

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Factory for Settings, allows test override."""
    return Settings()


settings = get_settings()
