"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_BASE_PATH = Path(os.environ.get(
    "RECON_ENGINE_BASE_PATH",
    os.environ.get("APP_BASE_PATH", Path.cwd())
))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


# Detection and matching thresholds. Amounts are in cents.
MATCH_TOLERANCE_CENTS = 100            # |bill - payment| < 1 currency unit
HIGH_SEVERITY_AMOUNT_CENTS = 1_000_000  # payments above 10,000 are high severity
DISCREPANCY_THRESHOLD_CENTS = 100      # |discrepancy| > 1 currency unit
DATE_GAP_DAYS = 30
DATE_GAP_HIGH_SEVERITY_DAYS = 60
AUTO_MATCH_THRESHOLD = 0.95
FORECAST_DUE_WINDOW_DAYS = 3
MISSING_DATA_IMPACT = -1000
SETTLED_TOLERANCE_CENTS = 1            # |paid - total| < 0.01


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Candidate scoring
    scorer_backend: str = Field(default="rules")  # "rules" or "ai_gateway"
    ai_gateway_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1/chat/completions"
    )
    ai_gateway_api_key: Optional[str] = Field(default=None)
    ai_gateway_model: str = Field(default="google/gemini-2.5-flash")
    scorer_timeout_seconds: float = Field(default=30.0)

    # Rule-based scorer
    min_confidence_score: float = Field(default=0.85)
    amount_tolerance_percent: float = Field(default=2.0)
    date_days_before: int = Field(default=7)
    date_days_after: int = Field(default=3)
    reference_fuzzy_threshold: float = Field(default=85.0)
    default_currency: str = Field(default="AED")

    # Candidate sampling caps
    max_bills_per_run: int = Field(default=20)
    max_invoices_per_run: int = Field(default=20)
    max_payments_per_run: int = Field(default=30)
    max_feedback_items: int = Field(default=20)

    # Forecast
    forecast_horizon_days: int = Field(default=30)

    # Audit trails of recent runs kept for GET /api/runs/{id}/audit
    audit_runs_retained: int = Field(default=50)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def uses_ai_gateway(self) -> bool:
        return self.scorer_backend.lower() == "ai_gateway"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
