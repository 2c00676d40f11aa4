# salesrecon/config.py

from typing import Literal
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Sales Reconciliation API"
    app_env: str = "development"
    debug: bool = True
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Storage
    storage_backend: Literal["memory", "supabase"] = "supabase"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""

    # Matching config
    auto_match_threshold: int = 80
    review_threshold: int = 1
    token_overlap_weight: float = 0.7
    containment_weight: float = 0.3
    fuzzy_token_threshold: float = 0.6
    default_suggestion_limit: int = 10

    # Inference / drift config
    quantity_tolerance: float = 0.01
    price_drift_tolerance: float = 0.02

    # Workflow
    approval_timeout_seconds: float = 10.0
    enable_match_history: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
