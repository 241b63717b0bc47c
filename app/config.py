"""
Configuration management for the Voicero analytics engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Voicero Conversation Analytics"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # Database
    database_url: str = "sqlite:///./voicero.db"

    # LLM summarizer (consumes normalized threads, returns a JSON report)
    anthropic_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    enable_llm_insights: bool = True
    llm_max_tokens: int = 4000

    # Analytics windows
    currency: str = "USD"
    overview_window_days: int = 28  # AI overview covers the last 4 weeks
    history_window_days: int = 30  # AI history report
    dashboard_default_days: int = 7  # Chart range when none is requested
    cache_max_age_hours: int = 10  # Cached reports older than this are regenerated

    # Refresh schedules (cron syntax)
    enable_scheduler: bool = True
    refresh_overview_schedule: str = "0 */6 * * *"
    refresh_history_schedule: str = "30 */6 * * *"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
