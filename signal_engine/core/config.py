"""
Application configuration.

Loads settings from environment variables and .env file.
All configuration is centralized here: intervals, caps, pacing delays,
adapter endpoints and credentials.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        database_url: SQLAlchemy URL of the signal store.
        market_timezone: Timezone of the trading calendar and "today".
        resend_interval_minutes: Gap before an undecided signal is re-sent.
        expiry_hours: Age after which undecided signals expire.
        daily_signal_cap: Non-expired signals allowed per portfolio per day.
        max_proposals_per_batch: Proposals considered per generation run.
        notify_pacing_seconds: Delay between two deliveries in a pass.
        reconcile_pacing_seconds: Delay between two broker status polls.
        generation_pacing_seconds: Delay between two portfolios in a run.
        reconcile_lookback_hours: Age limit of orders polled by reconciliation.
        placing_grace_minutes: Age after which a PLACING signal with no order is released.
        unfilled_lookback_days: Age limit of executed BUYs checked against holdings.
        max_price_deviation: Largest accepted |limit - live| / live before execution.
        scheduler_enabled: Start the job runner with the application.
        *_interval_seconds: Trigger interval per job (0 disables the trigger).
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    project_name: str = "Signal Engine"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_default: str = "60/minute"
    rate_limit_heavy: str = "10/minute"

    database_url: str = "sqlite:///./signals.db"

    market_timezone: str = "Asia/Kolkata"
    resend_interval_minutes: int = 30
    expiry_hours: int = 24
    daily_signal_cap: int = 3
    max_proposals_per_batch: int = 5

    notify_pacing_seconds: float = 0.3
    reconcile_pacing_seconds: float = 0.5
    generation_pacing_seconds: float = 2.0

    reconcile_lookback_hours: int = 24
    placing_grace_minutes: int = 10
    unfilled_lookback_days: int = 3
    max_price_deviation: float = 0.20

    scheduler_enabled: bool = True
    generate_interval_seconds: int = 300
    notify_interval_seconds: int = 300
    reconcile_interval_seconds: int = 120
    expire_interval_seconds: int = 900

    # External collaborators
    upstox_base_url: str = "https://api.upstox.com/v2"
    upstox_access_token: Optional[str] = None
    telegram_base_url: str = "https://api.telegram.org"
    telegram_bot_token: Optional[str] = None
    recommendation_url: Optional[str] = None
    http_timeout_seconds: float = 10.0
    recommendation_timeout_seconds: float = 60.0


settings = Settings()
