from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class ConfigurationError(Exception):
    """Raised when a required setting is missing or inconsistent."""

    def __init__(self, message: str, setting: str | None = None):
        super().__init__(message)
        self.setting = setting
        self.recoverable = False


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis holds records, queues and leases
    REDIS_URL: str = "redis://localhost:6379/0"

    # Optional Postgres for the outreach event log
    DATABASE_URL: str | None = None

    # Shared secret for the acceptance webhook and operator endpoints
    WEBHOOK_SECRET: str | None = None

    # Remote browser automation service
    EXECUTOR_BASE_URL: str | None = None
    EXECUTOR_API_KEY: str | None = None
    ACTION_TIMEOUT_SECONDS: float = 180.0

    # =================================================================
    # PIPELINE TIMING
    # =================================================================
    SCHEDULER_INTERVAL_MINUTES: int = 30
    SCHEDULER_JITTER_MIN_MINUTES: int = 25
    SCHEDULER_JITTER_MAX_MINUTES: int = 35

    CONNECTION_FOLLOWUP_DELAY_HOURS: int = 24
    MESSAGE_RETRY_DELAY_HOURS: int = 72
    MESSAGE_MAX_RETRIES: int = 2
    DONE_DORMANT_DAYS: int = 30

    CONSUMER_BATCH_SIZE: int = 10
    CONSUMER_POLL_INTERVAL_SECONDS: float = 5.0

    # Run scheduler + consumers inside the API process
    RUN_PIPELINE_IN_APP: bool = False

    # Message templates, formatted with {name}
    CONNECTION_NOTE_TEMPLATE: str = "Hi {name}, great to connect!"
    FOLLOW_UP_MESSAGE_TEMPLATE: str = "Hey {name}, thanks for connecting – how are things going?"

    # =================================================================
    # OBSERVABILITY SESSIONS
    # =================================================================
    SESSION_MAX_SCREENSHOTS: int = 20
    SESSION_MAX_AGE_SECONDS: int = 7200  # 2 hours
    SESSION_RETENTION_SECONDS: int = 7200
    SESSION_SWEEP_INTERVAL_SECONDS: int = 60

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 5
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def lease_ttl_seconds(self) -> int:
        """Lease must outlive the longest executor call."""
        return int(self.ACTION_TIMEOUT_SECONDS) + 60

    def event_log_enabled(self) -> bool:
        return bool(self.DATABASE_URL)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"timeout": 15.0})

        return config

    def validate_runtime(self, *, require_executor: bool = True) -> None:
        """
        Fail fast on settings the pipeline cannot run without.

        Raises:
            ConfigurationError: If a required secret or endpoint is missing
        """
        if not self.WEBHOOK_SECRET:
            raise ConfigurationError("WEBHOOK_SECRET is not configured", setting="WEBHOOK_SECRET")

        if require_executor and not self.EXECUTOR_BASE_URL:
            raise ConfigurationError(
                "EXECUTOR_BASE_URL is not configured", setting="EXECUTOR_BASE_URL"
            )

        if self.SCHEDULER_JITTER_MIN_MINUTES > self.SCHEDULER_JITTER_MAX_MINUTES:
            raise ConfigurationError(
                "SCHEDULER_JITTER_MIN_MINUTES must not exceed SCHEDULER_JITTER_MAX_MINUTES",
                setting="SCHEDULER_JITTER_MIN_MINUTES",
            )

        if self.SESSION_MAX_SCREENSHOTS < 1:
            raise ConfigurationError(
                "SESSION_MAX_SCREENSHOTS must be at least 1", setting="SESSION_MAX_SCREENSHOTS"
            )


settings = Settings()
