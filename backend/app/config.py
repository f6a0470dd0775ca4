"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App Settings
    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production, testing

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automation.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker + result backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Workflow Engine
    WORKFLOW_MAX_CONCURRENT_EXECUTIONS: int = 10
    WORKFLOW_DEFAULT_ACTION_TIMEOUT: float = 300.0  # seconds
    WORKFLOW_DEFAULT_RETRY_DELAY: int = 60  # seconds
    WORKFLOW_RETRY_ENABLED: bool = True
    WORKFLOW_DB_LOGGING_ENABLED: bool = True
    # Fail actions whose templates reference unknown context paths
    WORKFLOW_STRICT_TEMPLATES: bool = True

    # Async dispatch queue
    DISPATCH_QUEUE_SIZE: int = 100
    DISPATCH_WORKERS: int = 4

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_ADDRESS: str = "automation@localhost"
    SMTP_USE_TLS: bool = True

    # Chat (Slack)
    SLACK_WEBHOOK_URL: str = ""
    SLACK_BOT_TOKEN: str = ""

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""
    SMS_DEFAULT_COUNTRY_CODE: str = "1"

    # Outbound webhooks
    WEBHOOK_TIMEOUT: float = 30.0
    WEBHOOK_ALLOW_PRIVATE_HOSTS: bool = False

    # Pollers
    RETRY_POLL_BATCH_SIZE: int = 50
    SCHEDULE_TIMEZONE: str = "UTC"

    # Celery hard limit for one workflow run or one poller batch (seconds)
    WORKER_TASK_TIME_LIMIT: int = 3600

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    def channel_config(self) -> dict:
        """Build the per-channel config dict consumed by NotificationManager.

        Channels without credentials are left out so they report
        "not configured" instead of failing at send time.
        """
        config: dict = {}
        if self.SMTP_HOST:
            config["email"] = {
                "smtp_host": self.SMTP_HOST,
                "smtp_port": self.SMTP_PORT,
                "smtp_user": self.SMTP_USER,
                "smtp_password": self.SMTP_PASSWORD,
                "from_address": self.SMTP_FROM_ADDRESS,
                "use_tls": self.SMTP_USE_TLS,
            }
        if self.SLACK_WEBHOOK_URL or self.SLACK_BOT_TOKEN:
            config["chat"] = {
                "webhook_url": self.SLACK_WEBHOOK_URL,
                "bot_token": self.SLACK_BOT_TOKEN,
            }
        if self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN:
            config["sms"] = {
                "account_sid": self.TWILIO_ACCOUNT_SID,
                "auth_token": self.TWILIO_AUTH_TOKEN,
                "from_number": self.TWILIO_FROM_NUMBER,
            }
        config["webhook"] = {
            "timeout": self.WEBHOOK_TIMEOUT,
            "allow_private_hosts": self.WEBHOOK_ALLOW_PRIVATE_HOSTS,
        }
        return config

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
