"""
Synchronizer configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required secrets for production:
- GUILD_NAME, GUILD_REALM, GUILD_REGION
- BLIZZARD_CLIENT_ID, BLIZZARD_CLIENT_SECRET

The Settings object is frozen. The orchestrator, provider clients and the
scheduler receive it at construction and never mutate it.
"""
import os
import logging
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from dotenv import load_dotenv

# Get the project root directory (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Synchronizer settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Allow extra fields from .env
        frozen=True,
    )

    # Application
    APP_NAME: str = "Guild Sync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server (health/snapshot API)
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite:///{PROJECT_ROOT / 'data' / 'guild-sync.db'}")

    # Guild identity
    GUILD_NAME: str = ""
    GUILD_REALM: str = ""
    GUILD_REGION: str = "eu"
    LOCALE: str = "en_US"

    # Blizzard API (authenticated, client credentials)
    BLIZZARD_CLIENT_ID: str = ""
    BLIZZARD_CLIENT_SECRET: str = ""
    BLIZZARD_TOKEN_URL: str = "https://oauth.battle.net/token"

    # Raider.IO API (public)
    RAIDERIO_BASE_URL: str = "https://raider.io/api/v1"

    # Schedule
    DISCOVERY_INTERVAL_HOURS: int = 6
    ENRICHMENT_INTERVAL_MINUTES: int = 60
    RUN_MISSING_DATA_ON_STARTUP: bool = True

    # Rate limiting (minimum seconds between two requests to the same provider)
    BLIZZARD_MIN_INTERVAL: float = 1.5
    RAIDERIO_MIN_INTERVAL: float = 1.0
    DEFAULT_MIN_INTERVAL: float = 1.0
    MAX_RETRY_AFTER_SECONDS: float = 60.0

    # Batch pacing
    DISCOVERY_MEMBER_DELAY: float = 0.2
    MEMBER_DELAY_SECONDS: float = 1.0
    HTTP_TIMEOUT_SECONDS: float = 10.0
    MEMBER_TIMEOUT_SECONDS: float = 60.0

    # Activity / enrichment windows
    ACTIVE_WINDOW_DAYS: int = 30
    ENRICHMENT_WINDOW_DAYS: int = 30
    ENABLE_SECONDARY_ENRICHMENT: bool = True

    # Error handling
    ERROR_ALERT_THRESHOLD: int = 5
    ERROR_ALERT_RATE: float = 0.10
    ERROR_RETENTION_DAYS: int = 7

    # Notifications (Mailgun)
    MAILGUN_API_KEY: str = ""
    MAILGUN_DOMAIN: str = ""
    MAILGUN_BASE_URL: str = "https://api.eu.mailgun.net/v3"
    CONTACT_EMAIL: str = ""
    NOTIFY_MAX_PER_WINDOW: int = 5
    NOTIFY_WINDOW_MINUTES: int = 15

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Live progress buffer for the API
    PROGRESS_EVENTS_BUFFER: int = 200

    @property
    def provider_intervals(self) -> dict[str, float]:
        """Minimum spacing per provider source id."""
        return {
            "blizzard": self.BLIZZARD_MIN_INTERVAL,
            "raiderio": self.RAIDERIO_MIN_INTERVAL,
        }

    @property
    def mailgun_enabled(self) -> bool:
        return bool(self.MAILGUN_API_KEY and self.MAILGUN_DOMAIN and self.CONTACT_EMAIL)

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required settings are present.

        Returns:
            List of missing setting names (empty if all present)
        """
        missing = []

        for name in ("GUILD_NAME", "GUILD_REALM", "GUILD_REGION"):
            if not getattr(self, name):
                missing.append(name)

        if not self.BLIZZARD_CLIENT_ID:
            missing.append("BLIZZARD_CLIENT_ID")
        if not self.BLIZZARD_CLIENT_SECRET:
            missing.append("BLIZZARD_CLIENT_SECRET")

        # Mailgun is optional, but a partial setup is a mistake
        mailgun_fields = [self.MAILGUN_API_KEY, self.MAILGUN_DOMAIN, self.CONTACT_EMAIL]
        if any(mailgun_fields) and not all(mailgun_fields):
            missing.append("MAILGUN_API_KEY/MAILGUN_DOMAIN/CONTACT_EMAIL")

        return missing


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        return default_env

    logger.warning(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


_env_file = _load_env_file()

# Export to os.environ as well, for code that reads the environment directly
load_dotenv(dotenv_path=_env_file)


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )


settings = _SettingsWithEnvFile()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings


# Validate secrets on startup
missing_secrets = settings.validate_required_secrets()
if missing_secrets:
    logger.warning(f"Missing required settings for {settings.ENVIRONMENT}: {', '.join(missing_secrets)}")
    if settings.is_production():
        raise ValueError(
            f"Cannot start in production with missing settings: {', '.join(missing_secrets)}. "
            f"Please set these environment variables in .env.production"
        )
