"""
Settings for the Conduit conversation worker.

Environment variable configuration for the broker, the relational store,
the provider APIs and the AI enrichment provider.
"""

import os
import tomllib
from pathlib import Path

from dotenv import load_dotenv

# Load .env file for local development - look in current working directory
load_dotenv(".env")


def _get_version_from_pyproject() -> str:
    """
    Read version from pyproject.toml file.

    Returns:
        Version string from pyproject.toml, or fallback version
    """
    current_path = Path(__file__)
    for parent in [current_path.parent, *current_path.parents]:
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            try:
                with open(pyproject_path, "rb") as f:
                    pyproject_data = tomllib.load(f)
                    version = pyproject_data.get("project", {}).get("version")
                    if version:
                        return version
            except (OSError, tomllib.TOMLDecodeError):
                continue

    return "0.1.0"


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings with environment-based configuration."""

    def __init__(self):
        # ================================================================
        # Version & General Configuration
        # ================================================================
        self.version: str = _get_version_from_pyproject()
        self.port: int = int(os.getenv("PORT", "8000"))
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.log_dir: str = os.getenv("LOG_DIR", "./logs")
        self.environment: str = os.getenv("ENVIRONMENT", "DEV")

        # ================================================================
        # Broker (Redis) Configuration
        # ================================================================
        self.redis_url: str | None = os.getenv("REDIS_URL")
        self.redis_max_connections: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "64"))
        self.redis_connection_timeout: int = int(
            os.getenv("REDIS_CONNECTION_TIMEOUT", "30")
        )
        self.redis_health_check_interval: int = int(
            os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "60")
        )

        # ================================================================
        # Relational Store Configuration
        # ================================================================
        self.database_url: str | None = os.getenv("DATABASE_URL")
        self.db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "20"))
        self.db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "40"))

        # ================================================================
        # Provider APIs
        # ================================================================
        self.evolution_api_url: str = os.getenv(
            "EVOLUTION_API_URL", "http://localhost:8080"
        )
        self.evolution_api_key: str | None = os.getenv("EVOLUTION_API_KEY")
        self.meta_graph_api_url: str = os.getenv(
            "META_GRAPH_API_URL", "https://graph.facebook.com/"
        )
        self.meta_api_version: str = os.getenv("META_API_VERSION", "v18.0")
        self.provider_timeout: int = int(os.getenv("PROVIDER_TIMEOUT", "30"))

        # Webhook verification and signature validation
        self.whatsapp_verify_token: str | None = os.getenv("WHATSAPP_VERIFY_TOKEN")
        self.instagram_verify_token: str | None = os.getenv("INSTAGRAM_VERIFY_TOKEN")
        self.messenger_verify_token: str | None = os.getenv("MESSENGER_VERIFY_TOKEN")
        self.meta_app_secret: str | None = os.getenv("META_APP_SECRET")

        # ================================================================
        # AI Configuration (Optional)
        # ================================================================
        self.openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
        self.openai_chat_model: str = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
        self.openai_transcribe_model: str = os.getenv(
            "OPENAI_TRANSCRIBE_MODEL", "whisper-1"
        )
        self.ai_auto_enrichment: bool = _get_bool("AI_AUTO_ENRICHMENT")

        # ================================================================
        # Queue Configuration
        # ================================================================
        self.queue_prefix: str = os.getenv("QUEUE_PREFIX", "conduit")
        self.queue_poll_interval: float = float(os.getenv("QUEUE_POLL_INTERVAL", "1"))
        self.queue_visibility_timeout: int = int(
            os.getenv("QUEUE_VISIBILITY_TIMEOUT", "300")
        )
        self.webhook_concurrency: int = int(os.getenv("WEBHOOK_CONCURRENCY", "20"))
        self.message_concurrency: int = int(os.getenv("MESSAGE_CONCURRENCY", "10"))
        self.campaign_concurrency: int = int(os.getenv("CAMPAIGN_CONCURRENCY", "5"))
        self.ai_concurrency: int = int(os.getenv("AI_CONCURRENCY", "3"))

        self._validate_settings()

    def _validate_settings(self):
        """Validate settings values."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        self.log_level = self.log_level.upper()

        valid_environments = ["DEV", "PROD"]
        if self.environment.upper() not in valid_environments:
            self.environment = "DEV"  # Default fallback
        self.environment = self.environment.upper()

        for name in (
            "webhook_concurrency",
            "message_concurrency",
            "campaign_concurrency",
            "ai_concurrency",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be at least 1")

        if not self.meta_graph_api_url.endswith("/"):
            self.meta_graph_api_url += "/"
        self.evolution_api_url = self.evolution_api_url.rstrip("/")

    @property
    def has_redis(self) -> bool:
        """Check if Redis is configured."""
        return self.redis_url is not None

    @property
    def has_database(self) -> bool:
        """Check if a relational store is configured."""
        return self.database_url is not None

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def graph_base_url(self) -> str:
        """Versioned Graph API root, e.g. https://graph.facebook.com/v18.0"""
        return f"{self.meta_graph_api_url}{self.meta_api_version}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "DEV"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "PROD"


# Global settings instance
settings = Settings()
