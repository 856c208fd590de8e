"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Unbound Deal Desk"
    APP_VERSION: str = "0.2.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./data/unbound.db"

    # Platform identity (counterparty for every proposed deal)
    PLATFORM_AGENT_ID: str = "unbound"

    # Payment instructions returned for accepted deals
    PAYMENT_CURRENCY: str = "USDC"
    PAYMENT_NETWORK: str = "base"
    USDC_PAYMENT_ADDRESS: str = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb"

    # Deal lifecycle
    DEAL_EXPIRY_HOURS: int = 168  # idle proposed/countered deals expire after a week
    DEAL_LIST_LIMIT: int = 50

    # Commit-reveal proofs
    PROOF_DEFAULT_DEADLINE_HOURS: int = 72
    CHALLENGE_WINDOW_HOURS: int = 24

    # Pricing intelligence windows
    PRICING_INSIGHTS_WINDOW_DAYS: int = 30
    AGENT_PROFILE_WINDOW_DAYS: int = 90

    # Webhooks
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0  # per subscriber delivery
    WEBHOOK_USER_AGENT: str = "unbound-webhook/1.0"

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    class Config:
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),  # repo root .env
            str(Path(__file__).parent.parent.parent / ".env"),  # backend/.env (fallback)
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton instance
settings = Settings()
