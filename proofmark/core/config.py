"""Configuration management for Proofmark."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    PROOFMARK_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # OpenAI configuration (only the remote analysis service needs it)
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    GRAMMAR_MODEL: str = Field(default="gpt-4o", description="Model for remote grammar checks")
    GRAMMAR_MAX_TOKENS: int = Field(
        default=4000, description="Max completion tokens for a grammar check"
    )
    REFINE_MODEL: str = Field(default="gpt-4o", description="Model for single-suggestion refinement")

    # Remote analysis service
    GRAMMAR_API_TOKENS: str = Field(
        default="", description="Comma-separated bearer tokens accepted by the grammar API"
    )
    REMOTE_SERVICE_URL: str = Field(
        default="http://localhost:8000/v1", description="Base URL of the remote grammar service"
    )
    REMOTE_TIMEOUT_SECONDS: float = Field(
        default=15.0, description="HTTP timeout for remote refinement calls"
    )
    RATE_LIMIT_PER_MINUTE: int = Field(default=30, description="Grammar API requests per minute")
    RATE_LIMIT_BURST: int = Field(default=45, description="Grammar API burst size")

    # Text limits
    MAX_TEXT_CHARS: int = Field(default=10_000, description="Max characters per grammar check")

    # Caching
    CACHE_TTL_SECONDS: float = Field(default=300.0, description="Session suggestion cache TTL")
    SERVICE_CACHE_TTL_SECONDS: float = Field(
        default=3600.0, description="Grammar API suggestion cache TTL"
    )
    CACHE_MAX_ENTRIES: int = Field(default=1000, description="Max entries per suggestion cache")

    # Editor timing
    DEBOUNCE_DELAY_MS: int = Field(default=300, description="Debounce delay for analysis requests")
    MIN_TEXT_LENGTH: int = Field(default=3, description="Minimum text length to analyze")
    AUTO_REGENERATE_DELAY_MS: int = Field(
        default=1000, description="Delay before automatic regeneration of weak suggestions"
    )

    # Local analysis
    SPELL_LANGUAGE: str = Field(default="en", description="pyspellchecker language code")

    @property
    def api_tokens(self) -> set[str]:
        """Parsed set of accepted grammar API bearer tokens."""
        return {token.strip() for token in self.GRAMMAR_API_TOKENS.split(",") if token.strip()}


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables hold invalid values
    """
    return Settings()
