"""
Centralized client settings using Pydantic.

Environment variables (and an optional .env file) are read once and
validated. CLI flags and constructor arguments take precedence over these
values.
"""

from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from doc2x.core.config import (
    CLI_FAIL_LOG,
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    PROCESSING_TIMEOUT_SECONDS,
)


class Doc2XSettings(BaseSettings):
    """Doc2X API access and CLI configuration."""

    DOC2X_APIKEY: Optional[SecretStr] = None
    DOC2X_API_KEY: Optional[SecretStr] = None
    DOC2X_BASE_URL: str = DEFAULT_BASE_URL
    DOC2X_TIMEOUT_SECONDS: float = DEFAULT_TIMEOUT_SECONDS
    DOC2X_PROCESSING_TIMEOUT_SECONDS: float = PROCESSING_TIMEOUT_SECONDS
    DOC2X_FAIL_LOG: str = CLI_FAIL_LOG
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key, preferring DOC2X_APIKEY over DOC2X_API_KEY."""
        for secret in (self.DOC2X_APIKEY, self.DOC2X_API_KEY):
            if secret is not None and secret.get_secret_value():
                return secret.get_secret_value()
        return None


# Singleton instance - loaded once at module import
doc2x_settings = Doc2XSettings()
