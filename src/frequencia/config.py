"""Application configuration loaded from environment variables.

All variables use the FREQUENCIA_ prefix, e.g. FREQUENCIA_API_URL. For local
development, create a .env file in the project root.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from frequencia.errors import ConfigurationMissingError


class AppConfig(BaseSettings):
    """Attendance core configuration.

    Settings are loaded from environment variables with sensible defaults.
    The backend URL has no default: an empty value means the deployment has
    not been set up yet.
    """

    # Spreadsheet backend (Apps Script web app)
    api_url: str = Field(
        default="",
        description="URL of the spreadsheet-backed web app",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single backend request",
    )

    # AI report (Gemini generateContent REST API)
    gemini_api_key: str = Field(
        default="",
        description="API key for the report text service; empty disables reports",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Model used for student reports",
    )
    gemini_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        description="Base URL of the generateContent endpoint",
    )
    report_max_attempts: int = Field(
        default=3,
        description="Attempts per report before falling back to the default text",
    )
    report_backoff_max: float = Field(
        default=10.0,
        description="Upper bound in seconds for the wait between report attempts",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "FREQUENCIA_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def require_api_url(self) -> str:
        """Return the backend URL or raise ConfigurationMissingError."""
        url = self.api_url.strip()
        if not url:
            raise ConfigurationMissingError(
                "No backend URL configured - set FREQUENCIA_API_URL"
            )
        return url


# Singleton pattern
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the application configuration singleton."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the env."""
    global _config
    _config = None
