from __future__ import annotations

from pathlib import Path

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Project-wide configuration loaded from environment variables (.env optional).

    Every field can be overridden with an ``OLLABRANCH_`` prefixed variable,
    e.g. ``OLLABRANCH_OLLAMA_BASE_URL=http://gpu-box:11434``.
    """

    # General settings
    LOG_LEVEL: str = Field("INFO", description="Root log level for Loguru")
    LOG_DIR: str = Field("logs", description="Directory that receives the rotating log files")
    LOG_FILES: bool = Field(True, description="Write app.log and traffic.log under LOG_DIR; stderr only when False")
    LOG_ROTATION: str = Field("5 MB", description="Loguru rotation rule for the log files")
    LOG_RETENTION: str = Field("10 days", description="Loguru retention rule for the log files")

    # Ollama endpoint
    OLLAMA_BASE_URL: HttpUrl = Field("http://localhost:11434", description="Base URL of the Ollama server")
    DEFAULT_MODEL: str = Field("mistral", description="Model used when the caller does not name one")

    # Transport
    CONNECT_TIMEOUT: float = Field(10.0, description="Seconds allowed to establish the HTTP connection", gt=0)
    READ_TIMEOUT: float = Field(
        300.0,
        description="Seconds allowed between two reads; a stalled stream fails after this long",
        gt=0,
    )
    MAX_RETRIES: int = Field(0, description="Extra attempts on connection failures (no bytes received yet)", ge=0, le=10)

    # External renderers
    WORK_DIR: str = Field(
        str(Path.home() / ".ollama.data"),
        description="Working directory handed to external render tools",
    )
    RENDER_TIMEOUT: float = Field(60.0, description="Seconds an external render tool may run", gt=0)

    model_config = {
        "env_file": ".env",
        "env_prefix": "OLLABRANCH_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------
    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalise_level(cls, value: str) -> str:  # noqa: D401 – pydantic hook
        level = value.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def base_url(self) -> str:
        """Endpoint without the trailing slash pydantic adds to bare hosts."""
        return str(self.OLLAMA_BASE_URL).rstrip("/")


settings = Settings()
