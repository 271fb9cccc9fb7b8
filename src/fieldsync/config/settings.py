"""FieldSync configuration settings using pydantic-settings."""

import logging
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureSignature:
    """Remote error shape meaning "the external reference no longer resolves".

    An event outcome matching a signature can never succeed on retry and is
    dropped instead of being kept in the queue.
    """

    status_code: int
    error_code: str

    def matches(self, status_code: int | None, error_code: str | None) -> bool:
        """Check whether a reported failure has this exact shape."""
        if status_code is None or error_code is None:
            return False
        return status_code == self.status_code and error_code.upper() == self.error_code.upper()


DEFAULT_FAILURE_SIGNATURES: tuple[FailureSignature, ...] = (
    FailureSignature(status_code=404, error_code="NOT_FOUND"),
)


class Settings(BaseSettings):
    """Configuration settings for the sync engine.

    Settings are loaded from environment variables with the FIELDSYNC_ prefix.
    For example, FIELDSYNC_REQUEST_TIMEOUT=10 sets request_timeout to 10.
    """

    model_config = SettingsConfigDict(
        env_prefix="FIELDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote API
    api_base_url: str = "http://localhost:8000"
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0

    # Capture
    duration_probe_timeout: float = 5.0
    default_content_type: str = "audio/mp4"

    # Unified view
    default_filter_days: int = 3

    # File paths
    data_dir: Path = Path("~/.local/share/fieldsync")
    permanent_failures_file: Path = Path("~/.config/fieldsync/permanent_failures.yaml")

    # Logging
    log_level: str = "INFO"

    @field_validator("request_timeout", "duration_probe_timeout")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Ensure timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Ensure at least one attempt is made."""
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v

    @field_validator("retry_backoff_seconds", "default_filter_days")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def permanent_failures_path(self) -> Path:
        """Return expanded permanent failure signature file path."""
        return self.permanent_failures_file.expanduser()

    def load_failure_signatures(self) -> list[FailureSignature]:
        """Load permanent failure signatures from YAML file.

        The file holds a ``signatures`` list of ``{status_code, error_code}``
        mappings. A readable file replaces the built-in defaults; a missing or
        malformed file falls back to them.
        """
        if not self.permanent_failures_path.exists():
            return list(DEFAULT_FAILURE_SIGNATURES)

        try:
            with open(self.permanent_failures_path) as f:
                data = yaml.safe_load(f) or {}

            return [
                FailureSignature(
                    status_code=int(entry["status_code"]),
                    error_code=str(entry["error_code"]),
                )
                for entry in data.get("signatures", [])
            ]
        except (yaml.YAMLError, OSError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                "Failed to load failure signatures from %s: %s", self.permanent_failures_path, e
            )
            return list(DEFAULT_FAILURE_SIGNATURES)
