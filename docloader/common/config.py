"""Configuration management for the document loader.

Centralizes environment-driven configuration: which store backend to talk to,
how to reach Firestore, whether failed reads stay cached, and how to log. It
builds on ``pydantic_settings.BaseSettings`` so configuration can be provided
via environment variables, ``.env`` files, or defaults.

Usage
- ``config = LoaderConfig()`` or ``config = get_config()``
- Hand the config to ``docloader.document_store.factory.create_loader``
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_BACKENDS = ("memory", "firestore")
SUPPORTED_LOG_FORMATS = ("json", "console")


class LoaderConfig(BaseSettings):
    """Settings shared by every loader built in a process.

    Field names double as environment variable names (case-insensitive), e.g.
    ``DOCLOADER_STORE_BACKEND=firestore``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    docloader_env: str = Field(default="local")

    # Store
    docloader_store_backend: str = Field(default="memory")
    docloader_firestore_project: Optional[str] = Field(default=None)
    docloader_firestore_database: str = Field(default="(default)")
    docloader_firestore_emulator_host: Optional[str] = Field(default=None)

    # Cache
    docloader_cache_failures: bool = Field(
        default=True,
        description="Keep rejected reads cached for the loader's lifetime.",
    )

    # Observability
    docloader_metrics_enabled: bool = Field(default=True)
    docloader_log_level: str = Field(default="INFO")
    docloader_log_format: str = Field(default="json")

    @field_validator("docloader_store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported store backend {value!r}; expected one of {SUPPORTED_BACKENDS}"
            )
        return value

    @field_validator("docloader_log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_LOG_FORMATS:
            raise ValueError(
                f"Unsupported log format {value!r}; expected one of {SUPPORTED_LOG_FORMATS}"
            )
        return value


def get_config() -> LoaderConfig:
    """Build a fresh configuration from the current environment."""
    return LoaderConfig()
