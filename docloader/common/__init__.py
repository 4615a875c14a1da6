"""Common utilities shared across the loader and store adapters.

Includes:
- ``config``: pydantic-settings configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics for batching, caching and store calls.

Import pattern:
- from docloader.common.config import LoaderConfig
- from docloader.common.logging import configure_logging
"""
