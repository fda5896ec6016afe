"""Common utilities shared across services.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``tracing``: OpenTelemetry setup and span helpers.
- ``models``: match dataclasses passed between scorers and the merger.

Import pattern:
- from libs.common.config import SearchConfig
- from libs.common.logging import configure_logging
"""
