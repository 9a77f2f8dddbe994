"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Beads Live
Graph backend.
All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_string_list(v: Any, default: list[str]) -> list[str]:
    """Parse a list setting from a JSON array, comma-separated string, or list."""
    if isinstance(v, list):
        return [str(item) for item in v]
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return []
        # Try JSON first
        if v.startswith("["):
            try:
                return [str(item) for item in json.loads(v)]
            except json.JSONDecodeError:
                pass
        # Fallback to comma-separated
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(default)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        bd_executable: Name or path of the issue tracker executable.
        tracker_workdir: Working directory (tracker repository) for every invocation.
        cli_timeout_seconds: Deadline for a single tracker invocation.
        cli_max_output_bytes: Maximum bytes accepted on stdout or stderr.
        poll_interval_seconds: Fixed delay between the end of one poll cycle
            and the start of the next.
        poll_skip_unchanged: If True, hash the raw tree output and skip the
            recompute when it matches the previous cycle.
        tracked_roots: Root issue ids polled from startup.
        subscriber_queue_size: Maximum pending events per live subscriber.
        subscriber_send_timeout_seconds: How long a delivery may block before
            the subscriber is considered failed.
        refresh_wait_timeout_seconds: Upper bound for mutation endpoints that
            wait for the follow-up poll cycle.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Tracker CLI
    bd_executable: str = "bd"
    tracker_workdir: str = "."
    cli_timeout_seconds: float = 30.0
    cli_max_output_bytes: int = 10 * 1024 * 1024

    # Polling
    poll_interval_seconds: float = 5.0
    poll_skip_unchanged: bool = False
    tracked_roots: str | list[str] = []

    # Live subscribers
    subscriber_queue_size: int = 100
    subscriber_send_timeout_seconds: float = 5.0
    refresh_wait_timeout_seconds: float = 10.0

    # Server Configuration
    backend_port: int = 3000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        return _parse_string_list(v, ["http://localhost:3000"]) or ["http://localhost:3000"]

    @field_validator("tracked_roots", mode="before")
    @classmethod
    def parse_tracked_roots(cls, v: Any) -> list[str]:
        """Parse tracked root ids using the same formats as ``cors_origins``."""
        return _parse_string_list(v, [])

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

# Create a logger for this module
logger = structlog.get_logger(__name__)
