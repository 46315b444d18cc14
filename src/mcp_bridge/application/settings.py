"""Application settings configuration."""

import logging
import sys

from neuroglia.hosting.abstractions import ApplicationSettings


class Settings(ApplicationSettings):
    """Application settings for the MCP bridge broker and its observability."""

    # Logging Configuration
    log_level: str = "INFO"

    # Application Configuration
    app_name: str = "MCP Bridge"
    app_version: str = "1.0.0"

    # Service Definitions
    services_config_path: str = "config/services.yaml"
    mcp_secrets_path: str = "secrets/mcp-services.yaml"  # pragma: allowlist secret

    # Connection Configuration
    connection_timeout: float = 30.0  # Seconds allowed for session + capability fetch
    retry_delay: float = 1.0  # Seconds before reconnecting a failed backend
    # Exposed for deployments that want to cap retries; the broker retries indefinitely
    max_retries: int = 3
    request_timeout: float = 30.0  # Read timeout for individual MCP requests
    disconnect_timeout: float = 5.0  # Seconds to wait for a backend to release its process/socket

    # Call Audit Configuration
    audit_max_entries: int = 1000  # In-memory call history size

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


app_settings = Settings()


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("mcp").setLevel(logging.WARNING)
