"""
Logging and Logfire observability configuration for Craftus.

Provides tracing and monitoring for:
- Pipeline runs (master generation, dissection, step images)
- Gemini calls, retries and rate-limit waits (via stdlib logging)

Usage:
    # At startup (e.g., in the CLI)
    from craftus.core.observability import setup_logging, setup_logfire
    setup_logging("INFO")
    setup_logfire()

Environment Variables:
    LOGFIRE_TOKEN: Your Logfire write token (required to export)
    LOGFIRE_PROJECT_NAME: Project name in Logfire dashboard
    LOGFIRE_ENVIRONMENT: Environment name (development, staging, production)
"""

import logging
import os
from typing import Optional

import logfire

logger = logging.getLogger(__name__)

_logfire_configured = False


def setup_logging(level: str = "INFO") -> None:
    """
    Configure stdlib logging for the craftus package.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def setup_logfire(
    project_name: Optional[str] = None,
    environment: Optional[str] = None,
    service_name: str = "craftus"
) -> bool:
    """
    Configure Logfire for observability.

    Args:
        project_name: Logfire project name (or LOGFIRE_PROJECT_NAME env var)
        environment: Environment name (or LOGFIRE_ENVIRONMENT env var)
        service_name: Service name for tracing

    Returns:
        True if Logfire was configured, False if skipped (no token)
    """
    global _logfire_configured

    if _logfire_configured:
        logger.debug("Logfire already configured")
        return True

    token = os.environ.get("LOGFIRE_TOKEN")
    if not token:
        logger.info("LOGFIRE_TOKEN not set, skipping Logfire configuration")
        return False

    project = project_name or os.environ.get("LOGFIRE_PROJECT_NAME", "craftus")
    env = environment or os.environ.get("LOGFIRE_ENVIRONMENT", "development")

    try:
        logfire.configure(
            token=token,
            service_name=service_name,
            environment=env,
            send_to_logfire=True,
        )

        # Forward stdlib log records so pipeline logs show up next to spans
        logging.getLogger("craftus").addHandler(logfire.LogfireLoggingHandler())

        # Instrument Pydantic for validation tracing
        logfire.instrument_pydantic()

        _logfire_configured = True
        logger.info(f"Logfire configured: project={project}, environment={env}")
        return True

    except Exception as e:
        logger.error(f"Failed to configure Logfire: {e}")
        return False
