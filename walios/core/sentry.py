"""
Sentry Error Tracking Configuration
Centralized Sentry SDK initialization for the WALI-OS API.
"""

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from walios.core.config import settings

logger = logging.getLogger(__name__)

# Request fields that may carry user-written content or secrets
SCRUBBED_BODY_KEYS = ("message", "prompt", "documentText", "content")


def before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """
    Process events before sending to Sentry.

    Drops health check noise and redacts chat/document text from request bodies.
    """
    request = event.get("request") or {}
    if request.get("url", "").endswith("/health"):
        return None

    data = request.get("data")
    if isinstance(data, dict):
        for key in SCRUBBED_BODY_KEYS:
            if key in data:
                data[key] = "[REDACTED]"

    headers = request.get("headers")
    if isinstance(headers, dict):
        for header in ("authorization", "cookie"):
            if header in headers:
                headers[header] = "[REDACTED]"

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK with FastAPI integration.

    Returns:
        bool: True if Sentry was initialized successfully, False otherwise.
    """
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment or settings.environment,
            release=f"walios-api@{settings.app_version}",
            traces_sample_rate=settings.sentry_traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
                SqlalchemyIntegration(),
            ],
            before_send=before_send,
            send_default_pii=False,
            attach_stacktrace=True,
        )
        sentry_sdk.set_tag("service", "api")
        logger.info(f"Sentry initialized (env={settings.sentry_environment or settings.environment})")
        return True

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False


def capture_exception(
    error: Exception,
    user_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture an exception and send to Sentry.

    Returns:
        Event ID if captured, None otherwise
    """
    with sentry_sdk.new_scope() as scope:
        if user_id:
            scope.set_user({"id": user_id})

        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)

        return sentry_sdk.capture_exception(error)
