"""
Invoicing Core - Sentry Integration

Error reports for unexpected failures. Outgoing events are scrubbed of
credentials and of message content: recipients, bodies and sender
addresses never leave the service.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password", "token", "secret", "api_key", "authorization", "cookie",
    "recipient_email", "reply_to_email", "from_email", "body", "content",
)


def init_sentry(
    dsn: str,
    environment: str = "development",
    release: Optional[str] = None,
    traces_sample_rate: float = 0.0,
) -> bool:
    """
    Start error tracking.

    Returns False, after logging why, when the SDK could not be initialized.
    """
    if not dsn:
        logger.info("SENTRY_DSN not set, error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            send_default_pii=False,
            before_send=filter_sensitive_data,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    logger.info(f"Sentry initialized ({environment})")
    return True


def redact(value: Any) -> Any:
    """Recursively replace values under sensitive keys."""
    if isinstance(value, dict):
        return {
            k: REDACTED if any(s in str(k).lower() for s in SENSITIVE_KEYS) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """before_send hook"""
    request = event.get("request")
    if request:
        for part in ("headers", "data", "cookies"):
            if part in request:
                request[part] = redact(request[part])

    if "extra" in event:
        event["extra"] = redact(event["extra"])

    return event


def capture_exception(exception: Exception, **context) -> Optional[str]:
    """Report an exception with extra context; returns the event id."""
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)


def set_user(user_id: str, company_id: Optional[str] = None, role: Optional[str] = None):
    """Attach the caller to events of the current request (ids only)."""
    sentry_sdk.set_user({"id": user_id, "company_id": company_id, "role": role})
