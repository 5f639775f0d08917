"""
Database change webhook.

The database posts {type, table, record} whenever a row changes. New rows in
the subscribers table trigger the welcome email out-of-band.
"""
import hmac
import logging
from typing import Callable, Optional

from config import Settings
from email_service import dispatch_welcome_email
from errors import Unauthorized

logger = logging.getLogger(__name__)

SUBSCRIBER_TABLES = ("newsletter_subscribers", "subscribers")


def verify_webhook_secret(provided: Optional[str], settings: Settings) -> None:
    """
    Check the x-webhook-secret header against the configured secret.

    With no secret configured the request is rejected unless
    require_webhook_secret is turned off, in which case it is only logged.
    """
    expected = settings.webhook_secret
    if not expected:
        if settings.require_webhook_secret:
            logger.warning("Webhook rejected: no webhook secret configured")
            raise Unauthorized("Unauthorized")
        logger.warning("Webhook secret not configured - accepting unauthenticated webhook")
        return

    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Webhook rejected: invalid secret")
        raise Unauthorized("Unauthorized")


def handle_webhook_event(payload: dict, email_sender, schedule: Callable) -> bool:
    """
    Schedule the welcome email for subscriber INSERT events.

    Returns True when an email was scheduled. Anything else is ignored.
    """
    event_type = payload.get("type")
    table = payload.get("table")
    logger.info(f"Webhook received: type={event_type} table={table}")

    if event_type != "INSERT" or table not in SUBSCRIBER_TABLES:
        return False

    record = payload.get("record") or {}
    if not isinstance(record, dict):
        logger.warning("Webhook INSERT record is not an object - skipped")
        return False

    email = record.get("email")
    unsubscribe_token = record.get("unsubscribe_token")
    if not email or not unsubscribe_token or not isinstance(email, str) or not isinstance(unsubscribe_token, str):
        logger.warning("Webhook INSERT record missing email or unsubscribe_token - skipped")
        return False

    schedule(dispatch_welcome_email, email_sender, email, unsubscribe_token)
    return True
