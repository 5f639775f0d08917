"""
Serverless entry point for newsletter subscriptions.

lambda_handler(event, context) accepts API Gateway proxy events (REST or
HTTP API) and runs the same NewsletterService as the FastAPI app. There is
no work queue after the response in a function runtime, so the welcome email
is sent inline once the subscriber row is committed; a send failure is
logged and never changes the response.
"""
import base64
import json
import logging
from typing import Any, Dict

from database import SessionLocal
from email_service import get_email_sender
from config import get_settings
from errors import NewsletterError
from newsletter_service import NewsletterService, run_inline

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _response(status_code: int, body: Dict[str, Any] = None) -> Dict[str, Any]:
    headers = dict(CORS_HEADERS)
    if body is None:
        return {"statusCode": status_code, "headers": headers, "body": ""}
    headers["Content-Type"] = "application/json"
    return {"statusCode": status_code, "headers": headers, "body": json.dumps(body)}


def _get_method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method", "")
    return method.upper()


def _get_headers(event: Dict[str, Any]) -> Dict[str, str]:
    return {k.lower(): v for k, v in (event.get("headers") or {}).items()}


def _get_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get("body")
    if body is None:
        return {}
    if isinstance(body, dict):
        return body
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    parsed = json.loads(body) if body else {}
    if not isinstance(parsed, dict):
        raise ValueError("Request body must be a JSON object")
    return parsed


def _get_client_ip(event: Dict[str, Any], headers: Dict[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if headers.get("x-real-ip"):
        return headers["x-real-ip"]
    context = event.get("requestContext", {})
    return (
        context.get("identity", {}).get("sourceIp")
        or context.get("http", {}).get("sourceIp")
        or "unknown"
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Handle a newsletter subscription request.

    Args:
        event: API Gateway proxy event with a JSON body {"email": ...}
        context: Lambda context object (unused)

    Returns:
        Proxy response dict with statusCode, headers and a JSON body
    """
    method = _get_method(event)
    if method == "OPTIONS":
        return _response(200)
    if method != "POST":
        return _response(405, {"success": False, "message": "Method not allowed"})

    try:
        body = _get_body(event)
    except ValueError:
        return _response(400, {"success": False, "message": "Invalid JSON in request body"})

    email = body.get("email")
    if not email or not isinstance(email, str):
        return _response(400, {"success": False, "message": "Invalid email address"})

    headers = _get_headers(event)
    settings = get_settings()

    db = SessionLocal()
    try:
        service = NewsletterService(
            db=db,
            email_sender=get_email_sender(),
            schedule=run_inline,
            send_welcome_email=settings.welcome_email_on_subscribe,
        )
        result = service.subscribe(
            email,
            ip_address=_get_client_ip(event, headers),
            user_agent=headers.get("user-agent", "unknown"),
        )
    except NewsletterError as e:
        if e.status_code >= 500:
            logger.error(f"Serverless subscribe failed: {e.message}")
        status_code = 400 if e.status_code < 500 else 500
        message = "Invalid email address" if status_code == 400 else e.message
        return _response(status_code, {"success": False, "message": message})
    finally:
        db.close()

    return _response(200, {
        "success": True,
        "message": result.message,
        "alreadySubscribed": result.already_subscribed,
    })
