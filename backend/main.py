"""
FastAPI application for the newsletter API.

Provides REST API endpoints for the landing page to:
- Subscribe and unsubscribe from the newsletter
- Unsubscribe with one click from the link in the welcome email
- Read subscription statistics
- Receive database webhooks that trigger welcome emails
"""
import logging
import time
from datetime import datetime, timezone
from html import escape
from typing import Optional

from fastapi import FastAPI, Request, Response, Header, Depends, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from config import Settings, get_settings, is_email_configured
from database import get_db, init_db, check_connection
from email_service import get_email_sender
from errors import NewsletterError, InvalidToken
from newsletter_service import NewsletterService
from rate_limit import RateLimiter, RateLimitMiddleware, get_client_ip
from webhook import verify_webhook_secret, handle_webhook_event

API_VERSION = "1.0.0"
STARTED_AT = time.time()

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Newsletter API",
    description="Newsletter subscription backend for the landing page",
    version=API_VERSION,
)

rate_limiter = RateLimiter(
    max_requests=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)

app.add_middleware(RateLimitMiddleware, limiter=rate_limiter, path_prefix="/api/v1/")
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-webhook-secret"],
)


@app.on_event("startup")
async def startup_event():
    """Create tables and build the email sender once per process."""
    init_db()
    get_email_sender()
    logger.info(f"Newsletter API started (environment={settings.environment})")


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(NewsletterError)
async def newsletter_error_handler(request: Request, exc: NewsletterError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request body"},
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================

def provide_email_sender():
    """The process-wide email sender (overridable in tests)."""
    return get_email_sender()


def get_newsletter_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    email_sender=Depends(provide_email_sender),
    settings: Settings = Depends(get_settings),
) -> NewsletterService:
    """Request-scoped service; welcome emails run after the response is sent."""
    return NewsletterService(
        db=db,
        email_sender=email_sender,
        schedule=background_tasks.add_task,
        send_welcome_email=settings.welcome_email_on_subscribe,
    )


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class NewsletterEmailRequest(BaseModel):
    """Body for subscribe and unsubscribe."""
    email: Optional[str] = None


class SubscribeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    already_subscribed: bool = Field(alias="alreadySubscribed")


class MessageResponse(BaseModel):
    success: bool
    message: str


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "Newsletter API",
        "version": API_VERSION,
        "status": "running",
        "health": "/api/v1/health",
    }


@app.post("/api/v1/newsletter/subscribe", response_model=SubscribeResponse)
def subscribe_to_newsletter(
    body: NewsletterEmailRequest,
    request: Request,
    response: Response,
    service: NewsletterService = Depends(get_newsletter_service),
):
    """
    Subscribe an email to the newsletter.

    Returns 201 for new (or returning) subscribers and 200 when the email is
    already subscribed.
    """
    if not body.email:
        return JSONResponse(status_code=400, content={"success": False, "message": "Email is required"})

    result = service.subscribe(
        body.email,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
    )

    response.status_code = 200 if result.already_subscribed else 201
    return SubscribeResponse(
        success=True,
        message=result.message,
        already_subscribed=result.already_subscribed,
    )


@app.post("/api/v1/newsletter/unsubscribe", response_model=MessageResponse)
def unsubscribe_from_newsletter(
    body: NewsletterEmailRequest,
    service: NewsletterService = Depends(get_newsletter_service),
):
    """Unsubscribe an email from the newsletter."""
    service.unsubscribe(body.email)
    return MessageResponse(success=True, message="Successfully unsubscribed from newsletter")


@app.get("/api/v1/newsletter/unsubscribe/{token}", response_class=HTMLResponse)
def unsubscribe_with_token(
    token: str,
    service: NewsletterService = Depends(get_newsletter_service),
    settings: Settings = Depends(get_settings),
):
    """
    One-click unsubscribe from the link in the welcome email.

    Returns an HTML page; following the link twice shows the same success page.
    """
    try:
        result = service.unsubscribe_by_token(token)
    except InvalidToken:
        return _render_page(
            title="Invalid Link",
            heading="Invalid Link",
            body="<p>This unsubscribe link is not valid or has expired.</p>",
            status_code=400,
        )
    except NewsletterError:
        return _render_page(
            title="Unsubscribe",
            heading="Something went wrong",
            body="<p>We couldn't process your request. Please try again later.</p>",
            status_code=500,
        )

    return _render_page(
        title="Unsubscribed",
        heading="Unsubscribed Successfully",
        body=f"""
            <p class="success">You have been unsubscribed from our newsletter.</p>
            <p>Email: <span class="email">{escape(result.email)}</span></p>
            <p>We're sorry to see you go! If you change your mind, you can sign up again at
               <a href="{escape(settings.frontend_url, quote=True)}">{escape(settings.frontend_url)}</a></p>
        """,
    )


@app.get("/api/v1/newsletter/stats")
def get_newsletter_stats(service: NewsletterService = Depends(get_newsletter_service)):
    """Subscriber counts."""
    stats = service.get_stats()
    return {"success": True, "data": stats.to_dict()}


def authorize_webhook(
    x_webhook_secret: Optional[str] = Header(None, alias="x-webhook-secret"),
    settings: Settings = Depends(get_settings),
):
    """Reject the webhook before its body is looked at."""
    verify_webhook_secret(x_webhook_secret, settings)


@app.post("/api/v1/newsletter/webhook", dependencies=[Depends(authorize_webhook)])
async def newsletter_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    email_sender=Depends(provide_email_sender),
):
    """
    Database webhook for new subscriber rows.

    Always answers 200 once the secret checks out; the welcome email is sent
    in the background and its outcome is only logged. Bodies that are not a
    JSON object are ignored.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON - ignored")
        return {"success": True}

    if not isinstance(payload, dict):
        logger.warning("Webhook body is not a JSON object - ignored")
        return {"success": True}

    handle_webhook_event(payload, email_sender, background_tasks.add_task)
    return {"success": True}


# ============================================================================
# HEALTH CHECKS
# ============================================================================

def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.get("/api/v1/health")
def health_check(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    """Basic health check with database status."""
    started = time.perf_counter()
    try:
        db_connected = check_connection(db)
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        db_connected = False
    response_ms = round((time.perf_counter() - started) * 1000)

    return JSONResponse(
        status_code=200 if db_connected else 503,
        content={
            "success": db_connected,
            "message": "All systems operational" if db_connected else "Database connection failed",
            "data": {
                "status": "OK" if db_connected else "ERROR",
                "timestamp": _utc_timestamp(),
                "uptime": round(time.time() - STARTED_AT, 2),
                "environment": settings.environment,
                "version": API_VERSION,
                "services": {
                    "database": {"status": "connected" if db_connected else "disconnected"},
                    "email": {
                        "provider": settings.email_provider,
                        "status": "configured" if is_email_configured() else "not_configured",
                    },
                },
                "performance": {"responseTime": f"{response_ms}ms"},
            },
        },
    )


@app.get("/api/v1/health/deep")
def deep_health_check(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    """Health check that also reports configuration problems."""
    started = time.perf_counter()
    checks = {}

    try:
        check_connection(db)
        checks["database"] = {"success": True, "message": "Database connection successful"}
    except Exception as e:
        logger.error(f"Deep health check database error: {e}")
        checks["database"] = {"success": False, "message": str(e)}

    checks["environment"] = {
        "databaseUrl": bool(settings.database_url),
        "emailConfigured": is_email_configured(),
        "webhookSecret": bool(settings.webhook_secret),
        "environment": settings.environment,
    }

    all_ok = checks["database"]["success"]
    response_ms = round((time.perf_counter() - started) * 1000)

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "success": all_ok,
            "message": "Deep health check passed" if all_ok else "Some systems not operational",
            "data": {
                **checks,
                "responseTime": f"{response_ms}ms",
                "timestamp": _utc_timestamp(),
                "uptime": round(time.time() - STARTED_AT, 2),
            },
        },
    )


# ============================================================================
# HTML PAGES
# ============================================================================

def _render_page(title: str, heading: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(status_code=status_code, content=f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <title>{escape(title)} - Newsletter</title>
        <style>
            body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; background: #f9fafb; color: #333; }}
            .container {{ max-width: 500px; margin: 0 auto; background: #fff; padding: 30px; border-radius: 12px; }}
            h1 {{ color: #16a34a; }}
            p {{ color: #555; }}
            a {{ color: #16a34a; }}
            .success {{ color: #15803d; }}
            .email {{ color: #16a34a; font-weight: bold; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{escape(heading)}</h1>
            {body}
        </div>
    </body>
    </html>
    """)
