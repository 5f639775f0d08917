"""
Email service for sending newsletter welcome emails.

Four interchangeable backends, picked by the EMAIL_PROVIDER setting:
- smtp:     any SMTP relay (STARTTLS)
- brevo:    Brevo transactional API over HTTPS
- resend:   Resend API via the resend SDK
- sendgrid: SendGrid API via the sendgrid SDK

Every sender exposes send_welcome_email(email, unsubscribe_token) and reports
the outcome as a SendEmailResult instead of raising.
"""
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Optional, Tuple

import httpx
import resend
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from config import Settings, get_settings
from email_templates import build_unsubscribe_url, render_welcome_html, render_welcome_text
from errors import EmailDispatchError

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
NOT_CONFIGURED = "Email service not configured"


@dataclass
class SendEmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def render_welcome_email(settings: Settings, email: str, unsubscribe_token: str) -> Tuple[str, str, str]:
    """Return (subject, html, text) for a subscriber's welcome email."""
    unsubscribe_url = build_unsubscribe_url(settings, unsubscribe_token)
    brand = settings.email_from_name
    return (
        settings.email_subject,
        render_welcome_html(email, unsubscribe_url, brand),
        render_welcome_text(email, unsubscribe_url, brand),
    )


# =============================================================================
# Senders
# =============================================================================

class DisabledEmailSender:
    """Used when no provider is configured; never sends anything."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send_welcome_email(self, email: str, unsubscribe_token: str) -> SendEmailResult:
        logger.warning(f"Email provider disabled - welcome email to {email} not sent")
        return SendEmailResult(success=False, error=NOT_CONFIGURED)


class SmtpEmailSender:
    """Send via an SMTP relay (e.g. Gmail) using STARTTLS."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send_welcome_email(self, email: str, unsubscribe_token: str) -> SendEmailResult:
        settings = self.settings
        if not settings.smtp_password:
            logger.error("SMTP password not configured")
            return SendEmailResult(success=False, error=NOT_CONFIGURED)

        subject, html_body, text_body = render_welcome_email(settings, email, unsubscribe_token)

        msg = MIMEMultipart("alternative")
        msg["From"] = f"{settings.email_from_name} <{settings.email_from_address}>"
        msg["To"] = email
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                server.starttls()
                server.login(settings.smtp_username or settings.email_from_address, settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error for {email}: {e}")
            return SendEmailResult(success=False, error=str(e))

        logger.info(f"Welcome email sent to {email} via SMTP")
        return SendEmailResult(success=True)


class BrevoEmailSender:
    """Send via the Brevo transactional email API."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.client = client or httpx.Client(timeout=30.0)

    def send_welcome_email(self, email: str, unsubscribe_token: str) -> SendEmailResult:
        settings = self.settings
        if not settings.brevo_api_key:
            logger.error("Brevo API key not configured")
            return SendEmailResult(success=False, error=NOT_CONFIGURED)

        subject, html_body, text_body = render_welcome_email(settings, email, unsubscribe_token)
        sender = {"name": settings.email_from_name, "email": settings.email_from_address}
        payload = {
            "sender": sender,
            "to": [{"email": email, "name": email.split("@")[0]}],
            "subject": subject,
            "htmlContent": html_body,
            "textContent": text_body,
            "replyTo": sender,
        }

        try:
            response = self.client.post(
                BREVO_API_URL,
                json=payload,
                headers={
                    "api-key": settings.brevo_api_key,
                    "accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Brevo request failed for {email}: {e}")
            return SendEmailResult(success=False, error=str(e))

        if response.status_code not in (200, 201, 202):
            try:
                error = response.json().get("message") or response.text
            except ValueError:
                error = response.text
            logger.error(f"Brevo returned {response.status_code} for {email}: {error}")
            return SendEmailResult(success=False, error=error or f"HTTP {response.status_code}")

        message_id = response.json().get("messageId")
        logger.info(f"Welcome email sent to {email} via Brevo (messageId={message_id})")
        return SendEmailResult(success=True, message_id=message_id)


class ResendEmailSender:
    """Send via the Resend API."""

    def __init__(self, settings: Settings):
        self.settings = settings
        if settings.resend_api_key:
            resend.api_key = settings.resend_api_key

    def send_welcome_email(self, email: str, unsubscribe_token: str) -> SendEmailResult:
        settings = self.settings
        if not settings.resend_api_key:
            logger.error("Resend API key not configured")
            return SendEmailResult(success=False, error=NOT_CONFIGURED)

        subject, html_body, text_body = render_welcome_email(settings, email, unsubscribe_token)
        params = {
            "from": f"{settings.email_from_name} <{settings.email_from_address}>",
            "to": [email],
            "subject": subject,
            "html": html_body,
            "text": text_body,
            "tags": [{"name": "category", "value": "welcome_newsletter"}],
        }

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            logger.error(f"Resend error for {email}: {e}")
            return SendEmailResult(success=False, error=str(e))

        message_id = response.get("id") if response else None
        if not message_id:
            logger.error(f"Resend returned no message id for {email}: {response}")
            return SendEmailResult(success=False, error="Failed to send email")

        logger.info(f"Welcome email sent to {email} via Resend (id={message_id})")
        return SendEmailResult(success=True, message_id=message_id)


class SendGridEmailSender:
    """Send via the SendGrid API."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send_welcome_email(self, email: str, unsubscribe_token: str) -> SendEmailResult:
        settings = self.settings
        if not settings.sendgrid_api_key:
            logger.warning("SendGrid API key not configured - email not sent")
            return SendEmailResult(success=False, error=NOT_CONFIGURED)

        subject, html_body, text_body = render_welcome_email(settings, email, unsubscribe_token)

        try:
            message = Mail(
                from_email=Email(settings.email_from_address, settings.email_from_name),
                to_emails=To(email),
                subject=subject,
                plain_text_content=Content("text/plain", text_body),
                html_content=Content("text/html", html_body),
            )

            sg = SendGridAPIClient(settings.sendgrid_api_key)
            response = sg.send(message)
        except Exception as e:
            logger.error(f"Error sending email to {email}: {str(e)}")
            return SendEmailResult(success=False, error=str(e))

        if response.status_code in (200, 201, 202):
            message_id = response.headers.get("X-Message-Id") if response.headers else None
            logger.info(f"Welcome email sent to {email} via SendGrid")
            return SendEmailResult(success=True, message_id=message_id)

        logger.error(f"Failed to send email to {email}: {response.status_code}")
        return SendEmailResult(success=False, error=f"SendGrid returned {response.status_code}")


SENDERS = {
    "disabled": DisabledEmailSender,
    "smtp": SmtpEmailSender,
    "brevo": BrevoEmailSender,
    "resend": ResendEmailSender,
    "sendgrid": SendGridEmailSender,
}


def create_email_sender(settings: Settings):
    """Build the sender for settings.email_provider."""
    provider = (settings.email_provider or "disabled").lower()
    try:
        sender_class = SENDERS[provider]
    except KeyError:
        raise ValueError(f"Unknown email provider: {settings.email_provider}")
    logger.info(f"Email provider: {provider}")
    return sender_class(settings)


@lru_cache()
def get_email_sender():
    """Get the process-wide email sender."""
    return create_email_sender(get_settings())


def dispatch_welcome_email(sender, email: str, unsubscribe_token: str) -> SendEmailResult:
    """
    Send a welcome email without ever raising.

    Runs after the subscribe response has gone out, so failures are only logged.
    """
    try:
        result = sender.send_welcome_email(email, unsubscribe_token)
    except Exception as e:
        error = EmailDispatchError(f"Welcome email to {email} failed: {e}")
        logger.error(error.message, exc_info=True)
        return SendEmailResult(success=False, error=str(e))

    if result.success:
        logger.info(f"Welcome email dispatched to {email}")
    else:
        error = EmailDispatchError(f"Welcome email to {email} failed: {result.error}")
        logger.error(error.message)
    return result
