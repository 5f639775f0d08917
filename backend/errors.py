"""
Errors raised by the newsletter service.

Each error carries the HTTP status the API maps it to.
"""


class NewsletterError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(NewsletterError):
    """Malformed or missing email."""
    status_code = 400


class NotFound(NewsletterError):
    """No active subscriber for the given email."""
    status_code = 400


class InvalidToken(NewsletterError):
    """No subscriber owns the given unsubscribe token."""
    status_code = 400


class Unauthorized(NewsletterError):
    """Webhook secret missing or wrong."""
    status_code = 401


class PersistenceError(NewsletterError):
    """The database read or write failed."""
    status_code = 500


class EmailDispatchError(NewsletterError):
    """Welcome email could not be sent. Logged only, never raised to callers."""
    status_code = 500
