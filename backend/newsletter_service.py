"""
Newsletter subscription service.

Maps an email address to a subscriber record and moves it between the
subscribed and unsubscribed states. Used by both the FastAPI routes and the
serverless handler, so nothing in here knows about HTTP.

State transitions:
- new email              -> created (active, unconfirmed, fresh token)
- active, subscribe      -> unchanged (already subscribed)
- inactive, subscribe    -> active again, subscribed_at refreshed, token kept
- active, unsubscribe    -> inactive
"""
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db_models import NewsletterSubscriber
from email_service import dispatch_welcome_email
from errors import InvalidInput, InvalidToken, NotFound, PersistenceError

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BASE36_ALPHABET = string.digits + string.ascii_lowercase
TOKEN_FRAGMENT_LENGTH = 13
RECENT_SUBSCRIPTION_DAYS = 7


# =============================================================================
# Results
# =============================================================================

@dataclass
class SubscribeResult:
    message: str
    already_subscribed: bool


@dataclass
class UnsubscribeByTokenResult:
    email: str


@dataclass
class NewsletterStats:
    total_subscribers: int
    active_subscribers: int
    unsubscribed: int
    recent_subscriptions: int

    def to_dict(self) -> dict:
        return {
            "totalSubscribers": self.total_subscribers,
            "activeSubscribers": self.active_subscribers,
            "unsubscribed": self.unsubscribed,
            "recentSubscriptions": self.recent_subscriptions,
        }


# =============================================================================
# Helpers
# =============================================================================

def is_valid_email(email: Optional[str]) -> bool:
    """Check an address has the shape local@domain.tld."""
    if not email or not isinstance(email, str):
        return False
    return EMAIL_REGEX.match(email.strip()) is not None


def normalize_email(email: str) -> str:
    """Normalize an email for storage and lookup (lowercase, strip whitespace)."""
    return email.strip().lower()


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_unsubscribe_token() -> str:
    """
    Generate an unsubscribe token like 'mgx1k2p3-<26 random chars>'.

    Base-36 millisecond timestamp followed by two base-36 random fragments.
    Only gates the unsubscribe link, never authentication.
    """
    timestamp = _to_base36(int(time.time() * 1000))
    part1 = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(TOKEN_FRAGMENT_LENGTH))
    part2 = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(TOKEN_FRAGMENT_LENGTH))
    return f"{timestamp}-{part1}{part2}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_inline(func: Callable, *args) -> None:
    """Scheduler that runs the task immediately (used where no task queue exists)."""
    func(*args)


# =============================================================================
# Service
# =============================================================================

class NewsletterService:
    """
    Subscription state manager.

    Args:
        db: Database session (one per request)
        email_sender: Object with send_welcome_email(email, unsubscribe_token)
        schedule: Callable taking (func, *args) that runs func after the
            caller's response; FastAPI's BackgroundTasks.add_task fits
        send_welcome_email: Whether (re)subscribing triggers the welcome email
    """

    def __init__(
        self,
        db: Session,
        email_sender=None,
        schedule: Callable = run_inline,
        send_welcome_email: bool = True,
    ):
        self.db = db
        self.email_sender = email_sender
        self.schedule = schedule
        self.send_welcome_email = send_welcome_email

    # ------------------------------------------------------------------ lookups

    def _get_by_email(self, email: str) -> Optional[NewsletterSubscriber]:
        return self.db.query(NewsletterSubscriber).filter(
            NewsletterSubscriber.email == email
        ).first()

    def _get_by_token(self, token: str) -> Optional[NewsletterSubscriber]:
        return self.db.query(NewsletterSubscriber).filter(
            NewsletterSubscriber.unsubscribe_token == token
        ).first()

    def _schedule_welcome_email(self, email: str, unsubscribe_token: str) -> None:
        if not self.send_welcome_email or self.email_sender is None:
            return
        self.schedule(dispatch_welcome_email, self.email_sender, email, unsubscribe_token)

    # -------------------------------------------------------------- transitions

    def subscribe(
        self,
        email: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SubscribeResult:
        """Subscribe an email, resubscribing it if it was previously unsubscribed."""
        if not is_valid_email(email):
            raise InvalidInput("Invalid email format")

        normalized = normalize_email(email)

        try:
            existing = self._get_by_email(normalized)
            if existing:
                return self._handle_existing(existing)

            subscriber = NewsletterSubscriber(
                email=normalized,
                ip_address=ip_address[:64] if ip_address else None,
                user_agent=user_agent[:500] if user_agent else None,
                unsubscribe_token=generate_unsubscribe_token(),
                confirmed=False,
                subscribed_at=utcnow(),
            )
            self.db.add(subscriber)
            try:
                self.db.commit()
            except IntegrityError:
                # Another request inserted the same email first
                self.db.rollback()
                logger.info(f"Concurrent subscribe detected for {normalized}, re-reading")
                existing = self._get_by_email(normalized)
                if existing is None:
                    raise
                return self._handle_existing(existing)

            token = subscriber.unsubscribe_token
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Newsletter subscription error for {normalized}: {e}", exc_info=True)
            raise PersistenceError("Failed to subscribe to newsletter") from e

        logger.info(f"New newsletter subscriber: {normalized}")
        self._schedule_welcome_email(normalized, token)
        return SubscribeResult(
            message="Successfully subscribed to newsletter",
            already_subscribed=False,
        )

    def _handle_existing(self, subscriber: NewsletterSubscriber) -> SubscribeResult:
        if subscriber.is_active:
            logger.info(f"Email is already subscribed: {subscriber.email}")
            return SubscribeResult(
                message="Email is already subscribed",
                already_subscribed=True,
            )

        subscriber.unsubscribed_at = None
        subscriber.subscribed_at = utcnow()
        subscriber.confirmed = False
        self.db.commit()

        logger.info(f"Resubscribed previously unsubscribed email: {subscriber.email}")
        self._schedule_welcome_email(subscriber.email, subscriber.unsubscribe_token)
        return SubscribeResult(
            message="Successfully resubscribed to newsletter",
            already_subscribed=False,
        )

    def unsubscribe(self, email: Optional[str]) -> None:
        """Unsubscribe the active subscriber with this email."""
        if not email or not email.strip():
            raise InvalidInput("Email is required")

        normalized = normalize_email(email)
        try:
            updated = self.db.query(NewsletterSubscriber).filter(
                NewsletterSubscriber.email == normalized,
                NewsletterSubscriber.unsubscribed_at.is_(None),
            ).update(
                {NewsletterSubscriber.unsubscribed_at: utcnow()},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Newsletter unsubscribe error for {normalized}: {e}", exc_info=True)
            raise PersistenceError("Failed to unsubscribe from newsletter") from e

        if not updated:
            raise NotFound("Email not found or already unsubscribed")

        logger.info(f"Subscriber unsubscribed: {normalized}")

    def unsubscribe_by_token(self, token: Optional[str]) -> UnsubscribeByTokenResult:
        """Unsubscribe via an email link. Already unsubscribed tokens are not an error."""
        if not token:
            raise InvalidToken("Invalid unsubscribe link")

        try:
            subscriber = self._get_by_token(token)
            if subscriber is None:
                raise InvalidToken("Invalid unsubscribe link")

            if not subscriber.is_active:
                return UnsubscribeByTokenResult(email=subscriber.email)

            subscriber.unsubscribed_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Unsubscribe by token error: {e}", exc_info=True)
            raise PersistenceError("Failed to unsubscribe") from e

        logger.info(f"Subscriber unsubscribed via token: {subscriber.email}")
        return UnsubscribeByTokenResult(email=subscriber.email)

    # ---------------------------------------------------------------- reporting

    def get_stats(self) -> NewsletterStats:
        """Total, active, unsubscribed and last-7-days counts."""
        since = utcnow() - timedelta(days=RECENT_SUBSCRIPTION_DAYS)
        count = func.count(NewsletterSubscriber.id)
        try:
            total = self.db.query(count).scalar()
            active = self.db.query(count).filter(
                NewsletterSubscriber.unsubscribed_at.is_(None)
            ).scalar()
            unsubscribed = self.db.query(count).filter(
                NewsletterSubscriber.unsubscribed_at.isnot(None)
            ).scalar()
            recent = self.db.query(count).filter(
                NewsletterSubscriber.unsubscribed_at.is_(None),
                NewsletterSubscriber.subscribed_at >= since,
            ).scalar()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching newsletter stats: {e}", exc_info=True)
            raise PersistenceError("Failed to fetch newsletter stats") from e

        return NewsletterStats(
            total_subscribers=total or 0,
            active_subscribers=active or 0,
            unsubscribed=unsubscribed or 0,
            recent_subscriptions=recent or 0,
        )

    def get_active_subscribers(self) -> List[str]:
        """Emails of confirmed, active subscribers, newest first."""
        try:
            rows = self.db.query(NewsletterSubscriber.email).filter(
                NewsletterSubscriber.unsubscribed_at.is_(None),
                NewsletterSubscriber.confirmed == True,
            ).order_by(NewsletterSubscriber.subscribed_at.desc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Get active subscribers error: {e}", exc_info=True)
            raise PersistenceError("Failed to fetch active subscribers") from e

        return [row.email for row in rows]
