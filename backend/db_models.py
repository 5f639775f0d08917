"""
SQLAlchemy database models for the newsletter API.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from database import Base


class NewsletterSubscriber(Base):
    """A single email address and its newsletter membership state."""
    __tablename__ = "newsletter_subscribers"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(255), unique=True, nullable=False, index=True)  # Always lowercase, trimmed
    confirmed = Column(Boolean, default=False, nullable=False)

    # Unsubscribe tracking
    unsubscribe_token = Column(String(64), unique=True, nullable=False, index=True)  # Never regenerated
    unsubscribed_at = Column(DateTime(timezone=True))  # NULL while active

    # Audit
    ip_address = Column(String(64))
    user_agent = Column(String(500))

    # Timestamps
    subscribed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_active(self) -> bool:
        return self.unsubscribed_at is None

    def __repr__(self):
        state = "active" if self.is_active else "unsubscribed"
        return f"<NewsletterSubscriber {self.email} ({state})>"
