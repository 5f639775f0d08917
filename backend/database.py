"""
Engine, session factory and declarative base for the subscriber store.

DATABASE_URL picks the backend: a local SQLite file by default, PostgreSQL
in production. Each API request gets its own session through get_db.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import get_settings


def build_engine(url: str) -> Engine:
    """Create the engine with options suited to the database backend."""
    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool, not the creating thread
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = build_engine(get_settings().sqlalchemy_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a request-scoped session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the newsletter_subscribers table if it does not exist yet."""
    import db_models  # noqa: F401  (registers NewsletterSubscriber on Base)
    Base.metadata.create_all(bind=engine)


def check_connection(db: Session) -> bool:
    """Run a trivial query to confirm the database is reachable."""
    db.execute(text("SELECT 1"))
    return True
