# agentfails/db.py
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from .config import get_settings

# -----------------------------------------------------------------------------
# Build & normalize DATABASE_URL
#   - Accepts postgres:// or postgresql://; converts to postgresql+psycopg://
#   - Appends ?sslmode=require for non-local connections if not present
# -----------------------------------------------------------------------------

def _normalize_db_url(raw: Optional[str]) -> str:
    db_url = (raw or "").strip()

    if not db_url:
        # Local dev fallback when DATABASE_URL is not set.
        return "sqlite:///./agentfails.db"

    # Normalize scheme: postgres://  -> postgresql://
    db_url = db_url.replace("postgres://", "postgresql://", 1)

    # Ensure psycopg (v3) driver is used unless a driver is already specified
    if db_url.startswith("postgresql://") and "+psycopg" not in db_url and "+psycopg2" not in db_url:
        db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)

    # Hosted providers (Supabase/Neon/RDS/etc.) require SSL. Add if missing.
    if (
        db_url.startswith("postgresql")
        and "localhost" not in db_url
        and "127.0.0.1" not in db_url
        and "sslmode=" not in db_url
    ):
        db_url += ("&" if "?" in db_url else "?") + "sslmode=require"

    return db_url


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(
        url,
        pool_pre_ping=True,   # drop dead connections before issuing queries
        future=True,
    )


DATABASE_URL = _normalize_db_url(get_settings().database_url)

# -----------------------------------------------------------------------------
# SQLAlchemy setup
# -----------------------------------------------------------------------------

engine = _make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session and ensures close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create tables if they don't exist yet."""
    from . import models  # noqa: F401  ensure models are registered
    Base.metadata.create_all(bind=bind or engine)
