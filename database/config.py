# Database Configuration and Session Management

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager
import logging
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Database URL from environment variable
# Use a postgresql:// URL in deployments; the SQLite default is for local runs
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./collaboration.db")


def build_engine(url: str):
    """Create an engine with pool settings appropriate for the backend."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=False  # Set to True for SQL query logging
    )


# Create engine
engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_context(session_factory=None):
    """
    Context manager for a single unit of work.
    Usage:
    with get_db_context() as db:
        # do something with db
    Commits on success, rolls back and re-raises on any error.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind=None):
    """
    Initialize database tables.
    Run this once to create all tables.
    """
    from database.models import Base
    from database import collaboration_models  # noqa: F401 - registers tables
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully")


if __name__ == "__main__":
    # Create tables when run directly
    init_db()
