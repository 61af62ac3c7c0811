import logging
import os
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cipherroom.models.base import Base

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

# DATABASE_URL wins (hosted Postgres hands out a single URL); otherwise the
# URL is assembled from the individual DB_* variables.
DB_USER = os.getenv("DB_USER", "cipherroom")
DB_PASS = os.getenv("DB_PASS", "cipherroom")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "cipherroom")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# =========================
# ENGINE CONFIGURATION
# =========================


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,  # Check connections before using them
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

# =========================
# SESSION CONFIGURATION
# =========================

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# =========================
# DATABASE FUNCTIONS
# =========================

def get_db():
    """
    FastAPI dependency to provide a DB session to routes.
    Usage:
        def my_route(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session():
    """
    Context manager for standalone DB operations (scripts, maintenance).
    Commits on success, rolls back on any error.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(drop: bool = False):
    """
    Create all tables for the registered models.
    With drop=True every table is dropped first.
    """
    # Import models here to register them with Base
    from cipherroom.models.message import Message  # noqa: F401

    if drop:
        Base.metadata.drop_all(bind=engine)
        logger.warning("Dropped all tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def test_connection() -> bool:
    """
    Test DB connection with a trivial query.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


# pytest would otherwise collect the helper above when it is imported by name
test_connection.__test__ = False
