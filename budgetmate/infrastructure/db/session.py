"""
Database engine and sessions (SQLAlchemy 2.0 on PostgreSQL/psycopg)
"""
import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from budgetmate.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the engine's tables"""
    pass


# Created lazily on first use, one per process
_engine = None
_SessionLocal = None


def get_engine():
    """Process-wide engine; SQL echo follows DEBUG"""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.get_sqlalchemy_url(),
            pool_pre_ping=True,
            echo=settings.DEBUG,
        )
    return _engine


def get_session_factory():
    """Session factory bound to the process-wide engine"""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Session:
    """
    FastAPI dependency: one session per request, closed afterwards.

    Use cases commit or roll back themselves; anything left open is
    discarded on close.

    Usage:
        @router.get("/funding-status")
        def funding(db: Session = Depends(get_db)):
            ...
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def check_db_connection(connect_timeout: int = 3) -> None:
    """
    Readiness probe: run SELECT 1 over a raw psycopg connection

    Raises:
        psycopg.OperationalError: database unreachable
    """
    settings = get_settings()
    with psycopg.connect(settings.DATABASE_URL, connect_timeout=connect_timeout) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()
