# tannery/db.py
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from tannery import monitoring

# Default dev DB; on Vercel api/index.py points DATABASE_URL at /tmp before import
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tannery.db")


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    connect_args = {"check_same_thread": False}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every worker thread sees an empty DB
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db():
    # Create tables if they don't exist
    try:
        import tannery.models as models  # noqa: F841
        Base.metadata.create_all(bind=engine)
    except Exception:
        # don't crash the app at import time; the first query will surface the problem
        monitoring.logger.exception("DB init failed")
