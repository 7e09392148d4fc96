"""Engine and request-scoped sessions"""
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from lemons.core.config import settings
from lemons.models.base import Base


def engine_options(database_url: str) -> Dict[str, Any]:
    """Connection options for the backend named in the URL.

    Webhook deliveries can sit idle for long stretches, so server databases
    get pre-ping and recycling. SQLite (local runs, tests) has no server side
    to drop connections but must be shareable across request threads.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 1800, "pool_size": 5, "max_overflow": 10}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Writes are committed explicitly by the services
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables. Existing tables are left as they are."""
    import lemons.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
