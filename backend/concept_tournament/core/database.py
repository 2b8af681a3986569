"""
Database configuration
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from concept_tournament.core.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False  # True prints every SQL statement
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@contextmanager
def session_scope(factory=None) -> Iterator[Session]:
    """Open a session for one unit of work, rolling back on error"""
    db = (factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_tables(bind=None):
    """Create all tables on the given engine"""
    # Models must be imported so they register with Base.metadata
    from concept_tournament.models.tournament import Tournament  # noqa: F401
    from concept_tournament.models.idea import Idea  # noqa: F401
    from concept_tournament.models.review import Review  # noqa: F401
    from concept_tournament.models.lane_result import LaneResult  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


async def init_db():
    """Initialise the database"""
    create_tables()
    logger.info("Database initialised at %s", settings.DATABASE_URL)
