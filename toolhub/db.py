from contextlib import contextmanager

import structlog
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .errors import ConflictError


logger = structlog.get_logger(__name__)

_is_sqlite = settings.database_url.startswith("sqlite")

engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    pool_recycle=3600,  # Recycle connections after 1 hour
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    **({} if _is_sqlite else {"pool_size": 5, "max_overflow": 10}),
)

# One Session per request; never share across threads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """Run a unit of work: commit on success, roll back on any error.

    Store constraint violations and lost optimistic-version races are re-raised
    as ConflictError after the rollback.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("transaction_conflict", error=str(e.orig))
        raise ConflictError("Record conflicts with existing data") from e
    except StaleDataError as e:
        db.rollback()
        logger.warning("transaction_stale", error=str(e))
        raise ConflictError("Record was modified concurrently, please retry") from e
    except Exception as e:
        db.rollback()
        logger.warning("transaction_rolled_back", error_type=type(e).__name__, error=str(e))
        raise
