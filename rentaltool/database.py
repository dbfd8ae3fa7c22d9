from contextlib import contextmanager
from sqlmodel import create_engine, Session
import logging

from . import config
from .errors import ServiceError

logger = logging.getLogger(__name__)

connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)


def get_session():
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session):
    """Commit everything done in the block at once, or nothing."""
    try:
        yield session
        session.commit()
    except ServiceError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception("Transaction rolled back")
        raise
