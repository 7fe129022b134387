"""
Database Session Manager for Celery Tasks

One session per task invocation, always closed, rolled back on error.
"""
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session

from mentionradar.db.database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def get_celery_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions in Celery tasks.

    Usage:
        @celery_app.task
        def my_task():
            with get_celery_db_session() as db:
                monitors = db.query(Monitor).all()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Database error in Celery task, rolling back: {e}")
        db.rollback()
        raise
    finally:
        db.close()
