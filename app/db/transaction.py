from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Commit on success, roll back on any error.

    Lost races surface from the database as a unique violation on the
    active-participation index, a serialization failure or a lock timeout;
    they are rolled back and reported as ConflictError so the caller retries.
    Nothing is retried here.
    """
    try:
        yield db
        db.commit()
    except (IntegrityError, OperationalError) as exc:
        db.rollback()
        logger.info("transaction conflict", extra={"error": type(exc.orig).__name__ if exc.orig else None})
        raise ConflictError("Concurrent update detected, please retry.") from exc
    except Exception:
        db.rollback()
        raise
