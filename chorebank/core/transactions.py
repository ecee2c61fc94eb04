from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from chorebank.core.env import ReadIntEnv
from chorebank.core.errors import ConcurrencyConflictError

logger = logging.getLogger("app.transactions")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def RunInTransaction(db: Session, work: Callable[[], T], *, attempts: int | None = None, label: str = "transaction") -> T:
    max_attempts = attempts or ReadIntEnv("TRANSACTION_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    if max_attempts < 1:
        max_attempts = 1

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except (StaleDataError, OperationalError) as exc:
            db.rollback()
            last_error = exc
            logger.warning("%s conflict attempt=%s/%s error=%s", label, attempt, max_attempts, exc.__class__.__name__)
        except Exception:
            db.rollback()
            raise

    raise ConcurrencyConflictError(f"{label} could not be completed after {max_attempts} attempts") from last_error
