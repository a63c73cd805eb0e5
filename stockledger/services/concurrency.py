"""
Frontières transactionnelles des écritures.

Les services ne font jamais commit : ils flush et laissent l'appelant décider.
`run_in_transaction` est l'appelant standard (API, réconciliation) :
commit si OK, rollback sinon, retry borné sur ConcurrentModificationError
uniquement.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.app.logging_config import get_logger
from stockledger.services.errors import ConcurrentModificationError

logger = get_logger("services.concurrency")

T = TypeVar("T")

RETRY_BACKOFF_SECONDS = 0.05


@contextmanager
def conflicts_as(entity: str, key) -> Iterator[None]:
    """Traduit les conflits SQL (version périmée, insert concurrent) en erreur retryable."""
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrentModificationError(entity, key) from exc
    except IntegrityError as exc:
        raise ConcurrentModificationError(entity, key) from exc


def run_in_transaction(
    session: Session,
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    backoff: float = RETRY_BACKOFF_SECONDS,
) -> T:
    """
    Exécute `operation` puis commit.

    - ConcurrentModificationError : rollback, puis nouvelle tentative (max `attempts`)
    - toute autre erreur : rollback, propagée telle quelle
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            try:
                session.commit()
            except (StaleDataError, IntegrityError) as exc:
                raise ConcurrentModificationError("transaction", attempt) from exc
            return result
        except ConcurrentModificationError as exc:
            session.rollback()
            if attempt == attempts:
                logger.warning(
                    "write_conflict_exhausted",
                    extra={"attempts": attempts, "entity": exc.entity, "key": exc.key},
                )
                raise
            logger.info(
                "write_conflict_retry",
                extra={"attempt": attempt, "entity": exc.entity, "key": exc.key},
            )
            if backoff:
                time.sleep(backoff * attempt)
        except Exception:
            session.rollback()
            raise

    raise AssertionError("unreachable")
