from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from .errors import ContentionError


TX_LOGGER = logging.getLogger("rental_ledger.db")

_LOCK_ERROR_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock wait timeout",
    "deadlock",
    "could not obtain lock",
    "lock timeout",
    "could not serialize access",
)


def is_lock_error(exc: DBAPIError) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


@contextmanager
def ledger_transaction(db: Session) -> Iterator[Session]:
    """Run one top-level ledger operation as a single unit.

    Commits when the block finishes, rolls back on any exception. Lock-wait
    failures reported by the driver surface as ``ContentionError``.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_lock_error(exc):
            TX_LOGGER.warning("Transaction aborted by lock contention: %s", exc.orig)
            raise ContentionError("The record is busy. Please retry the operation.") from exc
        raise
    except Exception:
        db.rollback()
        raise
