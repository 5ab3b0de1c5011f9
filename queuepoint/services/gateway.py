from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from queuepoint.errors import GatewayFailure

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, *, operation: str) -> Iterator[Session]:
    """Run one compound write as a single transaction.

    Every write issued inside the block commits together or not at all. Storage
    errors roll the whole block back and surface as GatewayFailure; domain errors
    roll back and propagate unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('%s rolled back after a storage error; verify state before retrying', operation, exc_info=True)
        raise GatewayFailure(f'{operation} failed: storage unavailable') from exc
    except Exception:
        db.rollback()
        raise
