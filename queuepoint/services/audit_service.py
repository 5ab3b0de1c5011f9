from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from queuepoint.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_principal_id=actor_principal_id,
        action=action,
        ip=ip,
        meta=metadata or {},
    )
    db.add(entry)
    return entry


@contextmanager
def audited(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> Iterator[dict]:
    """Record an audit row in the same transaction as the write it describes.

    The row is pending before the block runs, so the write's own commit carries
    it and a rolled back write takes it along. Keys added to the yielded dict
    once the write has returned are saved with one more commit.
    """
    details = dict(metadata or {})
    entry = log_audit(db, actor_principal_id=actor_principal_id, action=action, ip=ip, metadata=dict(details))
    try:
        yield details
    except Exception:
        if entry in db.new:
            db.expunge(entry)
        raise
    if entry.meta != details:
        entry.meta = details
    db.commit()
