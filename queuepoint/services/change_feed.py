from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'
ALL_EVENTS = frozenset({INSERT, UPDATE, DELETE})


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    row: dict
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def as_dict(self) -> dict:
        return {
            'table': self.table,
            'event': self.event,
            'row': self.row,
            'occurred_at': self.occurred_at.isoformat(),
        }


Callback = Callable[[ChangeEvent], None]


class ChangeFeed:
    """In-process table change notifications.

    Writers publish after their transaction commits; subscribers register per table
    with an event mask and get back a handle that unsubscribes them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: dict[int, tuple[str, frozenset[str], Callback]] = {}

    def subscribe(self, table: str, callback: Callback, events: Iterable[str] = ALL_EVENTS) -> Callable[[], None]:
        mask = frozenset(events)
        unknown = mask - ALL_EVENTS
        if unknown:
            raise ValueError(f'Unknown change events: {sorted(unknown)}')
        with self._lock:
            subscription_id = next(self._ids)
            self._subscribers[subscription_id] = (table, mask, callback)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(subscription_id, None)

        return unsubscribe

    def publish(self, table: str, event: str, row: dict) -> ChangeEvent:
        change = ChangeEvent(table=table, event=event, row=row)
        with self._lock:
            targets = [cb for (t, mask, cb) in self._subscribers.values() if t == table and event in mask]
        for callback in targets:
            try:
                callback(change)
            except Exception:
                logger.exception('Change subscriber for %s raised; continuing', table)
        return change

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscribers)
            return sum(1 for (t, _, _) in self._subscribers.values() if t == table)
