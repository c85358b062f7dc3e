"""
Local reminders
===============

The lifecycle manager only talks to a ``ReminderSink``. ``LocalReminderSink``
keeps pending reminders in the store and ``ReminderDispatcher`` delivers the
ones that came due from a background timer.
"""
import json
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from maintrack.errors import ReminderError
from maintrack.model.db import KeyValueStore
from maintrack.model.entities import Reminder
from maintrack.utils.scheduler import RepeatedTimer
from maintrack.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

REMINDERS_KEY = "factory_reminders"


class ReminderSink(Protocol):
    def schedule_reminder(self, reminder_id: str, title: str, body: str,
                          fire_at: datetime) -> str:
        """Register a reminder and return an opaque handle for it."""

    def cancel_reminder(self, handle: str) -> None:
        """Cancel a reminder by handle."""


class LocalReminderSink:
    """Reminder sink persisted in the ``factory_reminders`` slot."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._lock = threading.Lock()

    def _load(self) -> List[dict]:
        raw = self.store.get(REMINDERS_KEY)
        return json.loads(raw) if raw else []

    def _dump(self, rows: List[dict]) -> None:
        self.store.put(REMINDERS_KEY, json.dumps(rows, ensure_ascii=False))

    def schedule_reminder(self, reminder_id: str, title: str, body: str,
                          fire_at: datetime) -> str:
        reminder = Reminder(id=str(reminder_id), title=title, body=body, fire_at=as_utc(fire_at))
        with self._lock:
            try:
                rows = [r for r in self._load() if r["id"] != reminder.id]
                rows.append(reminder.to_dict())
                self._dump(rows)
            except SQLAlchemyError as e:
                raise ReminderError(f"Could not store reminder {reminder.id}") from e
        logger.debug("Reminder %s scheduled for %s", reminder.id, reminder.fire_at)
        return reminder.id

    def cancel_reminder(self, handle: str) -> None:
        with self._lock:
            try:
                rows = self._load()
                kept = [r for r in rows if r["id"] != str(handle)]
                if len(kept) != len(rows):
                    self._dump(kept)
            except SQLAlchemyError as e:
                raise ReminderError(f"Could not cancel reminder {handle}") from e
        logger.debug("Reminder %s cancelled", handle)

    def clear(self) -> None:
        """Drop every pending reminder."""
        with self._lock:
            self.store.delete(REMINDERS_KEY)

    def pending(self) -> List[Reminder]:
        return [Reminder.from_dict(r) for r in self._load()]

    def pop_due(self, now: datetime) -> List[Reminder]:
        """Remove and return reminders whose fire time is at or before ``now``."""
        now = as_utc(now)
        with self._lock:
            reminders = [Reminder.from_dict(r) for r in self._load()]
            due = [r for r in reminders if r.fire_at <= now]
            if due:
                self._dump([r.to_dict() for r in reminders if r.fire_at > now])
        return due


def log_delivery(reminder: Reminder) -> None:
    logger.info("%s: %s", reminder.title, reminder.body)


class ReminderDispatcher:
    """Delivers due reminders of a ``LocalReminderSink`` on a background timer."""

    def __init__(self, sink: LocalReminderSink,
                 deliver: Callable[[Reminder], None] = log_delivery,
                 interval_seconds: float = 30,
                 clock: Callable[[], datetime] = utcnow):
        self.sink = sink
        self.deliver = deliver
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._timer: Optional[RepeatedTimer] = None

    def dispatch_due(self) -> int:
        """Deliver every reminder that came due. Returns how many were delivered."""
        delivered = 0
        for reminder in self.sink.pop_due(self.clock()):
            try:
                self.deliver(reminder)
                delivered += 1
            except Exception:
                logger.exception("Delivering reminder %s failed", reminder.id)
        return delivered

    def start(self) -> None:
        if self._timer is None:
            self._timer = RepeatedTimer(self.interval_seconds, self.dispatch_due,
                                        run_immediately=True, name="reminder-dispatcher")
            self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
