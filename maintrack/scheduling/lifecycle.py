"""
Schedule Lifecycle Manager
==========================

Creates and edits maintenance schedules and records completed maintenance,
keeping the reminder sink in line with each schedule's stored due date.

Policies:
- Reminders are best effort. A sink failure never undoes a data write; it is
  logged and handed back to the caller as ``reminder_error``.
- Completing maintenance writes the event, the machine's last-maintenance
  timestamp and the advanced schedule in one store transaction.
- Each completion attempt carries an idempotency key, so retrying the same
  attempt does not log the event twice or advance the schedule twice.
"""
import hashlib
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional, Union

from maintrack.errors import ValidationError
from maintrack.model.db import KeyValueStore
from maintrack.model.entities import (
    Machine, MaintenanceEvent, MaintenanceSchedule, Recurrence, new_id,
)
from maintrack.model.repository import (
    EventRepository, MachineRepository, ScheduleRepository, SettingsRepository,
)
from maintrack.scheduling.recurrence import compute_next_due_date, effective_interval_days
from maintrack.utils.i18n import t
from maintrack.utils.reminders import ReminderSink
from maintrack.utils.timeutil import as_aware, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScheduleInput:
    """What the schedule form submits. ``next_due_date`` is chosen by the user."""
    machine_id: str
    recurrence: Union[Recurrence, str]
    next_due_date: Optional[datetime]
    interval_days: Optional[int] = None
    schedule_id: Optional[str] = None


@dataclass
class ScheduleSaveResult:
    schedule: MaintenanceSchedule
    reminder_error: Optional[str] = None


@dataclass
class CompletionResult:
    event: MaintenanceEvent
    machine: Machine
    schedule: MaintenanceSchedule
    reminder_error: Optional[str] = None
    duplicate: bool = False


def completion_key(machine_id: str, schedule_id: str, attempted_at: datetime) -> str:
    """Deterministic key of one completion attempt, to the second."""
    second = int(as_utc(attempted_at).timestamp())
    return hashlib.sha256(f"{machine_id}|{schedule_id}|{second}".encode("utf-8")).hexdigest()


class ScheduleLifecycleManager:
    """Coordinates schedule writes, maintenance completion and reminders."""

    def __init__(self, store: KeyValueStore, machines: MachineRepository,
                 schedules: ScheduleRepository, events: EventRepository,
                 settings: SettingsRepository, sink: ReminderSink,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.machines = machines
        self.schedules = schedules
        self.events = events
        self.settings = settings
        self.sink = sink
        self.clock = clock

    # -------------------------
    # Queries
    # -------------------------
    def schedules_for_machine(self, machine_id: str) -> List[MaintenanceSchedule]:
        return self.schedules.by_machine(machine_id)

    def current_schedule(self, machine_id: str) -> Optional[MaintenanceSchedule]:
        """The machine's schedule that comes due first, None if it has none."""
        schedules = self.schedules_for_machine(machine_id)
        if not schedules:
            return None
        return min(schedules, key=lambda s: as_utc(s.next_due_date))

    # -------------------------
    # Schedule create / update
    # -------------------------
    def create_or_update_schedule(self, data: ScheduleInput) -> ScheduleSaveResult:
        """
        Save a schedule, then (re)register its reminder at the stored due date.

        Raises
        ------
        ValidationError
            Unknown machine, unknown recurrence or missing due date. Nothing
            is written in that case. A missing or non-positive Custom
            interval is not an error: it is stored as 7 days.

        The due date keeps the caller's UTC offset, so later calendar steps
        land on the same local day of month.
        """
        machine = self.machines.get_by_id(data.machine_id)
        if machine is None:
            raise ValidationError(f"Unknown machine: {data.machine_id!r}")
        recurrence = self._validate_recurrence(data.recurrence)
        if data.next_due_date is None:
            raise ValidationError("Next due date is required")

        existing = self.schedules.get_by_id(data.schedule_id) if data.schedule_id else None
        if existing is not None and existing.machine_id != machine.id:
            raise ValidationError("Schedule belongs to another machine")

        interval = effective_interval_days(data.interval_days) if recurrence is Recurrence.CUSTOM else None
        schedule = MaintenanceSchedule(
            id=existing.id if existing else new_id(),
            machine_id=machine.id,
            recurrence=recurrence,
            next_due_date=as_aware(data.next_due_date),
            created_at=existing.created_at if existing else self.clock(),
            interval_days=interval,
            notification_id=existing.notification_id if existing else None,
        )
        self.schedules.upsert(schedule)
        logger.info("Schedule %s saved for machine %s (%s, due %s)",
                    schedule.id, machine.code, recurrence.value, schedule.next_due_date)

        reminder_error = self._sync_reminder(schedule, machine)
        return ScheduleSaveResult(schedule=schedule, reminder_error=reminder_error)

    def delete_schedule(self, schedule_id: str) -> bool:
        schedule = self.schedules.get_by_id(schedule_id)
        if schedule is None:
            return False
        if schedule.notification_id:
            try:
                self.sink.cancel_reminder(schedule.notification_id)
            except Exception as e:
                logger.warning("Cancelling reminder of schedule %s failed: %s", schedule_id, e)
        self.schedules.delete(schedule_id)
        return True

    # -------------------------
    # Maintenance completion
    # -------------------------
    def complete_maintenance(self, machine: Machine, schedule: MaintenanceSchedule,
                             now: Optional[datetime] = None,
                             notes: Optional[str] = None) -> Optional[CompletionResult]:
        """
        Mark maintenance done for ``machine`` under ``schedule``.

        Logs a MaintenanceEvent at ``now``, stamps the machine's last
        maintenance, and advances the schedule from its current due date
        (not from ``now``). Returns None when either record no longer exists.
        """
        if schedule.machine_id != machine.id:
            raise ValidationError("Schedule belongs to another machine")
        now = as_aware(now or self.clock())
        key = completion_key(machine.id, schedule.id, now)

        duplicate = self.events.find_by_idempotency_key(key)
        if duplicate is not None:
            logger.info("Completion %s for machine %s already recorded", key[:12], machine.id)
            current_machine = self.machines.get_by_id(machine.id)
            current_schedule = self.schedules.get_by_id(schedule.id)
            if current_machine is None or current_schedule is None:
                return None
            return CompletionResult(event=duplicate, machine=current_machine,
                                    schedule=current_schedule, duplicate=True)

        with self.store.transaction():
            current_machine = self.machines.get_by_id(machine.id)
            current_schedule = self.schedules.get_by_id(schedule.id)
            if current_machine is None or current_schedule is None:
                return None

            event = MaintenanceEvent(id=new_id(), machine_id=machine.id, completed_at=now,
                                     notes=notes or None, schedule_id=schedule.id,
                                     idempotency_key=key)
            self.events.append(event)

            current_machine = replace(current_machine, last_maintenance_date=now)
            self.machines.upsert(current_machine)

            next_due = compute_next_due_date(current_schedule, current_schedule.next_due_date)
            current_schedule = replace(current_schedule, next_due_date=next_due)
            self.schedules.upsert(current_schedule)

        logger.info("Maintenance done on %s, next due %s", current_machine.code, next_due)
        reminder_error = self._sync_reminder(current_schedule, current_machine)
        return CompletionResult(event=event, machine=current_machine, schedule=current_schedule,
                                reminder_error=reminder_error)

    # -------------------------
    # Reminders
    # -------------------------
    def resync_reminders(self) -> List[str]:
        """Re-register (or drop) the reminder of every schedule. Returns the errors."""
        errors = []
        for schedule in self.schedules.get_all():
            machine = self.machines.get_by_id(schedule.machine_id)
            if machine is None:
                continue
            error = self._sync_reminder(schedule, machine)
            if error:
                errors.append(error)
        return errors

    def _sync_reminder(self, schedule: MaintenanceSchedule, machine: Machine) -> Optional[str]:
        """Replace the schedule's reminder. Returns an error message instead of raising."""
        previous = schedule.notification_id
        handle = previous
        error = None
        try:
            if previous:
                self.sink.cancel_reminder(previous)
                handle = None
            if self.settings.get().notifications_enabled:
                handle = self.sink.schedule_reminder(
                    schedule.id,
                    t("reminder_title"),
                    t("reminder_body", machine=machine.name),
                    schedule.next_due_date,
                )
        except Exception as e:
            logger.warning("Reminder for schedule %s could not be registered: %s", schedule.id, e)
            error = str(e) or e.__class__.__name__

        if handle != previous:
            schedule.notification_id = handle
            self.schedules.upsert(schedule)
        return error

    @staticmethod
    def _validate_recurrence(value: Union[Recurrence, str]) -> Recurrence:
        if isinstance(value, Recurrence):
            return value
        text = str(value or "").strip().lower()
        for recurrence in Recurrence:
            if recurrence.value.lower() == text:
                return recurrence
        raise ValidationError("Recurrence must be 'Daily', 'Weekly', 'Monthly' or 'Custom'")
