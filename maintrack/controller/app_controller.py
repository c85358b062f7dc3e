"""
App Controller Module
=====================

This module implements the application controller layer of the Factory
Maintenance Tracker. The controller coordinates communication between the
outer surfaces (HTTP API, command line) and the model (store, repositories
and the scheduling logic).

Responsibilities:
-----------------
- Provide a clean interface for sections, machines, notes and settings.
- Delegate schedule writes and maintenance completion to the lifecycle manager.
- Report overdue maintenance.
- Manage JSON/Excel export, demo data and database backup.
- Reject invalid input before anything is written.
"""
# =========================
# Imports
# =========================
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Union

from maintrack.config import BACKUP_INTERVAL_HOURS, lock_path_for
from maintrack.errors import ValidationError
from maintrack.model.db import KeyValueStore
from maintrack.model.entities import (
    Machine, MachineState, MaintenanceEvent, MaintenanceSchedule, Note, NoteType,
    Recurrence, Section, Settings, new_id,
)
from maintrack.model.repository import (
    STORAGE_KEYS, EventRepository, MachineRepository, NoteRepository,
    ScheduleRepository, SectionRepository, SettingsRepository,
)
from maintrack.scheduling.lifecycle import (
    CompletionResult, ScheduleInput, ScheduleLifecycleManager, ScheduleSaveResult,
)
from maintrack.scheduling.overdue import OverdueReport, partition_overdue
from maintrack.utils import excel_io
from maintrack.utils.locking import WriteLock
from maintrack.utils.reminders import LocalReminderSink, ReminderSink
from maintrack.utils.scheduler import RepeatedTimer
from maintrack.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# Slots included in a JSON backup export
EXPORT_SLOTS = ("sections", "machines", "notes", "schedules", "events")


# =========================
# Class: AppController
# =========================
class AppController:
    """Controller layer that manages application logic."""

    def __init__(self, db_path: str, sink: Optional[ReminderSink] = None, *,
                 backup_interval_hours: float = BACKUP_INTERVAL_HOURS):
        self.store = KeyValueStore(db_path)
        self.sections = SectionRepository(self.store)
        self.machines = MachineRepository(self.store)
        self.notes = NoteRepository(self.store)
        self.schedules = ScheduleRepository(self.store)
        self.events = EventRepository(self.store)
        self.settings = SettingsRepository(self.store)
        self.sink = sink if sink is not None else LocalReminderSink(self.store)
        self.lifecycle = ScheduleLifecycleManager(
            self.store, self.machines, self.schedules, self.events, self.settings, self.sink)

        self._write_lock = WriteLock(lock_path_for(db_path))
        self._backup_dir = str(Path(db_path).with_suffix("")) + "_backups"

        # Start periodic backups
        self._backup_timer = None
        if backup_interval_hours > 0:
            self._backup_timer = RepeatedTimer(backup_interval_hours * 3600, self.backup,
                                               name="backup")
            self._backup_timer.start()

    # -------------------------
    # Sections
    # -------------------------
    def list_sections(self) -> List[Section]:
        return self.sections.get_all()

    def get_section(self, section_id: str) -> Optional[Section]:
        return self.sections.get_by_id(section_id)

    def add_section(self, name: str, description: Optional[str] = None) -> Section:
        """
        Add a new section.

        Parameters
        ----------
        name : str
            Display name, required.
        description : str, optional
            Free text shown under the name.

        Returns
        -------
        Section
            The stored section.
        """
        section = Section(id=new_id(), name=self._required(name, "Section name"),
                          description=(description or "").strip() or None)
        with self._write_lock:
            self.sections.upsert(section)
        return section

    def update_section(self, section_id: str, name: str,
                       description: Optional[str] = None) -> Optional[Section]:
        section = self.sections.get_by_id(section_id)
        if section is None:
            return None
        section.name = self._required(name, "Section name")
        section.description = (description or "").strip() or None
        with self._write_lock:
            self.sections.upsert(section)
        return section

    def delete_section(self, section_id: str) -> None:
        """Delete a section. Its machines are kept and keep their section reference."""
        with self._write_lock:
            self.sections.delete(section_id)

    # -------------------------
    # Machines
    # -------------------------
    def list_machines(self, section_id: Optional[str] = None) -> List[Machine]:
        if section_id is None:
            return self.machines.get_all()
        return self.machines.by_section(section_id)

    def get_machine(self, machine_id: str) -> Optional[Machine]:
        return self.machines.get_by_id(machine_id)

    def find_machine_by_code(self, code: str) -> Optional[Machine]:
        return self.machines.get_by_code(code)

    def add_machine(self, section_id: str, name: str, code: str,
                    state: Union[MachineState, str] = MachineState.WORKING) -> Machine:
        """
        Add a new machine to a section.

        Parameters
        ----------
        section_id : str
            The owning section, must exist.
        name : str
            Display name.
        code : str
            Machine code, unique across the factory.
        state : str
            "Working", "Stopped" or "Needs Maintenance".

        Returns
        -------
        Machine
            The stored machine.

        Raises
        ------
        ValidationError
            Empty name/code, unknown section or state, or a code already in use.
        """
        if self.sections.get_by_id(section_id) is None:
            raise ValidationError(f"Unknown section: {section_id!r}")
        machine = Machine(id=new_id(), section_id=section_id,
                          name=self._required(name, "Machine name"),
                          code=self._required(code, "Machine code"),
                          state=self._validate_state(state))
        with self._write_lock:
            self.machines.upsert(machine)
        return machine

    def update_machine(self, machine_id: str, name: str, code: str) -> Optional[Machine]:
        machine = self.machines.get_by_id(machine_id)
        if machine is None:
            return None
        machine.name = self._required(name, "Machine name")
        machine.code = self._required(code, "Machine code")
        with self._write_lock:
            self.machines.upsert(machine)
        return machine

    def set_machine_state(self, machine_id: str,
                          state: Union[MachineState, str]) -> Optional[Machine]:
        """Change the operational state of a machine. None if it does not exist."""
        new_state = self._validate_state(state)
        machine = self.machines.get_by_id(machine_id)
        if machine is None:
            return None
        machine.state = new_state
        with self._write_lock:
            self.machines.upsert(machine)
        logger.info("Machine %s is now %s", machine.code, new_state.value)
        return machine

    # -------------------------
    # Notes
    # -------------------------
    def list_notes(self, machine_id: str) -> List[Note]:
        return self.notes.by_machine(machine_id)

    def add_note(self, machine_id: str, note_type: Union[NoteType, str], content: str,
                 description: Optional[str] = None,
                 tags: Optional[Iterable[str]] = None) -> Note:
        """
        Attach a note to a machine.

        ``content`` is the text itself for text notes, or the URI of the
        captured photo/recording for image and audio notes.
        """
        if self.machines.get_by_id(machine_id) is None:
            raise ValidationError(f"Unknown machine: {machine_id!r}")
        try:
            kind = NoteType(str(note_type).strip().lower())
        except ValueError as e:
            raise ValidationError("Note type must be 'text', 'image' or 'audio'") from e
        body = content.strip() if kind is NoteType.TEXT and content else content
        if not body:
            raise ValidationError("Note content is required")
        clean_tags = [tag.strip() for tag in tags or [] if tag and tag.strip()]
        note = Note(id=new_id(), machine_id=machine_id, type=kind, content=body,
                    description=(description or "").strip() or None,
                    tags=clean_tags or None)
        with self._write_lock:
            self.notes.upsert(note)
        return note

    def delete_note(self, note_id: str) -> None:
        with self._write_lock:
            self.notes.delete(note_id)

    # -------------------------
    # Schedules and maintenance
    # -------------------------
    def get_schedule(self, machine_id: str) -> Optional[MaintenanceSchedule]:
        return self.lifecycle.current_schedule(machine_id)

    def list_schedules(self, machine_id: Optional[str] = None) -> List[MaintenanceSchedule]:
        if machine_id is None:
            return self.schedules.get_all()
        return self.lifecycle.schedules_for_machine(machine_id)

    def save_schedule(self, machine_id: str, recurrence: Union[Recurrence, str],
                      next_due_date: Optional[datetime], interval_days: Optional[int] = None,
                      schedule_id: Optional[str] = None) -> ScheduleSaveResult:
        """Create or edit a machine's schedule. See ``ScheduleLifecycleManager``."""
        data = ScheduleInput(machine_id=machine_id, recurrence=recurrence,
                             next_due_date=next_due_date, interval_days=interval_days,
                             schedule_id=schedule_id)
        with self._write_lock:
            return self.lifecycle.create_or_update_schedule(data)

    def delete_schedule(self, schedule_id: str) -> bool:
        with self._write_lock:
            return self.lifecycle.delete_schedule(schedule_id)

    def complete_maintenance(self, machine_id: str, notes: Optional[str] = None,
                             now: Optional[datetime] = None,
                             schedule_id: Optional[str] = None) -> Optional[CompletionResult]:
        """
        Mark maintenance done on a machine.

        Parameters
        ----------
        machine_id : str
            The machine that was serviced.
        notes : str, optional
            Free text stored on the maintenance event.
        now : datetime, optional
            Completion time, also the retry key of the attempt. Defaults to now.
        schedule_id : str, optional
            Schedule to advance. Defaults to the machine's earliest-due schedule.

        Returns
        -------
        CompletionResult or None
            None when the machine or schedule does not exist.
        """
        machine = self.machines.get_by_id(machine_id)
        if machine is None:
            return None
        if schedule_id is not None:
            schedule = self.schedules.get_by_id(schedule_id)
        else:
            schedule = self.lifecycle.current_schedule(machine_id)
        if schedule is None:
            return None
        with self._write_lock:
            return self.lifecycle.complete_maintenance(machine, schedule, now=now, notes=notes)

    def list_events(self, machine_id: Optional[str] = None) -> List[MaintenanceEvent]:
        if machine_id is None:
            return self.events.get_all()
        return self.events.by_machine(machine_id)

    def overdue_report(self, now: Optional[datetime] = None) -> OverdueReport:
        return partition_overdue(self.schedules.get_all(), now or utcnow())

    # -------------------------
    # Settings / demo data
    # -------------------------
    def get_settings(self) -> Settings:
        return self.settings.get()

    def update_settings(self, notifications_enabled: Optional[bool] = None,
                        dark_mode: Optional[bool] = None) -> Settings:
        """Change settings. Toggling notifications re-registers or drops all reminders."""
        for name, value in (("notificationsEnabled", notifications_enabled), ("darkMode", dark_mode)):
            if value is not None and not isinstance(value, bool):
                raise ValidationError(f"{name} must be true or false")
        settings = self.settings.get()
        toggled = (notifications_enabled is not None
                   and notifications_enabled != settings.notifications_enabled)
        if notifications_enabled is not None:
            settings.notifications_enabled = notifications_enabled
        if dark_mode is not None:
            settings.dark_mode = dark_mode
        with self._write_lock:
            self.settings.save(settings)
            if toggled:
                for error in self.lifecycle.resync_reminders():
                    logger.warning("Reminder resync: %s", error)
        return settings

    def load_demo_data(self, force: bool = False) -> bool:
        """
        Seed placeholder sections and machines.

        Runs once: afterwards the ``demoDataLoaded`` flag is set and later
        calls do nothing unless ``force`` is given. Returns whether data
        was written.
        """
        settings = self.settings.get()
        if settings.demo_data_loaded and not force:
            return False
        now = utcnow()
        sections = [
            Section(id="1", name="Electrical Department",
                    description="Main electrical systems", created_at=now),
            Section(id="2", name="Public Health Department",
                    description="Water and sanitation systems", created_at=now),
        ]
        machines = [
            Machine(id="1", section_id="1", name="Generator A", code="GEN-001",
                    state=MachineState.WORKING, created_at=now,
                    last_maintenance_date=now - timedelta(days=7)),
            Machine(id="2", section_id="1", name="Transformer B", code="TRF-001",
                    state=MachineState.NEEDS_MAINTENANCE, created_at=now),
            Machine(id="3", section_id="1", name="Control Panel C", code="CTL-001",
                    state=MachineState.WORKING, created_at=now),
            Machine(id="4", section_id="2", name="Water Pump 1", code="PMP-001",
                    state=MachineState.WORKING, created_at=now,
                    last_maintenance_date=now - timedelta(days=14)),
            Machine(id="5", section_id="2", name="Filtration System", code="FLT-001",
                    state=MachineState.STOPPED, created_at=now),
            Machine(id="6", section_id="2", name="Boiler Unit", code="BLR-001",
                    state=MachineState.WORKING, created_at=now),
        ]
        with self._write_lock, self.store.transaction():
            for section in sections:
                self.sections.upsert(section)
            for machine in machines:
                self.machines.upsert(machine)
            settings.demo_data_loaded = True
            self.settings.save(settings)
        logger.info("Demo data loaded: %d sections, %d machines", len(sections), len(machines))
        return True

    def clear_all_data(self) -> None:
        """Remove every record, pending reminder and setting."""
        with self._write_lock:
            if not isinstance(self.sink, LocalReminderSink):
                for schedule in self.schedules.get_all():
                    if schedule.notification_id:
                        try:
                            self.sink.cancel_reminder(schedule.notification_id)
                        except Exception as e:
                            logger.warning("Cancelling reminder of schedule %s failed: %s",
                                           schedule.id, e)
            with self.store.transaction():
                for key in STORAGE_KEYS.values():
                    self.store.delete(key)
            if isinstance(self.sink, LocalReminderSink):
                self.sink.clear()
        logger.info("All data cleared")

    # -------------------------
    # Export / backup
    # -------------------------
    def export_backup(self, path: Optional[str] = None) -> dict:
        """
        Export the raw data slots as one JSON object.

        Each value is the slot's serialized text exactly as stored (or None
        for an empty slot). Written to ``path`` when one is given.
        """
        data = {name: self.store.get(STORAGE_KEYS[name]) for name in EXPORT_SLOTS}
        if path is not None:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        return data

    def export_excel(self, path: Union[str, BinaryIO], now: Optional[datetime] = None) -> None:
        """
        Export the maintenance overview and history to an Excel file.

        Parameters
        ----------
        path : str or binary file object
            Destination for the Excel workbook.
        now : datetime, optional
            Reference time for the overdue column.
        """
        excel_io.export_excel(path, self.sections.get_all(), self.machines.get_all(),
                              self.schedules.get_all(), self.events.get_all(),
                              now or utcnow())

    def backup(self) -> str:
        """
        Create a backup of the current database.

        Returns
        -------
        str
            Path to the backup file created.
        """
        Path(self._backup_dir).mkdir(exist_ok=True, parents=True)
        dbp = Path(self.store.db_path)
        backup_name = f"{dbp.stem}_backup_{datetime.now():%Y%m%d_%H%M%S}{dbp.suffix}"
        backup_path = str(Path(self._backup_dir) / backup_name)
        self.store.backup_to(backup_path)
        logger.info("Backup written to %s", backup_path)
        return backup_path

    def close(self) -> None:
        """Stop timers and close DB connection."""
        if self._backup_timer is not None:
            self._backup_timer.stop()
        self.store.close()

    # -------------------------
    # Validation helpers
    # -------------------------
    @staticmethod
    def _required(value: Optional[str], label: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{label} is required")
        return text

    @staticmethod
    def _validate_state(state: Union[MachineState, str]) -> MachineState:
        """Convert string to MachineState enum, raise ValidationError if invalid."""
        if isinstance(state, MachineState):
            return state
        s = "".join(str(state).split()).lower()
        for candidate in MachineState:
            if "".join(candidate.value.split()).lower() == s:
                return candidate
        raise ValidationError("State must be 'Working', 'Stopped' or 'Needs Maintenance'")
