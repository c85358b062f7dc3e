import json
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from maintrack.errors import DuplicateCodeError
from maintrack.model.db import KeyValueStore
from maintrack.model.entities import (
    Machine, MaintenanceEvent, MaintenanceSchedule, Note, Section, Settings,
)

# Slot names, shared with exported backups
STORAGE_KEYS = {
    "sections": "factory_sections",
    "machines": "factory_machines",
    "notes": "factory_notes",
    "schedules": "factory_schedules",
    "events": "factory_events",
    "settings": "factory_settings",
}

T = TypeVar("T")


class _JsonCollection(Generic[T]):
    """Read access to one slot holding a JSON array of records."""

    def __init__(self, store: KeyValueStore, key: str,
                 from_dict: Callable[[Dict[str, Any]], T]):
        self.store = store
        self.key = key
        self._from_dict = from_dict

    def _load(self) -> List[Dict[str, Any]]:
        raw = self.store.get(self.key)
        return json.loads(raw) if raw else []

    def _dump(self, rows: List[Dict[str, Any]]) -> None:
        self.store.put(self.key, json.dumps(rows, ensure_ascii=False))

    def get_all(self) -> List[T]:
        """All records in insertion order."""
        return [self._from_dict(row) for row in self._load()]

    def get_by_id(self, record_id: str) -> Optional[T]:
        """Fetch a single record by ID, None if it does not exist."""
        for row in self._load():
            if str(row.get("id")) == str(record_id):
                return self._from_dict(row)
        return None

    def filter_by(self, attr: str, value: Any) -> List[T]:
        return [r for r in self.get_all() if getattr(r, attr) == value]

    def raw(self) -> Optional[str]:
        """The serialized slot content exactly as stored."""
        return self.store.get(self.key)

    def clear(self) -> None:
        self.store.delete(self.key)


class JsonCollectionRepository(_JsonCollection[T]):
    """Repository for CRUD operations on one collection of records."""

    def upsert(self, record: T) -> None:
        """Replace the record with the same ID in place, or append it."""
        rows = self._load()
        data = record.to_dict()
        for i, row in enumerate(rows):
            if str(row.get("id")) == record.id:
                rows[i] = data
                break
        else:
            rows.append(data)
        self._dump(rows)

    def delete(self, record_id: str) -> None:
        """Delete a record by ID. Unknown IDs are ignored."""
        rows = self._load()
        kept = [row for row in rows if str(row.get("id")) != str(record_id)]
        if len(kept) != len(rows):
            self._dump(kept)


class SectionRepository(JsonCollectionRepository[Section]):
    def __init__(self, store: KeyValueStore):
        super().__init__(store, STORAGE_KEYS["sections"], Section.from_dict)


class MachineRepository(JsonCollectionRepository[Machine]):
    """Machines, with machine codes kept unique across the whole factory."""

    def __init__(self, store: KeyValueStore):
        super().__init__(store, STORAGE_KEYS["machines"], Machine.from_dict)

    def by_section(self, section_id: str) -> List[Machine]:
        return self.filter_by("section_id", section_id)

    def get_by_code(self, code: str) -> Optional[Machine]:
        wanted = code.strip().lower()
        for machine in self.get_all():
            if machine.code.strip().lower() == wanted:
                return machine
        return None

    def upsert(self, record: Machine) -> None:
        other = self.get_by_code(record.code)
        if other is not None and other.id != record.id:
            raise DuplicateCodeError(record.code)
        super().upsert(record)


class NoteRepository(JsonCollectionRepository[Note]):
    def __init__(self, store: KeyValueStore):
        super().__init__(store, STORAGE_KEYS["notes"], Note.from_dict)

    def by_machine(self, machine_id: str) -> List[Note]:
        return self.filter_by("machine_id", machine_id)


class ScheduleRepository(JsonCollectionRepository[MaintenanceSchedule]):
    def __init__(self, store: KeyValueStore):
        super().__init__(store, STORAGE_KEYS["schedules"], MaintenanceSchedule.from_dict)

    def by_machine(self, machine_id: str) -> List[MaintenanceSchedule]:
        return self.filter_by("machine_id", machine_id)


class EventRepository(_JsonCollection[MaintenanceEvent]):
    """Append-only maintenance log."""

    def __init__(self, store: KeyValueStore):
        super().__init__(store, STORAGE_KEYS["events"], MaintenanceEvent.from_dict)

    def append(self, event: MaintenanceEvent) -> None:
        rows = self._load()
        rows.append(event.to_dict())
        self._dump(rows)

    def by_machine(self, machine_id: str) -> List[MaintenanceEvent]:
        return self.filter_by("machine_id", machine_id)

    def find_by_idempotency_key(self, key: str) -> Optional[MaintenanceEvent]:
        for row in self._load():
            if row.get("idempotencyKey") == key:
                return MaintenanceEvent.from_dict(row)
        return None


class SettingsRepository:
    """Single settings document; defaults apply until it is first saved."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.key = STORAGE_KEYS["settings"]

    def get(self) -> Settings:
        raw = self.store.get(self.key)
        return Settings.from_dict(json.loads(raw)) if raw else Settings()

    def save(self, settings: Settings) -> None:
        self.store.put(self.key, json.dumps(settings.to_dict()))

    def clear(self) -> None:
        self.store.delete(self.key)
