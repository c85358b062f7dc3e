import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from maintrack.utils.timeutil import format_timestamp, parse_timestamp, utcnow


class MachineState(str, Enum):
    """Operational state of a machine."""
    WORKING = "Working"
    STOPPED = "Stopped"
    NEEDS_MAINTENANCE = "Needs Maintenance"


class NoteType(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"


class Recurrence(str, Enum):
    """How a schedule's due date advances after maintenance is done."""
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    CUSTOM = "Custom"


def new_id() -> str:
    """Opaque identifier for a new record."""
    return uuid.uuid4().hex


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop absent optional attributes instead of writing nulls."""
    return {k: v for k, v in data.items() if v is not None}


def _recurrence_from(value: str) -> Union[Recurrence, str]:
    # Unknown rules are kept verbatim so old or foreign data still loads.
    try:
        return Recurrence(value)
    except ValueError:
        return value


@dataclass
class Section:
    """A department of the factory that owns machines."""
    id: str
    name: str
    created_at: datetime = field(default_factory=utcnow)
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "createdAt": format_timestamp(self.created_at),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Section":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            description=data.get("description"),
        )


@dataclass
class Machine:
    """A machine on the shop floor, identified to people by its code."""
    id: str
    section_id: str
    name: str
    code: str
    state: MachineState = MachineState.WORKING
    created_at: datetime = field(default_factory=utcnow)
    last_maintenance_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "id": self.id,
            "sectionId": self.section_id,
            "name": self.name,
            "code": self.code,
            "state": self.state.value,
            "lastMaintenanceDate": format_timestamp(self.last_maintenance_date),
            "createdAt": format_timestamp(self.created_at),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Machine":
        return cls(
            id=str(data["id"]),
            section_id=str(data["sectionId"]),
            name=data["name"],
            code=data["code"],
            state=MachineState(data.get("state", MachineState.WORKING.value)),
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            last_maintenance_date=parse_timestamp(data.get("lastMaintenanceDate")),
        )


@dataclass
class Note:
    """Free-form note on a machine. ``content`` is text, or an image/audio URI."""
    id: str
    machine_id: str
    type: NoteType
    content: str
    created_at: datetime = field(default_factory=utcnow)
    description: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "id": self.id,
            "machineId": self.machine_id,
            "type": self.type.value,
            "content": self.content,
            "description": self.description,
            "tags": list(self.tags) if self.tags else None,
            "createdAt": format_timestamp(self.created_at),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        return cls(
            id=str(data["id"]),
            machine_id=str(data["machineId"]),
            type=NoteType(data["type"]),
            content=data["content"],
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            description=data.get("description"),
            tags=data.get("tags"),
        )


@dataclass
class MaintenanceSchedule:
    """Recurring maintenance plan of a machine.

    ``interval_days`` only drives advancement for ``Recurrence.CUSTOM``.
    ``notification_id`` is the handle returned by the reminder sink.
    """
    id: str
    machine_id: str
    recurrence: Union[Recurrence, str]
    next_due_date: datetime
    created_at: datetime = field(default_factory=utcnow)
    interval_days: Optional[int] = None
    notification_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        recurrence = self.recurrence.value if isinstance(self.recurrence, Recurrence) else self.recurrence
        return _compact({
            "id": self.id,
            "machineId": self.machine_id,
            "recurrence": recurrence,
            "intervalDays": self.interval_days,
            "nextDueDate": format_timestamp(self.next_due_date),
            "notificationId": self.notification_id,
            "createdAt": format_timestamp(self.created_at),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaintenanceSchedule":
        return cls(
            id=str(data["id"]),
            machine_id=str(data["machineId"]),
            recurrence=_recurrence_from(data["recurrence"]),
            next_due_date=parse_timestamp(data["nextDueDate"]),
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            interval_days=data.get("intervalDays"),
            notification_id=data.get("notificationId"),
        )


@dataclass
class MaintenanceEvent:
    """One completed maintenance. Append-only."""
    id: str
    machine_id: str
    completed_at: datetime
    notes: Optional[str] = None
    schedule_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "id": self.id,
            "machineId": self.machine_id,
            "scheduleId": self.schedule_id,
            "completedAt": format_timestamp(self.completed_at),
            "notes": self.notes,
            "idempotencyKey": self.idempotency_key,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaintenanceEvent":
        return cls(
            id=str(data["id"]),
            machine_id=str(data["machineId"]),
            completed_at=parse_timestamp(data["completedAt"]),
            notes=data.get("notes"),
            schedule_id=data.get("scheduleId"),
            idempotency_key=data.get("idempotencyKey"),
        )


@dataclass
class Settings:
    notifications_enabled: bool = True
    dark_mode: bool = False
    demo_data_loaded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notificationsEnabled": self.notifications_enabled,
            "darkMode": self.dark_mode,
            "demoDataLoaded": self.demo_data_loaded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        return cls(
            notifications_enabled=bool(data.get("notificationsEnabled", True)),
            dark_mode=bool(data.get("darkMode", False)),
            demo_data_loaded=bool(data.get("demoDataLoaded", False)),
        )


@dataclass
class Reminder:
    """A pending local notification. Its id doubles as the sink handle."""
    id: str
    title: str
    body: str
    fire_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "fireAt": format_timestamp(self.fire_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reminder":
        return cls(
            id=str(data["id"]),
            title=data["title"],
            body=data["body"],
            fire_at=parse_timestamp(data["fireAt"]),
        )
