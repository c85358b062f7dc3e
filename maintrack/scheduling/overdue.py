from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List

from maintrack.model.entities import MaintenanceSchedule
from maintrack.utils.timeutil import as_utc


@dataclass
class OverdueReport:
    """Schedules split by whether their next-due date has passed."""
    now: datetime
    overdue: List[MaintenanceSchedule] = field(default_factory=list)
    upcoming: List[MaintenanceSchedule] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.overdue)


def is_overdue(schedule: MaintenanceSchedule, now: datetime) -> bool:
    # strictly before: due exactly now is not overdue yet
    return as_utc(schedule.next_due_date) < as_utc(now)


def partition_overdue(schedules: Iterable[MaintenanceSchedule], now: datetime) -> OverdueReport:
    """Split schedules into overdue and upcoming, keeping input order."""
    report = OverdueReport(now=now)
    for schedule in schedules:
        if is_overdue(schedule, now):
            report.overdue.append(schedule)
        else:
            report.upcoming.append(schedule)
    return report
