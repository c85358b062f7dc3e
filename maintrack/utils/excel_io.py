from datetime import datetime
from typing import BinaryIO, Dict, List, Optional, Union

import pandas as pd

from maintrack.model.entities import (
    Machine, MaintenanceEvent, MaintenanceSchedule, Recurrence, Section,
)
from maintrack.scheduling.overdue import is_overdue
from maintrack.utils.i18n import t
from maintrack.utils.timeutil import as_utc


def _excel_time(value: Optional[datetime]):
    # Excel cannot hold timezone-aware datetimes
    return as_utc(value).replace(tzinfo=None) if value else None


def overview_frame(sections: List[Section], machines: List[Machine],
                   schedules: List[MaintenanceSchedule], now: datetime) -> pd.DataFrame:
    """One row per machine, with its earliest-due schedule if it has one."""
    section_names = {s.id: s.name for s in sections}
    by_machine: Dict[str, MaintenanceSchedule] = {}
    for s in schedules:
        current = by_machine.get(s.machine_id)
        if current is None or as_utc(s.next_due_date) < as_utc(current.next_due_date):
            by_machine[s.machine_id] = s

    rows = []
    for m in machines:
        schedule = by_machine.get(m.id)
        recurrence = None
        if schedule is not None:
            recurrence = schedule.recurrence.value if isinstance(schedule.recurrence, Recurrence) \
                else schedule.recurrence
        rows.append({
            t("section"): section_names.get(m.section_id, ""),
            t("machine"): m.name,
            t("code"): m.code,
            t("state"): t(m.state.value),
            t("last_maintenance"): _excel_time(m.last_maintenance_date),
            t("recurrence"): recurrence,
            t("next_due"): _excel_time(schedule.next_due_date) if schedule else None,
            t("overdue"): is_overdue(schedule, now) if schedule else False,
        })
    return pd.DataFrame(rows, columns=[t("section"), t("machine"), t("code"), t("state"),
                                       t("last_maintenance"), t("recurrence"), t("next_due"),
                                       t("overdue")])


def history_frame(machines: List[Machine], events: List[MaintenanceEvent]) -> pd.DataFrame:
    """Maintenance log, newest first."""
    by_id = {m.id: m for m in machines}
    rows = []
    for e in sorted(events, key=lambda e: as_utc(e.completed_at), reverse=True):
        machine = by_id.get(e.machine_id)
        rows.append({
            t("machine"): machine.name if machine else e.machine_id,
            t("code"): machine.code if machine else "",
            t("completed_at"): _excel_time(e.completed_at),
            t("notes"): e.notes or "",
        })
    return pd.DataFrame(rows, columns=[t("machine"), t("code"), t("completed_at"), t("notes")])


def export_excel(path: Union[str, BinaryIO], sections: List[Section], machines: List[Machine],
                 schedules: List[MaintenanceSchedule], events: List[MaintenanceEvent],
                 now: datetime) -> None:
    """Export the maintenance overview and history to an Excel workbook."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        overview_frame(sections, machines, schedules, now).to_excel(
            writer, sheet_name="Machines", index=False)
        history_frame(machines, events).to_excel(writer, sheet_name="History", index=False)
