"""
Recurrence Engine
=================

Pure date arithmetic for advancing a maintenance schedule. No I/O, no clock:
the reference date is always passed in, normally the schedule's current
next-due date so a schedule keeps its own cadence no matter when the work
was actually done.
"""
from datetime import datetime, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from maintrack.model.entities import MaintenanceSchedule, Recurrence

DEFAULT_CUSTOM_INTERVAL_DAYS = 7


def effective_interval_days(value: Any) -> int:
    """Return ``value`` if it is a positive whole number of days, else 7."""
    if isinstance(value, bool):
        return DEFAULT_CUSTOM_INTERVAL_DAYS
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return DEFAULT_CUSTOM_INTERVAL_DAYS
    if isinstance(value, float):
        if not value.is_integer():
            return DEFAULT_CUSTOM_INTERVAL_DAYS
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return DEFAULT_CUSTOM_INTERVAL_DAYS


def compute_next_due_date(schedule: MaintenanceSchedule,
                          reference: Optional[datetime] = None) -> datetime:
    """
    Compute the due date that follows ``reference`` under the schedule's rule.

    Parameters
    ----------
    schedule : MaintenanceSchedule
        Supplies the recurrence rule and, for Custom, the interval in days.
    reference : datetime, optional
        Date to advance from. Defaults to ``schedule.next_due_date``.

    Returns
    -------
    datetime
        Daily +1 day, Weekly +7 days, Monthly +1 calendar month (clamped to
        the last day of shorter months), Custom +interval days. Unknown rules
        return ``reference`` unchanged. The step is taken in the reference's
        own UTC offset, so the local day of month is what gets preserved.
    """
    if reference is None:
        reference = schedule.next_due_date

    recurrence = schedule.recurrence
    if recurrence == Recurrence.DAILY:
        return reference + timedelta(days=1)
    if recurrence == Recurrence.WEEKLY:
        return reference + timedelta(weeks=1)
    if recurrence == Recurrence.MONTHLY:
        return reference + relativedelta(months=1)
    if recurrence == Recurrence.CUSTOM:
        return reference + timedelta(days=effective_interval_days(schedule.interval_days))
    return reference
