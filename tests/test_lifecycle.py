"""
Unit tests for maintrack.scheduling.lifecycle
=============================================

These tests validate the schedule lifecycle, ensuring that it:
- Advances a schedule from its own due date, not from the completion time
- Writes event, machine and schedule together or not at all
- Does not log a retried completion twice
- Keeps schedules when the reminder sink fails
"""
# =========================
# Imports
# =========================
from datetime import datetime, timedelta, timezone

import pytest

from helpers import utc
from maintrack.errors import ValidationError
from maintrack.model.entities import Recurrence
from maintrack.scheduling.lifecycle import completion_key


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture
def mocked_machine(mocked_controller):
    section = mocked_controller.add_section("Water")
    return mocked_controller.add_machine(section.id, "Water Pump 1", "PMP-001")


# -------------------------
# Tests: End-to-end completion
# -------------------------
def test_weekly_completion_advances_from_old_due_date(controller, machine):
    assert controller.get_schedule(machine.id) is None
    saved = controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1)).schedule

    result = controller.complete_maintenance(machine.id, now=utc(2024, 3, 5))

    events = controller.list_events(machine.id)
    assert len(events) == 1
    assert events[0].completed_at == utc(2024, 3, 5)
    assert events[0].schedule_id == saved.id
    assert controller.get_machine(machine.id).last_maintenance_date == utc(2024, 3, 5)
    assert controller.get_schedule(machine.id).next_due_date == utc(2024, 3, 8)
    assert result.schedule.next_due_date == utc(2024, 3, 8)
    assert result.duplicate is False


@pytest.mark.parametrize("now", [utc(2024, 6, 1), utc(2024, 6, 10), utc(2024, 7, 30)])
def test_custom_completion_ignores_completion_time(controller, machine, now):
    controller.save_schedule(machine.id, Recurrence.CUSTOM, utc(2024, 6, 10), interval_days=3)
    controller.complete_maintenance(machine.id, now=now)
    assert controller.get_schedule(machine.id).next_due_date == utc(2024, 6, 13)


def test_completion_keeps_machine_state(controller, section):
    machine = controller.add_machine(section.id, "Transformer B", "TRF-001", "Needs Maintenance")
    controller.save_schedule(machine.id, "Daily", utc(2024, 3, 1))
    result = controller.complete_maintenance(machine.id, notes="Replaced fuse", now=utc(2024, 3, 1, 9))
    assert result.machine.state.value == "Needs Maintenance"
    assert result.event.notes == "Replaced fuse"


def test_completion_of_unknown_machine_or_schedule(controller, machine):
    assert controller.complete_maintenance("missing") is None
    assert controller.complete_maintenance(machine.id) is None
    assert controller.list_events() == []


# -------------------------
# Tests: Atomicity / retries
# -------------------------
def test_failed_schedule_write_rolls_back_event_and_machine(controller, machine, monkeypatch):
    controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1))

    def boom(_record):
        raise RuntimeError("disk full")

    monkeypatch.setattr(controller.schedules, "upsert", boom)
    with pytest.raises(RuntimeError):
        controller.complete_maintenance(machine.id, now=utc(2024, 3, 5))
    monkeypatch.undo()

    assert controller.list_events() == []
    assert controller.get_machine(machine.id).last_maintenance_date is None
    assert controller.get_schedule(machine.id).next_due_date == utc(2024, 3, 1)


def test_retry_of_same_attempt_is_not_logged_twice(controller, machine):
    controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1))
    first = controller.complete_maintenance(machine.id, now=utc(2024, 3, 5, 10, 0, 0))
    again = controller.complete_maintenance(machine.id, now=utc(2024, 3, 5, 10, 0, 0))

    assert again.duplicate is True
    assert again.event.id == first.event.id
    assert len(controller.list_events(machine.id)) == 1
    assert controller.get_schedule(machine.id).next_due_date == utc(2024, 3, 8)


def test_separate_attempts_are_both_logged(controller, machine):
    controller.save_schedule(machine.id, "Daily", utc(2024, 3, 1))
    controller.complete_maintenance(machine.id, now=utc(2024, 3, 5, 10, 0, 0))
    controller.complete_maintenance(machine.id, now=utc(2024, 3, 5, 10, 0, 1))
    assert len(controller.list_events(machine.id)) == 2
    assert controller.get_schedule(machine.id).next_due_date == utc(2024, 3, 3)


def test_completion_key_is_per_second():
    a = completion_key("m", "s", utc(2024, 3, 5, 10, 0, 0, 100))
    b = completion_key("m", "s", utc(2024, 3, 5, 10, 0, 0, 900000))
    c = completion_key("m", "s", utc(2024, 3, 5, 10, 0, 1))
    assert a == b
    assert a != c


# -------------------------
# Tests: Create / update
# -------------------------
def test_completion_keeps_local_day_of_month(controller, machine):
    riyadh = timezone(timedelta(hours=3))
    controller.save_schedule(machine.id, "Monthly", datetime(2024, 1, 31, tzinfo=riyadh))

    controller.complete_maintenance(machine.id, now=utc(2024, 1, 31, 6))

    due = controller.get_schedule(machine.id).next_due_date
    assert (due.month, due.day) == (2, 29)
    assert due.utcoffset() == timedelta(hours=3)


def test_edit_reuses_id_and_created_at(controller, machine):
    first = controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1)).schedule
    edited = controller.save_schedule(machine.id, "Custom", utc(2024, 4, 1), interval_days=10,
                                      schedule_id=first.id).schedule
    assert edited.id == first.id
    assert edited.created_at == first.created_at
    stored = controller.list_schedules(machine.id)
    assert len(stored) == 1
    assert stored[0].interval_days == 10
    assert stored[0].next_due_date == utc(2024, 4, 1)


def test_interval_only_kept_for_custom(controller, machine):
    weekly = controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1), interval_days=10).schedule
    assert weekly.interval_days is None
    custom = controller.save_schedule(machine.id, "Custom", utc(2024, 3, 1), interval_days=0,
                                      schedule_id=weekly.id).schedule
    assert custom.interval_days == 7


@pytest.mark.parametrize("recurrence, due", [("Yearly", utc(2024, 3, 1)), ("Weekly", None)])
def test_invalid_input_writes_nothing(controller, machine, recurrence, due):
    with pytest.raises(ValidationError):
        controller.save_schedule(machine.id, recurrence, due)
    assert controller.list_schedules() == []
    assert controller.sink.pending() == []


def test_unknown_machine_is_rejected(controller):
    with pytest.raises(ValidationError):
        controller.save_schedule("missing", "Weekly", utc(2024, 3, 1))


def test_earliest_due_schedule_is_current(controller, machine):
    controller.save_schedule(machine.id, "Weekly", utc(2024, 5, 1))
    early = controller.save_schedule(machine.id, "Daily", utc(2024, 4, 1)).schedule
    assert controller.get_schedule(machine.id).id == early.id
    controller.complete_maintenance(machine.id, now=utc(2024, 4, 2))
    assert controller.list_events()[0].schedule_id == early.id


# -------------------------
# Tests: Reminders
# -------------------------
def test_reminder_registered_at_due_date(controller, machine):
    schedule = controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1)).schedule
    pending = controller.sink.pending()
    assert len(pending) == 1
    assert pending[0].id == schedule.id
    assert pending[0].fire_at == utc(2024, 3, 1)
    assert "Generator A" in pending[0].body
    assert controller.get_schedule(machine.id).notification_id == schedule.id


def test_completion_moves_reminder(controller, machine):
    controller.save_schedule(machine.id, "Weekly", utc(2024, 3, 1))
    controller.complete_maintenance(machine.id, now=utc(2024, 3, 5))
    pending = controller.sink.pending()
    assert len(pending) == 1
    assert pending[0].fire_at == utc(2024, 3, 8)


def test_resave_replaces_previous_reminder(mocked_controller, mocked_machine, mock_sink):
    first = mocked_controller.save_schedule(mocked_machine.id, "Weekly", utc(2024, 3, 1)).schedule
    mock_sink.cancel_reminder.assert_not_called()
    mocked_controller.save_schedule(mocked_machine.id, "Weekly", utc(2024, 3, 2), schedule_id=first.id)
    mock_sink.cancel_reminder.assert_called_once_with(f"handle-{first.id}")
    assert mock_sink.schedule_reminder.call_count == 2


def test_sink_failure_keeps_schedule(mocked_controller, mocked_machine, mock_sink):
    mock_sink.schedule_reminder.side_effect = RuntimeError("permission denied")
    result = mocked_controller.save_schedule(mocked_machine.id, "Monthly", utc(2024, 1, 31))

    assert result.reminder_error == "permission denied"
    stored = mocked_controller.schedules.get_by_id(result.schedule.id)
    assert stored is not None
    assert stored.notification_id is None
    assert [s.id for s in mocked_controller.list_schedules()] == [result.schedule.id]


def test_failed_cancel_keeps_previous_handle(mocked_controller, mocked_machine, mock_sink):
    first = mocked_controller.save_schedule(mocked_machine.id, "Weekly", utc(2024, 3, 1)).schedule
    mock_sink.cancel_reminder.side_effect = RuntimeError("cancel refused")

    result = mocked_controller.save_schedule(mocked_machine.id, "Weekly", utc(2024, 3, 2),
                                             schedule_id=first.id)

    assert result.reminder_error == "cancel refused"
    assert mock_sink.schedule_reminder.call_count == 1
    stored = mocked_controller.schedules.get_by_id(first.id)
    assert stored.notification_id == f"handle-{first.id}"
    assert stored.next_due_date == utc(2024, 3, 2)


def test_sink_failure_after_completion_keeps_data(mocked_controller, mocked_machine, mock_sink):
    mocked_controller.save_schedule(mocked_machine.id, "Monthly", utc(2024, 1, 31))
    mock_sink.schedule_reminder.side_effect = RuntimeError("sink offline")
    result = mocked_controller.complete_maintenance(mocked_machine.id, now=utc(2024, 2, 1))
    assert result.reminder_error == "sink offline"
    assert mocked_controller.get_schedule(mocked_machine.id).next_due_date == utc(2024, 2, 29)
    assert len(mocked_controller.list_events()) == 1


def test_no_reminder_when_notifications_disabled(mocked_controller, mocked_machine, mock_sink):
    mocked_controller.update_settings(notifications_enabled=False)
    result = mocked_controller.save_schedule(mocked_machine.id, "Daily", utc(2024, 3, 1))
    mock_sink.schedule_reminder.assert_not_called()
    assert result.schedule.notification_id is None


def test_delete_schedule_cancels_reminder(controller, machine):
    schedule = controller.save_schedule(machine.id, "Daily", utc(2024, 3, 1)).schedule
    assert controller.delete_schedule(schedule.id) is True
    assert controller.delete_schedule(schedule.id) is False
    assert controller.sink.pending() == []
    assert controller.get_schedule(machine.id) is None
