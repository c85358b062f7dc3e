"""
Unit tests for maintrack.utils.reminders and maintrack.utils.scheduler
"""
# =========================
# Imports
# =========================
import logging
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from helpers import utc
from maintrack.errors import ReminderError
from maintrack.model.db import KeyValueStore
from maintrack.utils import i18n
from maintrack.utils.reminders import LocalReminderSink, ReminderDispatcher
from maintrack.utils.scheduler import RepeatedTimer


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture
def sink(tmp_path):
    store = KeyValueStore(str(tmp_path / "reminders.db"))
    yield LocalReminderSink(store)
    store.close()


# -------------------------
# Tests: LocalReminderSink
# -------------------------
def test_schedule_returns_handle_and_replaces_same_id(sink):
    assert sink.schedule_reminder("s1", "Title", "Body", utc(2024, 3, 1)) == "s1"
    sink.schedule_reminder("s1", "Title", "Body 2", utc(2024, 3, 8))
    pending = sink.pending()
    assert len(pending) == 1
    assert pending[0].body == "Body 2"
    assert pending[0].fire_at == utc(2024, 3, 8)


def test_cancel_unknown_handle_is_noop(sink):
    sink.schedule_reminder("s1", "T", "B", utc(2024, 3, 1))
    sink.cancel_reminder("other")
    sink.cancel_reminder("s1")
    assert sink.pending() == []


def test_pop_due_is_inclusive_and_removes(sink):
    sink.schedule_reminder("past", "T", "B", utc(2024, 3, 1))
    sink.schedule_reminder("exact", "T", "B", utc(2024, 3, 2))
    sink.schedule_reminder("future", "T", "B", utc(2024, 3, 3))

    due = sink.pop_due(utc(2024, 3, 2))
    assert sorted(r.id for r in due) == ["exact", "past"]
    assert [r.id for r in sink.pending()] == ["future"]
    assert sink.pop_due(utc(2024, 3, 2)) == []


def test_store_failure_raises_reminder_error(sink, monkeypatch):
    def locked(*_args):
        raise OperationalError("UPDATE slots", {}, Exception("database is locked"))

    monkeypatch.setattr(sink.store, "put", locked)
    with pytest.raises(ReminderError):
        sink.schedule_reminder("s1", "T", "B", utc(2024, 3, 1))


# -------------------------
# Tests: ReminderDispatcher
# -------------------------
def test_dispatcher_delivers_due_reminders(sink):
    sink.schedule_reminder("s1", "T", "B", utc(2024, 3, 1))
    deliver = MagicMock()
    dispatcher = ReminderDispatcher(sink, deliver=deliver, clock=lambda: utc(2024, 3, 1, 0, 1))
    assert dispatcher.dispatch_due() == 1
    assert deliver.call_args.args[0].id == "s1"
    assert dispatcher.dispatch_due() == 0


def test_dispatcher_survives_failing_delivery(sink, caplog):
    sink.schedule_reminder("a", "T", "B", utc(2024, 3, 1))
    sink.schedule_reminder("b", "T", "B", utc(2024, 3, 1))
    deliver = MagicMock(side_effect=[RuntimeError("no display"), None])
    dispatcher = ReminderDispatcher(sink, deliver=deliver, clock=lambda: utc(2024, 3, 2))
    with caplog.at_level(logging.ERROR):
        assert dispatcher.dispatch_due() == 1
    assert "Delivering reminder" in caplog.text


def test_dispatcher_runs_on_timer(sink):
    sink.schedule_reminder("s1", "T", "B", utc(2024, 3, 1))
    delivered = threading.Event()
    dispatcher = ReminderDispatcher(sink, deliver=lambda r: delivered.set(),
                                    interval_seconds=60, clock=lambda: utc(2024, 3, 2))
    dispatcher.start()
    try:
        assert delivered.wait(timeout=5)
    finally:
        dispatcher.stop()


def test_repeated_timer_logs_and_keeps_running(caplog):
    calls = []
    done = threading.Event()

    def job():
        calls.append(1)
        if len(calls) == 1:
            raise ValueError("first run fails")
        done.set()

    timer = RepeatedTimer(0.01, job, run_immediately=True, name="test-job")
    with caplog.at_level(logging.ERROR):
        timer.start()
        try:
            assert done.wait(timeout=5)
        finally:
            timer.stop()
    assert "test-job" in caplog.text


# -------------------------
# Tests: i18n
# -------------------------
def test_reminder_text_is_localized():
    assert i18n.t("reminder_body", machine="Boiler Unit") == "Maintenance is due for Boiler Unit"
    i18n.set_language("ar")
    assert i18n.t("reminder_title") == "تذكير صيانة"
    assert i18n.t("reminder_body", machine="Boiler Unit") == "حان موعد صيانة Boiler Unit"
    assert i18n.t("unknown_key") == "unknown_key"
