"""
Shared fixtures: a controller on a throw-away SQLite file per test.
"""
# =========================
# Imports
# =========================
from unittest.mock import MagicMock

import pytest

from maintrack.controller.app_controller import AppController
from maintrack.utils import i18n


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture(autouse=True)
def english():
    i18n.set_language(i18n.Language.EN)
    yield
    i18n.set_language(i18n.Language.EN)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "maintrack.db")


@pytest.fixture
def controller(db_path):
    """Controller with the built-in local reminder sink and no backup timer."""
    ctrl = AppController(db_path, backup_interval_hours=0)
    yield ctrl
    ctrl.close()


@pytest.fixture
def mock_sink():
    sink = MagicMock()
    sink.schedule_reminder.side_effect = lambda reminder_id, *_: f"handle-{reminder_id}"
    return sink


@pytest.fixture
def mocked_controller(db_path, mock_sink):
    """Controller whose reminder sink is a MagicMock."""
    ctrl = AppController(db_path, sink=mock_sink, backup_interval_hours=0)
    yield ctrl
    ctrl.close()


@pytest.fixture
def section(controller):
    return controller.add_section("Electrical Department", "Main electrical systems")


@pytest.fixture
def machine(controller, section):
    return controller.add_machine(section.id, "Generator A", "GEN-001")
