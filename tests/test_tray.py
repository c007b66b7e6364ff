import json
import subprocess
import time
from datetime import datetime

from PySide6.QtCore import QCoreApplication

import terminal
import tray
from aur_helper import HelperDetector
from models import Config, Status
from scheduler import PollOrchestrator
from settings import Settings

UPDATES = "firefox 120.0-1 -> 121.0-1\nvim 9.0-2 -> 9.1-1\n"


class RecordingTray:
    """Stand-in for QSystemTrayIcon's message API."""

    def __init__(self, supported=True):
        self.supported = supported
        self.messages = []

    def setIcon(self, icon):
        pass

    def setToolTip(self, text):
        pass

    def supportsMessages(self):
        return self.supported

    def showMessage(self, *args):
        self.messages.append(args)


def _indicator(qapp, fake_run, config=None, detector=None, settings=None):
    config = config or Config(enable_aur=False)
    orch = PollOrchestrator(
        config,
        detector=detector or HelperDetector(config.aur_helper, config.enable_aur),
        run=fake_run,
        clock=lambda: datetime(2026, 10, 19, 12, 0, 0),
    )
    return orch, tray.TrayIndicator(qapp, orch, settings=settings)


def _wait_for(predicate, timeout=5):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.01)
    return predicate()


def test_notification_body_mentions_both_totals():
    assert tray.notification_body(2, 1, 1, 3) == "Pending updates changed from 1 to 3 (2 official, 1 AUR)"


def test_initial_menu_reflects_idle_state(qapp, fake_run):
    _, indicator = _indicator(qapp, fake_run)

    assert indicator.status_item.text() == "Status: up to date"
    assert indicator.checked_item.text() == "Last check: never"
    assert not indicator.error_item.isVisible()
    assert not indicator.upgrade_aur_item.isEnabled()


def test_snapshot_updates_menu_labels(qapp, fake_run):
    fake_run.responses["pacman"] = (UPDATES, 0)
    orch, indicator = _indicator(qapp, fake_run)

    orch.run_once()

    assert indicator.status_item.text() == "Status: updates available"
    assert indicator.official_item.text() == "Official updates: 2"
    assert indicator.aur_item.text() == "AUR updates: 0"
    assert indicator.checked_item.text() == "Last check: 2026-10-19 12:00:00"
    assert indicator.tray.toolTip() == "pactrack: 2 updates"
    assert not indicator.error_item.isVisible()


def test_error_snapshot_shows_error_line(qapp, fake_run):
    fake_run.responses["fakeroot"] = ("", 1, "error: failed retrieving file")
    orch, indicator = _indicator(qapp, fake_run)

    orch.run_once()

    assert indicator.status_item.text() == "Status: error"
    assert indicator.error_item.isVisible()
    assert indicator.error_item.text().startswith("Last error: ")


def test_aur_upgrade_enabled_only_with_helper(qapp, fake_run, make_binary):
    make_binary("yay")
    config = Config()
    orch, indicator = _indicator(
        qapp, fake_run, config, HelperDetector("auto", path=str(make_binary.dir))
    )

    orch.run_once()
    assert indicator.upgrade_aur_item.isEnabled()

    orch.reload(Config(aur_helper="none"))
    orch.run_once()
    assert not indicator.upgrade_aur_item.isEnabled()


def test_notification_is_shown_as_balloon(qapp, fake_run):
    fake_run.responses["pacman"] = (UPDATES, 0)
    orch, indicator = _indicator(qapp, fake_run)
    indicator.tray = RecordingTray()

    orch.run_once()
    orch.run_once()

    assert len(indicator.tray.messages) == 1
    title, body, _, timeout = indicator.tray.messages[0]
    assert title == "pactrack"
    assert body == "Pending updates changed from 0 to 2 (2 official, 0 AUR)"
    assert timeout == tray.NOTIFICATION_TIMEOUT_MS


def test_notification_skipped_without_message_support(qapp, fake_run):
    fake_run.responses["pacman"] = (UPDATES, 0)
    orch, indicator = _indicator(qapp, fake_run)
    indicator.tray = RecordingTray(supported=False)

    orch.run_once()

    assert indicator.tray.messages == []


def test_upgrade_terminal_exit_requests_refresh(qapp, fake_run, monkeypatch):
    orch, indicator = _indicator(qapp, fake_run)
    launched = []
    triggers = []

    def fake_launch(config, command):
        launched.append(command)
        return subprocess.Popen(["true"])

    monkeypatch.setattr(terminal, "launch_in_terminal", fake_launch)
    monkeypatch.setattr(tray, "UPGRADE_WATCH_MS", 10)
    monkeypatch.setattr(orch, "request_refresh", lambda trigger="manual-refresh": triggers.append(trigger))

    indicator._upgrade_official()

    assert launched == ["sudo pacman -Syu"]
    assert _wait_for(lambda: triggers)
    assert triggers == ["post-upgrade"]
    assert indicator._watchers == []


def test_aur_upgrade_without_helper_launches_nothing(qapp, fake_run, monkeypatch):
    _, indicator = _indicator(qapp, fake_run)
    launched = []
    monkeypatch.setattr(terminal, "launch_in_terminal", lambda config, command: launched.append(command))

    indicator._upgrade_aur()

    assert launched == []


def test_reload_settings_applies_file_and_refreshes(qapp, fake_run, monkeypatch, tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"poll_minutes": 5, "enable_aur": False}), encoding="utf-8")
    settings = Settings(path)
    orch, indicator = _indicator(qapp, fake_run, settings.to_config(), settings=settings)
    triggers = []
    monkeypatch.setattr(orch, "request_refresh", lambda trigger="manual-refresh": triggers.append(trigger))

    path.write_text(json.dumps({"poll_minutes": 20, "enable_aur": False}), encoding="utf-8")

    assert indicator.reload_settings() is True
    assert orch.config.poll_minutes == 20
    assert orch._timer.interval() == 20 * 60 * 1000
    assert triggers == ["settings-reload"]


def test_reload_settings_keeps_config_on_invalid_file(qapp, fake_run, monkeypatch, tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"poll_minutes": 5}), encoding="utf-8")
    settings = Settings(path)
    orch, indicator = _indicator(qapp, fake_run, settings.to_config(), settings=settings)
    triggers = []
    monkeypatch.setattr(orch, "request_refresh", lambda trigger="manual-refresh": triggers.append(trigger))

    path.write_text("{broken", encoding="utf-8")

    assert indicator.reload_settings() is False
    assert orch.config.poll_minutes == 5
    assert triggers == []


def test_status_change_updates_icon_label(qapp, fake_run):
    _, indicator = _indicator(qapp, fake_run)

    indicator.on_status_changed(Status.CHECKING)

    assert indicator.status_item.text() == "Status: checking"
    assert indicator.tray.toolTip() == "pactrack: checking"
