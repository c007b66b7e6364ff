import logging
from typing import Any, Dict, Optional

from PySide6.QtCore import QObject, Slot
from PySide6.QtGui import QAction, QIcon
from PySide6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

import terminal
from models import HelperChoice, Status, UpdateSnapshot
from scheduler import PollOrchestrator
from settings import Settings, SettingsError

logger = logging.getLogger(__name__)

NOTIFICATION_TIMEOUT_MS = 15000
UPGRADE_WATCH_MS = 1000

# Theme icon name and QStyle fallback per status
STATUS_ICONS = {
    Status.CHECKING: ("view-refresh-symbolic", QStyle.SP_BrowserReload),
    Status.UP_TO_DATE: ("emblem-default", QStyle.SP_DialogApplyButton),
    Status.UPDATES_AVAILABLE: ("software-update-available", QStyle.SP_ArrowUp),
    Status.ERROR: ("dialog-error", QStyle.SP_MessageBoxCritical),
}


def notification_body(official: int, aur: int, previous: int, total: int) -> str:
    return f"Pending updates changed from {previous} to {total} ({official} official, {aur} AUR)"


class TrayIndicator(QObject):
    """System tray front end for a PollOrchestrator."""

    def __init__(
        self,
        app: QApplication,
        orchestrator: PollOrchestrator,
        settings: Optional[Settings] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(app)
        self._app = app
        self._orchestrator = orchestrator
        self._settings = settings
        self._overrides = overrides or {}
        self._watchers: list[terminal.TerminalWatcher] = []

        status = orchestrator.status
        self.tray = QSystemTrayIcon(self._icon(status), self)
        self.tray.setToolTip(f"pactrack: {status.label}")

        menu = QMenu()
        self.status_item = self._label(menu, f"Status: {status.label}")
        self.official_item = self._label(menu, "Official updates: 0")
        self.aur_item = self._label(menu, "AUR updates: 0")
        self.checked_item = self._label(menu, "Last check: never")
        self.error_item = self._label(menu, "")
        self.error_item.setVisible(False)
        menu.addSeparator()

        self._action(menu, "Refresh now", lambda: orchestrator.request_refresh())
        self._action(menu, "Open details", self._open_details)
        self._action(menu, "Upgrade all", self._upgrade_all)
        self._action(menu, "Upgrade official only", self._upgrade_official)
        self.upgrade_aur_item = self._action(menu, "Upgrade AUR only", self._upgrade_aur)
        self.upgrade_aur_item.setEnabled(False)
        menu.addSeparator()
        if settings is not None:
            self._action(menu, "Reload settings", self.reload_settings)
        self._action(menu, "Quit", self._quit)

        self._menu = menu
        self.tray.setContextMenu(menu)
        self.tray.activated.connect(self._on_activated)

        orchestrator.status_changed.connect(self.on_status_changed)
        orchestrator.snapshot_updated.connect(self.on_snapshot_updated)
        orchestrator.notification_requested.connect(self.on_notification_requested)

    def show(self):
        self.tray.show()

    # ------------------------------------------------------------------
    # orchestrator signals
    # ------------------------------------------------------------------
    @Slot(object)
    def on_status_changed(self, status: Status):
        self.tray.setIcon(self._icon(status))
        self.status_item.setText(f"Status: {status.label}")
        tooltip = f"pactrack: {status.label}"
        snapshot = self._orchestrator.snapshot
        if status is Status.UPDATES_AVAILABLE and snapshot:
            tooltip = f"pactrack: {snapshot.total_count} updates"
        self.tray.setToolTip(tooltip)

    @Slot(object)
    def on_snapshot_updated(self, snapshot: UpdateSnapshot):
        self.official_item.setText(f"Official updates: {snapshot.official_count}")
        self.aur_item.setText(f"AUR updates: {snapshot.aur_count}")
        self.checked_item.setText(f"Last check: {snapshot.checked_at:%Y-%m-%d %H:%M:%S}")

        problem = snapshot.error or (snapshot.warnings[0] if snapshot.warnings else None)
        self.error_item.setVisible(problem is not None)
        if problem is not None:
            self.error_item.setText(f"Last error: {problem}")

        config = self._orchestrator.config
        self.upgrade_aur_item.setEnabled(config.enable_aur and snapshot.helper is not HelperChoice.NONE)

    @Slot(int, int, int, int)
    def on_notification_requested(self, official: int, aur: int, previous: int, total: int):
        if not self.tray.supportsMessages():
            logger.debug("tray does not support messages, skipping notification")
            return
        self.tray.showMessage(
            "pactrack",
            notification_body(official, aur, previous, total),
            QSystemTrayIcon.Information,
            NOTIFICATION_TIMEOUT_MS,
        )

    # ------------------------------------------------------------------
    # menu actions
    # ------------------------------------------------------------------
    def reload_settings(self) -> bool:
        """Re-read the settings file and hand the result to the orchestrator."""
        try:
            self._settings.load()
            config = self._settings.to_config(**self._overrides)
        except SettingsError as exc:
            logger.error("failed to reload settings: %s", exc)
            return False

        logger.info("reloaded settings from %s", self._settings.config_file)
        self._orchestrator.reload(config)
        self._orchestrator.request_refresh("settings-reload")
        return True

    def _open_details(self):
        config = self._orchestrator.config
        try:
            command = terminal.build_details_command(config, self._orchestrator.helper)
            terminal.launch_in_terminal(config, command)
        except terminal.TerminalError as exc:
            logger.error("failed to open details terminal: %s", exc)
            return
        logger.info("opened details terminal")

    def _upgrade_all(self):
        config = self._orchestrator.config
        self._launch_upgrade(terminal.build_upgrade_command(config, self._orchestrator.helper))

    def _upgrade_official(self):
        self._launch_upgrade(terminal.build_upgrade_official_command())

    def _upgrade_aur(self):
        command = terminal.build_upgrade_aur_command(self._orchestrator.helper)
        if command is None:
            logger.error("cannot run AUR upgrade: AUR helper not detected")
            return
        self._launch_upgrade(command)

    def _launch_upgrade(self, command: str):
        try:
            proc = terminal.launch_in_terminal(self._orchestrator.config, command)
        except terminal.TerminalError as exc:
            logger.error("failed to open upgrade terminal: %s", exc)
            return

        watcher = terminal.TerminalWatcher(proc, self, interval_ms=UPGRADE_WATCH_MS)
        watcher.finished.connect(lambda code, w=watcher: self._on_upgrade_finished(w, code))
        self._watchers.append(watcher)

    def _on_upgrade_finished(self, watcher: terminal.TerminalWatcher, code: int):
        logger.info("upgrade terminal exited with %d, refreshing", code)
        self._watchers.remove(watcher)
        watcher.deleteLater()
        self._orchestrator.request_refresh("post-upgrade")

    def _on_activated(self, reason):
        if reason in (QSystemTrayIcon.Trigger, QSystemTrayIcon.DoubleClick):
            self._orchestrator.request_refresh()

    def _quit(self):
        self._orchestrator.stop()
        self.tray.hide()
        self._app.quit()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _icon(self, status: Status) -> QIcon:
        name, fallback = STATUS_ICONS[status]
        return QIcon.fromTheme(name, self._app.style().standardIcon(fallback))

    def _label(self, menu: QMenu, text: str) -> QAction:
        action = QAction(text, self)
        action.setEnabled(False)
        menu.addAction(action)
        return action

    def _action(self, menu: QMenu, text: str, handler) -> QAction:
        action = QAction(text, self)
        action.triggered.connect(handler)
        menu.addAction(action)
        return action


def run_tray(settings: Settings, overrides: Dict[str, Any], qt_args: Optional[list] = None) -> int:
    config = settings.to_config(**overrides)
    app = QApplication(qt_args or ["pactrack"])
    app.setQuitOnLastWindowClosed(False)

    if not QSystemTrayIcon.isSystemTrayAvailable():
        logger.error("no system tray available")
        return 1

    orchestrator = PollOrchestrator(config)
    indicator = TrayIndicator(app, orchestrator, settings, overrides)
    indicator.show()
    orchestrator.start()
    return app.exec()
