"""Single-flight update polling driven by a QTimer and manual refreshes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

import providers
import runner
from aur_helper import HelperDetector
from models import CheckError, Config, ErrorKind, HelperChoice, Status, UpdateSnapshot
from state import ReconciliationState, notification_due, project_status

logger = logging.getLogger(__name__)


class PollThread(QThread):
    """Run one blocking check off the GUI thread."""

    finished_with = Signal(object)  # providers.CheckOutcome

    def __init__(self, check: Callable[[], providers.CheckOutcome], parent=None):
        super().__init__(parent)
        self._check = check

    def run(self):
        self.finished_with.emit(self._check())


class PollOrchestrator(QObject):
    """Owns the poll cycle and the reconciliation state.

    States are Idle and Polling. A refresh request while Polling is dropped,
    so at most one cycle (and one set of pacman/helper processes) runs at a
    time. Results of a threaded cycle come back through a queued signal and
    are applied in the orchestrator's own thread.
    """

    status_changed = Signal(object)          # Status
    snapshot_updated = Signal(object)        # UpdateSnapshot
    notification_requested = Signal(int, int, int, int)  # official, aur, previous total, total

    def __init__(
        self,
        config: Config,
        detector: Optional[HelperDetector] = None,
        run: providers.RunFn = runner.run,
        clock: Callable[[], datetime] = datetime.now,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config
        self.detector = detector or HelperDetector(config.aur_helper, config.enable_aur)
        self.state = ReconciliationState()
        self._run = run
        self._clock = clock
        self._polling = False
        self._trigger = ""
        self._thread: Optional[PollThread] = None
        self._pending_config: Optional[Config] = None

        self._timer = QTimer(self)
        self._timer.setInterval(config.poll_interval_ms)
        self._timer.timeout.connect(lambda: self.request_refresh("periodic"))

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    @property
    def in_flight(self) -> bool:
        return self._polling

    @property
    def status(self) -> Status:
        return project_status(self.state, self._polling)

    @property
    def snapshot(self) -> Optional[UpdateSnapshot]:
        return self.state.current

    @property
    def helper(self) -> HelperChoice:
        current = self.state.current
        return current.helper if current else HelperChoice.NONE

    def start(self) -> None:
        """Run a startup cycle and arm the periodic timer."""
        self._timer.start()
        self.request_refresh("startup")

    def stop(self) -> None:
        self._timer.stop()
        if self._thread is not None:
            self._thread.wait()

    def reload(self, config: Config) -> None:
        """Apply new settings; the AUR helper is probed again on the next cycle.

        While a cycle is running the worker still reads the config and the
        detector, so the new settings are held back until it completes.
        """
        if self._polling:
            logger.debug("update check running, deferring settings reload")
            self._pending_config = config
            return
        self._apply_config(config)

    def request_refresh(self, trigger: str = "manual-refresh") -> bool:
        """Start a cycle in a worker thread unless one is already running."""
        if not self._begin(trigger):
            return False

        thread = PollThread(self._check, self)
        thread.finished_with.connect(self._on_cycle_finished)
        thread.finished.connect(lambda t=thread: self._on_thread_finished(t))
        self._thread = thread
        thread.start()
        return True

    def run_once(self) -> Optional[UpdateSnapshot]:
        """Run exactly one cycle in the calling thread.

        Returns the recorded snapshot, or None if a cycle was already in flight.
        """
        if not self._begin("once"):
            return None
        return self._complete(self._check())

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _apply_config(self, config: Config) -> None:
        self.config = config
        self.detector.reset(config.aur_helper, config.enable_aur)
        self._timer.setInterval(config.poll_interval_ms)

    def _begin(self, trigger: str) -> bool:
        if self._polling:
            logger.debug("update check already running, ignoring %s request", trigger)
            return False
        self._polling = True
        self._trigger = trigger
        logger.info("running update check (%s)", trigger)
        self.status_changed.emit(Status.CHECKING)
        return True

    def _check(self) -> providers.CheckOutcome:
        try:
            return providers.perform_check(self.config, self.detector, self._run)
        except Exception as exc:
            # The cycle must always end, otherwise the orchestrator stays in Polling
            logger.exception("update check crashed")
            return providers.CheckOutcome(
                official=None,
                aur=None,
                error=CheckError(ErrorKind.LIST_FAILED, message=f"exception: {exc}"),
            )

    def _complete(self, outcome: providers.CheckOutcome) -> UpdateSnapshot:
        snapshot = self.state.build_snapshot(outcome, self._clock())
        delta = self.state.record(snapshot)

        if snapshot.error is not None:
            logger.warning("update check failed: %s", snapshot.error)
        else:
            logger.info(
                "update check finished (%s): %d official, %d AUR",
                self._trigger,
                snapshot.official_count,
                snapshot.aur_count,
            )
        for warning in snapshot.warnings:
            logger.info("update check warning: %s", warning)

        self._polling = False
        if self._pending_config is not None:
            config, self._pending_config = self._pending_config, None
            self._apply_config(config)

        if delta is not None and notification_due(delta, self.config.notify_on_change):
            self.notification_requested.emit(
                snapshot.official_count, snapshot.aur_count, delta.before, delta.after
            )
        self.snapshot_updated.emit(snapshot)
        self.status_changed.emit(self.status)
        return snapshot

    @Slot(object)
    def _on_cycle_finished(self, outcome: providers.CheckOutcome):
        self._complete(outcome)

    def _on_thread_finished(self, thread: PollThread):
        if self._thread is thread:
            self._thread = None
        thread.deleteLater()
