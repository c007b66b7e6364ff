from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models import Status, UpdateSnapshot
from providers import CheckOutcome


@dataclass(frozen=True)
class Delta:
    before: int
    after: int

    @property
    def changed(self) -> bool:
        return self.before != self.after


def notification_due(delta: Delta, notify_on_change: bool) -> bool:
    """A change is notable when it lands on a non-zero total.

    Dropping to zero is already visible through the indicator state.
    """
    return notify_on_change and delta.changed and delta.after > 0


class ReconciliationState:
    """Current and previous snapshots, written only by the poll orchestrator."""

    def __init__(self):
        self.current: Optional[UpdateSnapshot] = None
        self.previous: Optional[UpdateSnapshot] = None

    def build_snapshot(self, outcome: CheckOutcome, checked_at: datetime) -> UpdateSnapshot:
        """Turn a check outcome into a snapshot.

        A half that did not produce a result keeps the package list of the
        current snapshot, so a failed cycle does not blank out known updates.
        """
        last = self.current
        if outcome.official is not None:
            official = outcome.official.packages
        else:
            official = last.official_updates if last else ()
        if outcome.aur is not None:
            aur = outcome.aur.packages
        else:
            aur = last.aur_updates if last else ()

        return UpdateSnapshot(
            official_updates=official,
            aur_updates=aur,
            checked_at=checked_at,
            error=outcome.error,
            warnings=outcome.warnings,
            helper=outcome.helper,
        )

    def record(self, snapshot: UpdateSnapshot) -> Optional[Delta]:
        """Store *snapshot* as the current one and return the change in totals.

        Snapshots carrying a fatal error replace the current snapshot only;
        the previous slot stays untouched and no delta is reported.
        """
        if snapshot.error is not None:
            self.current = snapshot
            return None

        self.previous = self.current
        self.current = snapshot
        before = self.previous.total_count if self.previous else 0
        return Delta(before=before, after=snapshot.total_count)


def project_status(state: ReconciliationState, in_flight: bool) -> Status:
    if in_flight:
        return Status.CHECKING
    snapshot = state.current
    if snapshot is None:
        return Status.UP_TO_DATE
    if snapshot.error is not None:
        return Status.ERROR
    if snapshot.total_count > 0:
        return Status.UPDATES_AVAILABLE
    return Status.UP_TO_DATE
