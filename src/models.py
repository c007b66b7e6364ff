from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Status(Enum):
    CHECKING = "checking"
    UP_TO_DATE = "up-to-date"
    UPDATES_AVAILABLE = "updates-available"
    ERROR = "error"

    @property
    def label(self) -> str:
        return {
            Status.CHECKING: "checking",
            Status.UP_TO_DATE: "up to date",
            Status.UPDATES_AVAILABLE: "updates available",
            Status.ERROR: "error",
        }[self]


class HelperChoice(Enum):
    PARU = "paru"
    YAY = "yay"
    NONE = "none"

    @property
    def binary(self) -> Optional[str]:
        return None if self is HelperChoice.NONE else self.value


HELPER_MODES = ("auto", "paru", "yay", "none")


class ErrorKind(Enum):
    TOOL_NOT_FOUND = "tool-not-found"
    REFRESH_FAILED = "refresh-failed"
    LIST_FAILED = "list-failed"
    PARSE_ANOMALY = "parse-anomaly"
    HELPER_UNAVAILABLE = "helper-unavailable"


@dataclass(frozen=True)
class CheckError:
    kind: ErrorKind
    command: str = ""
    message: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.message}" if self.message else self.kind.value
        if self.command:
            text = f"{text} ({self.command})"
        return text


@dataclass(frozen=True)
class PackageUpdate:
    name: str
    current: str = ""    # Installed version, empty if the line had none
    latest: str = ""     # Candidate version
    source: str = "official"  # "official" | "aur"


@dataclass(frozen=True)
class UpdateList:
    packages: Tuple[PackageUpdate, ...] = ()
    anomalies: Tuple[str, ...] = ()  # Lines that were counted on a best-effort basis

    @property
    def count(self) -> int:
        return len(self.packages)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.packages)


EMPTY = UpdateList()


@dataclass(frozen=True)
class UpdateSnapshot:
    """Result of one complete poll cycle."""

    official_updates: Tuple[PackageUpdate, ...] = ()
    aur_updates: Tuple[PackageUpdate, ...] = ()
    checked_at: datetime = field(default_factory=datetime.now)
    error: Optional[CheckError] = None            # Fatal for the cycle
    warnings: Tuple[CheckError, ...] = ()         # Soft, counts still valid
    helper: HelperChoice = HelperChoice.NONE

    @property
    def official_count(self) -> int:
        return len(self.official_updates)

    @property
    def aur_count(self) -> int:
        return len(self.aur_updates)

    @property
    def total_count(self) -> int:
        return self.official_count + self.aur_count

    @property
    def official_packages(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.official_updates)

    @property
    def aur_packages(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.aur_updates)


@dataclass(frozen=True)
class Config:
    poll_minutes: int = 30
    notify_on_change: bool = True
    enable_aur: bool = True
    aur_helper: str = "auto"          # "auto", "paru", "yay" or "none"
    terminal: str = "auto"            # "auto" or a terminal command line
    official_check_cmd: str = "auto"  # "auto" or e.g. "checkupdates"
    upgrade_cmd: str = "auto"         # "auto" or a shell command

    @property
    def poll_interval_ms(self) -> int:
        minutes = max(1, int(self.poll_minutes))
        # QTimer intervals are signed 32 bit
        return min(minutes * 60 * 1000, 2**31 - 1)
