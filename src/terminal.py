"""Helpers for running upgrade and detail commands in a terminal emulator."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from models import Config, HelperChoice

logger = logging.getLogger(__name__)

FALLBACK_TERMINALS = [
    "kitty",
    "alacritty",
    "gnome-terminal",
    "konsole",
    "xfce4-terminal",
    "xterm",
]


class TerminalError(RuntimeError):
    """Raised when no terminal could be resolved or started."""


@dataclass(frozen=True)
class TerminalSpec:
    program: str
    args: tuple = ()
    exec_delimiter: str = "-e"

    def argv(self, shell_command: str) -> list[str]:
        return [self.program, *self.args, self.exec_delimiter, "bash", "-lc", shell_command]


def _quote_cmd(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


def _exec_delimiter(program: str) -> str:
    return "--" if Path(program).name == "gnome-terminal" else "-e"


def parse_terminal_spec(raw: str) -> TerminalSpec:
    try:
        parts = shlex.split(raw)
    except ValueError as exc:
        raise TerminalError(f"invalid terminal command {raw!r}: {exc}") from exc
    if not parts:
        raise TerminalError(f"invalid terminal command {raw!r}")

    program, *args = parts
    return TerminalSpec(program=program, args=tuple(args), exec_delimiter=_exec_delimiter(program))


def resolve_terminal(configured: str = "auto", env: Optional[dict] = None) -> TerminalSpec:
    if configured != "auto":
        return parse_terminal_spec(configured)

    env = os.environ if env is None else env
    from_env = env.get("TERMINAL", "").strip()
    if from_env:
        try:
            return parse_terminal_spec(from_env)
        except TerminalError:
            logger.warning("failed to parse TERMINAL=%s, falling back to defaults", from_env)

    for candidate in FALLBACK_TERMINALS:
        if shutil.which(candidate):
            return TerminalSpec(program=candidate, exec_delimiter=_exec_delimiter(candidate))

    raise TerminalError("no supported terminal found (set terminal in settings)")


def build_upgrade_command(config: Config, helper: HelperChoice) -> str:
    if config.upgrade_cmd != "auto":
        return config.upgrade_cmd
    if helper is not HelperChoice.NONE:
        return f"{helper.binary} -Syu"
    return "sudo pacman -Syu"


def build_upgrade_official_command() -> str:
    return "sudo pacman -Syu"


def build_upgrade_aur_command(helper: HelperChoice) -> Optional[str]:
    if helper is HelperChoice.NONE:
        return None
    return f"{helper.binary} -Sua"


def build_details_command(config: Config, helper: HelperChoice) -> str:
    pieces: list[str] = []

    if config.official_check_cmd == "auto":
        pieces.append("pacman -Qu --color never")
    else:
        try:
            official = shlex.split(config.official_check_cmd)
        except ValueError as exc:
            raise TerminalError(f"invalid official_check_cmd: {exc}") from exc
        pieces.append(_quote_cmd([*official, "--nocolor"]))

    if config.enable_aur:
        pieces.append("echo")
        if helper is not HelperChoice.NONE:
            pieces.append(f"{helper.binary} -Qua")
        else:
            pieces.append("echo 'AUR helper not found (expected paru or yay)'")

    pieces.append("echo")
    pieces.append("read -n 1 -s -r -p 'Press any key to close...'")
    return "; ".join(pieces)


def launch_in_terminal(config: Config, shell_command: str) -> subprocess.Popen:
    spec = resolve_terminal(config.terminal)
    argv = spec.argv(shell_command)
    logger.info("launching terminal: %s", _quote_cmd(argv))
    try:
        return subprocess.Popen(argv)
    except OSError as exc:
        raise TerminalError(f"failed to start {spec.program}: {exc}") from exc


class TerminalWatcher(QObject):
    """Emit finished(exit_code) once a launched terminal process exits."""

    finished = Signal(int)

    def __init__(self, proc: subprocess.Popen, parent=None, interval_ms: int = 1000):
        super().__init__(parent)
        self._proc = proc
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._check_process_status)
        self._timer.start()

    @Slot()
    def _check_process_status(self) -> None:
        code = self._proc.poll()
        if code is None:
            return
        self._timer.stop()
        self.finished.emit(code)
