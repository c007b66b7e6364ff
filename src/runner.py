import logging
import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

logger = logging.getLogger(__name__)


class RunError(RuntimeError):
    """Base class for failures while running an external program."""

    def __init__(self, command: str, message: str):
        super().__init__(f"{command}: {message}")
        self.command = command
        self.message = message


class ProgramNotFound(RunError):
    pass


class IoFailure(RunError):
    pass


class ExecutionFailed(RunError):
    def __init__(self, output: "CapturedOutput"):
        stderr = output.stderr.strip() or "<no stderr>"
        super().__init__(output.command, f"exit-code {output.returncode}: {stderr}")
        self.output = output

    @property
    def returncode(self) -> int:
        return self.output.returncode


@dataclass(frozen=True)
class CapturedOutput:
    command: str
    stdout: str
    stderr: str
    returncode: int


def format_command(program: str, args: Sequence[str] = ()) -> str:
    return shlex.join([program, *args])


def child_env(env: Optional[dict] = None) -> dict:
    env = (env or os.environ).copy()
    env.setdefault("NO_COLOR", "1")
    env.setdefault("CLICOLOR", "0")
    env.setdefault("PACMAN_COLOR", "never")
    return env


def strip_ansi(text: str) -> str:
    """Return *text* with ANSI escape sequences removed."""

    if "\x1b" not in text:
        return text

    csi = r"\x1B[@-_][0-?]*[ -/]*[@-~]"
    osc = r"\x1B\][^\x07\x1B]*(\x07|\x1B\\)"
    pattern = f"({csi}|{osc})"
    return re.sub(pattern, "", text)


def run(
    program: str,
    args: Sequence[str] = (),
    allowed_codes: Iterable[int] = (0,),
    env: Optional[dict] = None,
) -> CapturedOutput:
    """Run *program* with *args* and capture its output.

    Arguments are handed to the child as separate tokens, never through a
    shell. Exit codes outside *allowed_codes* raise ExecutionFailed, which
    still carries the captured output.
    """

    cmd = [program, *args]
    view = format_command(program, args)
    logger.debug("$ %s", view)

    try:
        proc = subprocess.run(
            cmd,
            text=True,
            errors="replace",
            capture_output=True,
            check=False,
            env=child_env(env),
        )
    except FileNotFoundError as exc:
        raise ProgramNotFound(view, "not-found") from exc
    except OSError as exc:
        raise IoFailure(view, f"exception: {exc}") from exc

    output = CapturedOutput(
        command=view,
        stdout=strip_ansi(proc.stdout or ""),
        stderr=strip_ansi(proc.stderr or ""),
        returncode=proc.returncode,
    )
    if proc.returncode not in tuple(allowed_codes):
        raise ExecutionFailed(output)
    return output
