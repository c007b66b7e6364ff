import logging
import os
import shlex
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

import runner
from aur_helper import HelperDetector
from models import (
    EMPTY,
    CheckError,
    Config,
    ErrorKind,
    HelperChoice,
    PackageUpdate,
    UpdateList,
)

logger = logging.getLogger(__name__)

RunFn = Callable[..., runner.CapturedOutput]

DEFAULT_DBPATH = "/var/lib/pacman"
DEFAULT_TMPDIR = "/tmp"
DEFAULT_UID = "0"


class CheckFailed(RuntimeError):
    """Raised inside this module when one half of a check cannot complete."""

    def __init__(self, error: CheckError):
        super().__init__(str(error))
        self.error = error


@dataclass(frozen=True)
class CheckOutcome:
    official: Optional[UpdateList]  # None when the official half failed
    aur: Optional[UpdateList]       # None when the cycle stopped before the AUR half
    error: Optional[CheckError] = None
    warnings: Tuple[CheckError, ...] = ()
    helper: HelperChoice = HelperChoice.NONE


# ---------------------------------------------------------------------------
# parsing
# ---------------------------------------------------------------------------

def _parse_update_line(line: str, source: str) -> Tuple[PackageUpdate, bool]:
    """Split one listing line into an update; the flag says if it looked sane."""

    parts = line.split()
    name = parts[0]

    if "->" in parts:
        idx = parts.index("->")
        current = parts[idx - 1] if idx >= 2 else ""
        latest = parts[idx + 1] if idx + 1 < len(parts) else ""
        well_formed = len(parts) == 4 and idx == 2
    elif len(parts) == 3:
        # "name old new" without an arrow
        current, latest = parts[1], parts[2]
        well_formed = True
    else:
        current = parts[1] if len(parts) > 1 else ""
        latest = parts[-1] if len(parts) > 2 else ""
        well_formed = False

    return PackageUpdate(name=name, current=current, latest=latest, source=source), well_formed


def parse_update_lines(output: str, source: str = "official") -> UpdateList:
    """Parse "list upgradable" output, one package per line.

    The first whitespace-delimited token of every non-blank line is taken as
    the package name. Lines that do not look like ``name old -> new`` are
    still counted and additionally reported as anomalies.
    """

    packages: List[PackageUpdate] = []
    anomalies: List[str] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        update, well_formed = _parse_update_line(line, source)
        packages.append(update)
        if not well_formed:
            anomalies.append(line)
    return UpdateList(packages=tuple(packages), anomalies=tuple(anomalies))


def filter_pacman_qu_output(stdout: str) -> str:
    """Drop ``[ignored]`` style annotation lines from pacman -Qu output."""
    kept = []
    for line in stdout.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        if "[" in trimmed and "]" in trimmed:
            continue
        kept.append(line)
    return "\n".join(kept)


def _anomaly_warning(result: UpdateList, command: str) -> Optional[CheckError]:
    if not result.anomalies:
        return None
    return CheckError(
        ErrorKind.PARSE_ANOMALY,
        command=command,
        message=f"{len(result.anomalies)} unrecognised line(s), first: {result.anomalies[0]!r}",
    )


def _error_from_run(kind: ErrorKind, exc: runner.RunError) -> CheckError:
    stderr = ""
    if isinstance(exc, runner.ExecutionFailed):
        stderr = exc.output.stderr.strip()
    if isinstance(exc, runner.ProgramNotFound) and kind is ErrorKind.LIST_FAILED:
        kind = ErrorKind.TOOL_NOT_FOUND
    return CheckError(kind, command=exc.command, message=exc.message, stderr=stderr)


# ---------------------------------------------------------------------------
# official repositories
# ---------------------------------------------------------------------------

def checkupdates_db_path(
    checkupdates_db: Optional[str] = None,
    tmpdir: Optional[str] = None,
    uid: Optional[str] = None,
) -> Path:
    """Location of the private sync database, following checkupdates."""

    if checkupdates_db and checkupdates_db.strip():
        return Path(checkupdates_db.strip())

    tmpdir = tmpdir if tmpdir and tmpdir.strip() else DEFAULT_TMPDIR
    uid = uid if uid and uid.strip() else DEFAULT_UID
    return Path(tmpdir) / f"checkup-db-{uid}"


def _env_db_path() -> Path:
    return checkupdates_db_path(
        os.environ.get("CHECKUPDATES_DB"),
        os.environ.get("TMPDIR"),
        os.environ.get("UID", str(os.getuid())),
    )


def resolve_pacman_db_path(run: RunFn = runner.run) -> Path:
    try:
        out = run("pacman-conf", ["DBPath"])
    except runner.RunError as exc:
        logger.warning("failed to read DBPath via pacman-conf (%s); using %s", exc, DEFAULT_DBPATH)
        return Path(DEFAULT_DBPATH)

    for line in out.stdout.splitlines():
        candidate = line.strip()
        if candidate:
            path = Path(candidate)
            if path.is_dir():
                return path
            break
    return Path(DEFAULT_DBPATH)


def prepare_checkupdates_db(db_path: Path, run: RunFn = runner.run) -> None:
    """Create the private database and link the real local database into it."""

    db_path.mkdir(parents=True, exist_ok=True)
    dst_local = db_path / "local"
    if dst_local.is_symlink() or dst_local.exists():
        return
    src_local = resolve_pacman_db_path(run) / "local"
    dst_local.symlink_to(src_local)


@contextmanager
def _db_lock_cleanup(db_path: Optional[Path]) -> Iterator[None]:
    try:
        yield
    finally:
        if db_path is not None:
            try:
                (db_path / "db.lck").unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("could not remove %s: %s", db_path / "db.lck", exc)


def refresh_official(db_path: Path, run: RunFn = runner.run) -> None:
    """Sync the private package database at *db_path*.

    Raises CheckFailed with a refresh-failed error; listing against a stale
    database is never attempted after that.
    """

    try:
        prepare_checkupdates_db(db_path, run)
    except OSError as exc:
        raise CheckFailed(CheckError(
            ErrorKind.REFRESH_FAILED,
            command=str(db_path),
            message=f"could not prepare sync database: {exc}",
        )) from exc

    args = [
        "--", "pacman", "-Sy",
        "--disable-sandbox-filesystem",
        "--dbpath", str(db_path),
        "--logfile", "/dev/null",
    ]
    try:
        run("fakeroot", args)
    except runner.RunError as exc:
        raise CheckFailed(_error_from_run(ErrorKind.REFRESH_FAILED, exc)) from exc


def official_command(config: Config, db_path: Optional[Path]) -> Tuple[str, List[str], Tuple[int, ...]]:
    """Return program, arguments and accepted exit codes for the listing step."""

    if config.official_check_cmd == "auto":
        args = ["-Qu", "--color", "never"]
        if db_path is not None:
            args[1:1] = ["--dbpath", str(db_path)]
        # pacman -Qu exits 1 when nothing is upgradable
        return "pacman", args, (0, 1)

    try:
        parts = shlex.split(config.official_check_cmd)
    except ValueError as exc:
        raise CheckFailed(CheckError(
            ErrorKind.LIST_FAILED,
            command=config.official_check_cmd,
            message=f"args-error: {exc}",
        )) from exc
    if not parts:
        raise CheckFailed(CheckError(ErrorKind.LIST_FAILED, message="empty official_check_cmd"))

    # checkupdates exits 2 when there are no updates
    return parts[0], [*parts[1:], "--nocolor"], (0, 2)


def list_official(config: Config, db_path: Optional[Path], run: RunFn = runner.run) -> UpdateList:
    program, args, codes = official_command(config, db_path)
    try:
        out = run(program, args, allowed_codes=codes)
    except runner.RunError as exc:
        raise CheckFailed(_error_from_run(ErrorKind.LIST_FAILED, exc)) from exc

    stdout = out.stdout
    if config.official_check_cmd == "auto":
        stdout = filter_pacman_qu_output(stdout)
    return parse_update_lines(stdout, "official")


# ---------------------------------------------------------------------------
# AUR
# ---------------------------------------------------------------------------

def check_aur(helper: HelperChoice, run: RunFn = runner.run) -> Tuple[UpdateList, Optional[CheckError]]:
    """Return pending AUR updates and an optional soft error.

    A failing helper never raises: the AUR half degrades to zero updates.
    """

    if helper is HelperChoice.NONE:
        return EMPTY, None

    try:
        # Exit code 1 = no updates, which is normal for yay and paru
        out = run(helper.binary, ["-Qua"], allowed_codes=(0, 1))
    except runner.RunError as exc:
        logger.warning("AUR check with %s failed: %s", helper.value, exc)
        return EMPTY, _error_from_run(ErrorKind.HELPER_UNAVAILABLE, exc)

    return parse_update_lines(out.stdout, "aur"), None


# ---------------------------------------------------------------------------
# full check
# ---------------------------------------------------------------------------

def perform_check(config: Config, detector: HelperDetector, run: RunFn = runner.run) -> CheckOutcome:
    """Run one complete, blocking check of both update sources."""

    helper = detector.resolve() if config.enable_aur else HelperChoice.NONE
    warnings: List[CheckError] = []
    if config.enable_aur and detector.unavailable:
        warnings.append(CheckError(
            ErrorKind.HELPER_UNAVAILABLE,
            command=detector.unavailable,
            message="configured AUR helper not found",
        ))

    # Custom check commands (e.g. checkupdates) sync on their own
    db_path = _env_db_path() if config.official_check_cmd == "auto" else None

    official: Optional[UpdateList] = None
    error: Optional[CheckError] = None
    with _db_lock_cleanup(db_path):
        if db_path is not None:
            try:
                refresh_official(db_path, run)
            except CheckFailed as exc:
                logger.warning("database refresh failed: %s", exc)
                return CheckOutcome(
                    official=None,
                    aur=None,
                    error=exc.error,
                    warnings=tuple(warnings),
                    helper=helper,
                )

        try:
            official = list_official(config, db_path, run)
        except CheckFailed as exc:
            logger.warning("official update check failed: %s", exc)
            error = exc.error

    if official is not None:
        anomaly = _anomaly_warning(official, "official")
        if anomaly:
            warnings.append(anomaly)

    aur, aur_error = check_aur(helper, run)
    if aur_error:
        warnings.append(aur_error)
    anomaly = _anomaly_warning(aur, helper.value)
    if anomaly:
        warnings.append(anomaly)

    return CheckOutcome(
        official=official,
        aur=aur,
        error=error,
        warnings=tuple(warnings),
        helper=helper,
    )
