import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from models import Config, Status, UpdateSnapshot
from scheduler import PollOrchestrator
from settings import Settings, SettingsError

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_snapshot(status: Status, snapshot: Optional[UpdateSnapshot]) -> None:
    print(f"status: {status.label}")
    if snapshot is None:
        return
    print(f"official updates: {snapshot.official_count}")
    print(f"aur updates: {snapshot.aur_count}")
    print(f"total updates: {snapshot.total_count}")
    if snapshot.helper.binary:
        print(f"detected aur helper: {snapshot.helper.binary}")
    for name in snapshot.official_packages:
        print(f"  {name}")
    for name in snapshot.aur_packages:
        print(f"  {name} (aur)")
    if snapshot.error is not None:
        print(f"error: {snapshot.error}")
        if snapshot.error.stderr:
            print(snapshot.error.stderr)
    for warning in snapshot.warnings:
        print(f"warning: {warning}")


def run_once(config: Config) -> int:
    """Run a single check cycle and report it on stdout."""
    orchestrator = PollOrchestrator(config)
    snapshot = orchestrator.run_once()
    status = orchestrator.status
    _print_snapshot(status, snapshot)
    return 1 if status is Status.ERROR else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="pactrack", description="Arch package update tray tracker")
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to the settings file (default: ~/.config/pactrack/settings.json).",
    )
    parser.add_argument(
        "--poll-minutes",
        type=int,
        help="Override the polling interval in minutes.",
    )
    parser.add_argument(
        "--no-aur",
        action="store_true",
        help="Disable AUR update checks.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one update check, print the result and exit.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    args, qt_args = parser.parse_known_args(argv)

    _configure_logging(args.verbose)

    overrides = {"poll_minutes": args.poll_minutes, "no_aur": args.no_aur}
    try:
        settings = Settings(args.config)
        config = settings.to_config(**overrides)
    except SettingsError as exc:
        logger.error("%s", exc)
        return 2

    logger.info("using settings file: %s", settings.config_file)

    if args.once:
        return run_once(config)

    from tray import run_tray

    return run_tray(settings, overrides, [sys.argv[0], *qt_args])


if __name__ == "__main__":
    sys.exit(main())
