import os
import stat

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtWidgets import QApplication  # noqa: E402

import runner  # noqa: E402


class FakeRunner:
    """Stand-in for runner.run that answers from a table keyed by program."""

    def __init__(self, responses=None):
        # program -> (stdout, returncode[, stderr]) or an exception instance
        self.responses = dict(responses or {})
        self.calls = []
        self.hook = None

    def __call__(self, program, args=(), allowed_codes=(0,), env=None):
        self.calls.append((program, list(args)))
        if self.hook:
            self.hook(program, list(args))

        response = self.responses.get(program, ("", 0))
        if isinstance(response, Exception):
            raise response

        stdout, code = response[0], response[1]
        stderr = response[2] if len(response) > 2 else ""
        out = runner.CapturedOutput(runner.format_command(program, args), stdout, stderr, code)
        if code not in tuple(allowed_codes):
            raise runner.ExecutionFailed(out)
        return out

    def programs(self):
        return [program for program, _ in self.calls]


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture(autouse=True)
def isolated_sync_db(monkeypatch, tmp_path):
    """Keep the private pacman sync database inside the test's tmp dir."""
    db = tmp_path / "checkup-db"
    monkeypatch.setenv("CHECKUPDATES_DB", str(db))
    return db


@pytest.fixture
def fake_run():
    return FakeRunner({"pacman-conf": ("/nonexistent/pacman\n", 0)})


@pytest.fixture
def make_binary(tmp_path):
    bindir = tmp_path / "bin"
    bindir.mkdir()

    def _make(name):
        path = bindir / name
        path.write_text("#!/bin/sh\nexit 0\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    _make.dir = bindir
    return _make
