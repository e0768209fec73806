import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from cail.modules.buildsystem import CommandRunner
from cail.modules.models import CommandResult

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture(autouse=True)
def _reset_cail_logger():
    yield
    root = logging.getLogger("cail")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True


class RecordingRunner(CommandRunner):
    """Runner that records argv instead of spawning; exit codes come from `failing`."""

    def __init__(self, failing: Optional[dict] = None, output: Sequence[str] = ()):
        super().__init__()
        self.failing = failing or {}
        self.output = tuple(output)
        self.calls: List[tuple] = []

    def run(self, argv, cwd=None, sink=None, env=None, tail_lines=200) -> CommandResult:
        argv = tuple(argv)
        self.calls.append((argv, cwd))
        for line in self.output:
            if sink:
                sink(line)
        return CommandResult(argv, self.failing.get(argv, 0), self.output)


class ExplodingRunner(CommandRunner):
    def run(self, argv, cwd=None, sink=None, env=None, tail_lines=200) -> CommandResult:
        raise AssertionError(f"unexpected process spawn: {argv}")


def run_git(argv: List[str], *, cwd: Path) -> str:
    completed = subprocess.run(
        ["git", *argv],
        cwd=cwd,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        raise RuntimeError(f"git {' '.join(argv)} failed: {completed.stderr.strip()}")
    return completed.stdout.strip()


def create_repo(path: Path, files: Optional[dict] = None) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    run_git(["init", "-q"], cwd=path)
    run_git(["config", "user.email", "lab@example.com"], cwd=path)
    run_git(["config", "user.name", "Lab Test"], cwd=path)
    if files is not None:
        for name, content in files.items():
            (path / name).write_text(content, encoding="utf-8")
        run_git(["add", "."], cwd=path)
        run_git(["commit", "-q", "-m", "initial"], cwd=path)
    return path


@pytest.fixture
def recording_runner():
    return RecordingRunner()
