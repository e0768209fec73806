# cail/modules/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - configure/compile stage for cail targets

API:
  runner = CommandRunner()
  outcome = build(spec, source_path, build_path, runner=runner, sink=print, env=..., variables=...)

Behavior:
  - configure commands run first, then build commands, each as a child process
    with cwd = build_path (created if absent)
  - output (stdout+stderr merged) is streamed line by line to the sink; the last
    `tail_lines` lines are kept for the outcome
  - the first non-zero exit aborts the stage; configure failure never reaches compile
  - no incrementality of its own: the underlying tool (ninja, make) handles reruns
  - container targets append their `docker run` command to the build commands
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from string import Template
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from cail.modules.logging import get_logger
from cail.modules.models import Argv, BuildOutcome, BuildStatus, CommandResult, TargetSpec

logger = get_logger("buildsystem")

DEFAULT_TAIL_LINES = 200
Sink = Callable[[str], None]


# --- helpers ---
def expand_argv(argv: Sequence[str], variables: Mapping[str, str]) -> Argv:
    """Substitute ${var} placeholders; unknown placeholders are left as written."""
    return tuple(Template(a).safe_substitute(variables) for a in argv)


def command_variables(spec: TargetSpec, source_path: Path, build_path: Path,
                      base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    out = dict(base or {})
    out.update({"target": spec.name, "source_dir": str(source_path), "build_dir": str(build_path)})
    return out


def build_commands(spec: TargetSpec) -> Tuple[Argv, ...]:
    if spec.container is not None:
        return spec.build_commands + (spec.container.argv(),)
    return spec.build_commands


def container_host_paths(spec: TargetSpec, variables: Mapping[str, str]) -> List[Path]:
    if spec.container is None:
        return []
    return [Path(Template(host).safe_substitute(variables)) for host, _ in spec.container.volumes]


def plan(spec: TargetSpec, source_path: Path, build_path: Path,
         variables: Optional[Mapping[str, str]] = None) -> List[Argv]:
    """Expanded configure + build commands, in execution order."""
    variables = command_variables(spec, source_path, build_path, variables)
    return [expand_argv(argv, variables) for argv in spec.configure_commands + build_commands(spec)]


def format_argv(argv: Sequence[str]) -> str:
    return shlex.join(list(argv))


# --- process runner ---
class CommandRunner:
    """
    Runs one child process at a time in its own process group so that an
    interrupt received by cail can be forwarded to the whole child tree.
    """

    def __init__(self):
        self._active: Optional[subprocess.Popen] = None
        self.interrupted: Optional[int] = None

    def run(self, argv: Sequence[str], cwd: Optional[Path] = None, sink: Optional[Sink] = None,
            env: Optional[Mapping[str, str]] = None, tail_lines: Optional[int] = DEFAULT_TAIL_LINES) -> CommandResult:
        """Run argv, stream merged output to sink, keep the last tail_lines lines (None keeps all)."""
        if self.interrupted:
            msg = f"{argv[0]}: not started, interrupted by signal {self.interrupted}"
            return CommandResult(tuple(argv), 128 + self.interrupted, (msg,))
        tail: deque = deque(maxlen=tail_lines)
        started = time.monotonic()
        logger.debug("RUN: %s (cwd=%s)", format_argv(argv), str(cwd) if cwd else None)
        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            msg = f"{argv[0]}: {e.strerror or e}"
            tail.append(msg)
            if sink:
                sink(msg)
            rc = 127 if isinstance(e, FileNotFoundError) else 126
            return CommandResult(tuple(argv), rc, tuple(tail), time.monotonic() - started)

        self._active = proc
        try:
            with proc.stdout:
                for line in proc.stdout:
                    line = line.rstrip("\n")
                    tail.append(line)
                    if sink:
                        sink(line)
            rc = proc.wait()
        except BaseException:
            self._terminate(proc)
            raise
        finally:
            self._active = None
        if rc < 0:
            rc = 128 - rc  # shell convention for death by signal
        return CommandResult(tuple(argv), rc, tuple(tail), time.monotonic() - started)

    def _terminate(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            proc.wait(timeout=10)
        except ProcessLookupError:
            pass
        except subprocess.TimeoutExpired:
            os.killpg(proc.pid, signal.SIGKILL)
            proc.wait()

    def forward_signal(self, signum: int, frame=None) -> None:
        self.interrupted = signum
        proc = self._active
        if proc is not None and proc.poll() is None:
            logger.warning("forwarding signal %d to child pid %d", signum, proc.pid)
            try:
                os.killpg(proc.pid, signum)
            except ProcessLookupError:
                pass

    @contextmanager
    def forwarding_signals(self, signums: Sequence[int] = (signal.SIGINT, signal.SIGTERM)) -> Iterator["CommandRunner"]:
        """Route SIGINT/SIGTERM to the active child while inside the block (main thread only)."""
        self.interrupted = None
        if threading.current_thread() is not threading.main_thread():
            yield self
            return
        previous = {s: signal.signal(s, self.forward_signal) for s in signums}
        try:
            yield self
        finally:
            for s, handler in previous.items():
                signal.signal(s, handler)


# --- stages ---
def _run_commands(spec: TargetSpec, label: str, commands: Sequence[Argv], failure: BuildStatus,
                  cwd: Path, runner: CommandRunner, sink: Optional[Sink], env: Optional[Mapping[str, str]],
                  variables: Mapping[str, str], tail_lines: int) -> Optional[BuildOutcome]:
    for raw in commands:
        argv = expand_argv(raw, variables)
        logger.info("[%s] %s: %s", spec.name, label, format_argv(argv))
        result = runner.run(argv, cwd=cwd, sink=sink, env=env, tail_lines=tail_lines)
        if result.returncode != 0:
            logger.error("[%s] %s failed (exit %d): %s", spec.name, label, result.returncode, format_argv(argv))
            return BuildOutcome(failure, result.returncode, result.output_tail, argv)
        if runner.interrupted:
            msg = f"interrupted by signal {runner.interrupted}"
            return BuildOutcome(failure, 128 + runner.interrupted, result.output_tail + (msg,), argv)
    return None


def build(spec: TargetSpec, source_path: Path, build_path: Path, runner: Optional[CommandRunner] = None,
          sink: Optional[Sink] = None, env: Optional[Mapping[str, str]] = None,
          variables: Optional[Mapping[str, str]] = None, tail_lines: int = DEFAULT_TAIL_LINES) -> BuildOutcome:
    runner = runner or CommandRunner()
    variables = command_variables(spec, source_path, build_path, variables)
    for path in [build_path] + container_host_paths(spec, variables):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("[%s] cannot create %s: %s", spec.name, path, e.strerror or e)
            return BuildOutcome(BuildStatus.CONFIGURE_FAILED, 1, (f"{path}: {e.strerror or e}",))

    failed = _run_commands(spec, "configure", spec.configure_commands, BuildStatus.CONFIGURE_FAILED,
                           build_path, runner, sink, env, variables, tail_lines)
    if failed:
        return failed
    failed = _run_commands(spec, "build", build_commands(spec), BuildStatus.COMPILE_FAILED,
                           build_path, runner, sink, env, variables, tail_lines)
    if failed:
        return failed
    return BuildOutcome(BuildStatus.SUCCEEDED)


def check(spec: TargetSpec, source_path: Path, build_path: Path, runner: Optional[CommandRunner] = None,
          sink: Optional[Sink] = None, env: Optional[Mapping[str, str]] = None,
          variables: Optional[Mapping[str, str]] = None, tail_lines: int = DEFAULT_TAIL_LINES) -> BuildOutcome:
    """Run post-build check commands (e.g. the MLIR test suite) in the build tree."""
    runner = runner or CommandRunner()
    variables = command_variables(spec, source_path, build_path, variables)
    failed = _run_commands(spec, "check", spec.check_commands, BuildStatus.COMPILE_FAILED,
                           build_path, runner, sink, env, variables, tail_lines)
    return failed or BuildOutcome(BuildStatus.SUCCEEDED)
