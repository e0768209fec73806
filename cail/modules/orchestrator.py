# cail/modules/orchestrator.py
# -*- coding: utf-8 -*-
"""
Orchestrator: resolve targets, fetch then build each one, report BuildResults.

Per-target state machine:
  NOT_STARTED -> FETCHING -> FETCHED -> BUILDING -> SUCCEEDED | FAILED
                          -> FETCH_FAILED
Batch runs ("all") follow registration order and keep going after a target
fails. UnknownTarget and WorkspaceUnwritable abort before any work starts.
"""

from __future__ import annotations

import time
from pathlib import Path
from string import Template
from typing import Dict, List, Mapping, Optional, Sequence

from cail.modules import buildsystem, fetcher, workspace
from cail.modules.buildsystem import CommandRunner, Sink, format_argv
from cail.modules.config import Config
from cail.modules.errors import Interrupted
from cail.modules.logging import get_logger
from cail.modules.models import (
    BuildOutcome,
    BuildResult,
    FetchStatus,
    Stage,
    TargetSpec,
    TargetState,
    WorkspaceState,
)
from cail.modules.registry import TargetRegistry, build_registry

logger = get_logger("orchestrator")

ALL = "all"
MAX_EXIT_CODE = 125


def _stdout_sink(line: str) -> None:
    print(line, flush=True)


class Orchestrator:
    def __init__(self, registry: TargetRegistry, root: Path, *, runner: Optional[CommandRunner] = None,
                 sink: Optional[Sink] = None, env: Optional[Mapping[str, str]] = None,
                 variables: Optional[Mapping[str, str]] = None,
                 tail_lines: int = buildsystem.DEFAULT_TAIL_LINES, fetch_depth: Optional[int] = None):
        self.registry = registry
        self.root = Path(root).expanduser().absolute()
        self.runner = runner or CommandRunner()
        self.sink = sink or _stdout_sink
        self.env = dict(env) if env is not None else None
        self.variables: Dict[str, str] = dict(variables or {})
        self.variables["root"] = str(self.root)
        self.tail_lines = tail_lines
        self.fetch_depth = fetch_depth
        self.states: Dict[str, TargetState] = {}
        self.state: WorkspaceState = workspace.inspect(self.root, registry.all())

    @classmethod
    def from_config(cls, cfg: Config, registry: Optional[TargetRegistry] = None, **kwargs) -> "Orchestrator":
        kwargs.setdefault("env", cfg.build_env())
        return cls(
            registry if registry is not None else build_registry(cfg),
            cfg.workspace_root,
            variables=cfg.variables(),
            tail_lines=cfg.tail_lines,
            fetch_depth=cfg.fetch_depth,
            **kwargs,
        )

    # ----------------------
    # resolution / paths
    # ----------------------
    def resolve(self, target: str) -> List[TargetSpec]:
        if target == ALL:
            return self.registry.all()
        return [self.registry.lookup(target)]

    def source_path(self, spec: TargetSpec) -> Path:
        return workspace.resolve_path(self.root, spec)

    def build_path(self, spec: TargetSpec) -> Path:
        return workspace.build_path(self.root, spec)

    def _variables_for(self, spec: TargetSpec) -> Dict[str, str]:
        return buildsystem.command_variables(spec, self.source_path(spec), self.build_path(spec), self.variables)

    def _transition(self, spec: TargetSpec, state: TargetState) -> None:
        logger.debug("[%s] %s -> %s", spec.name, self.states.get(spec.name, TargetState.NOT_STARTED).value, state.value)
        self.states[spec.name] = state

    # ----------------------
    # run
    # ----------------------
    def run(self, target: str, dry_run: bool = False) -> List[BuildResult]:
        specs = self.resolve(target)
        if dry_run:
            return [self._plan(spec) for spec in specs]

        results: List[BuildResult] = []
        with workspace.ensure_root(self.root), self.runner.forwarding_signals():
            for spec in specs:
                results.append(self._run_one(spec))
                if self.runner.interrupted:
                    logger.warning("interrupted; stopping after %s", spec.name)
                    raise Interrupted(self.runner.interrupted, results)
        return results

    def _run_one(self, spec: TargetSpec) -> BuildResult:
        started = time.monotonic()
        self._transition(spec, TargetState.FETCHING)
        fetched = fetcher.fetch(spec, self.root, runner=self.runner, depth=self.fetch_depth, sink=self.sink)
        if not fetched.ok:
            self._transition(spec, TargetState.FETCH_FAILED)
            return BuildResult(
                target=spec.name,
                stage=Stage.FETCH,
                state=TargetState.FETCH_FAILED,
                fetch=fetched.status,
                exit_code=fetched.returncode or 1,
                duration=time.monotonic() - started,
                output_tail=tuple(fetched.reason.splitlines()[-self.tail_lines:]),
            )
        self.state.mark_present(spec.name)
        self._transition(spec, TargetState.FETCHED)

        self._transition(spec, TargetState.BUILDING)
        outcome = buildsystem.build(
            spec, self.source_path(spec), self.build_path(spec),
            runner=self.runner, sink=self.sink, env=self.env,
            variables=self.variables, tail_lines=self.tail_lines,
        )
        self.state.record_build(spec.name, outcome.ok)
        final = TargetState.SUCCEEDED if outcome.ok else TargetState.FAILED
        self._transition(spec, final)
        if outcome.ok:
            self._emit_notes(spec)
        return self._result(spec, outcome, outcome.stage, fetched.status, time.monotonic() - started)

    def _result(self, spec: TargetSpec, outcome: BuildOutcome, stage: Stage,
                fetch_status: Optional[FetchStatus], duration: float) -> BuildResult:
        return BuildResult(
            target=spec.name,
            stage=stage,
            state=TargetState.SUCCEEDED if outcome.ok else TargetState.FAILED,
            status=outcome.status,
            fetch=fetch_status,
            exit_code=outcome.exit_code,
            duration=duration,
            output_tail=outcome.output_tail,
        )

    def _emit_notes(self, spec: TargetSpec) -> None:
        variables = self._variables_for(spec)
        for note in spec.notes:
            self.sink(f"[{spec.name}] {Template(note).safe_substitute(variables)}")

    # ----------------------
    # dry run
    # ----------------------
    def _plan(self, spec: TargetSpec) -> BuildResult:
        src = self.source_path(spec)
        bld = self.build_path(spec)
        self.sink(f"# {spec.name}")
        if spec.needs_fetch:
            if workspace.is_populated(src):
                self.sink(f"# using existing clone at {src}")
            else:
                self.sink(format_argv(fetcher.clone_command(spec, src, self.fetch_depth)))
        variables = self._variables_for(spec)
        for host_path in buildsystem.container_host_paths(spec, variables):
            self.sink(format_argv(("mkdir", "-p", str(host_path))))
        commands = buildsystem.plan(spec, src, bld, self.variables)
        if commands:
            self.sink(format_argv(("mkdir", "-p", str(bld))))
        for argv in commands:
            self.sink(f"(cd {format_argv((str(bld),))} && {format_argv(argv)})")
        self._transition(spec, TargetState.PLANNED)
        return BuildResult(target=spec.name, stage=Stage.BUILD, state=TargetState.PLANNED)

    # ----------------------
    # check / clean
    # ----------------------
    def check(self, target: str) -> BuildResult:
        spec = self.registry.lookup(target)
        bld = self.build_path(spec)
        started = time.monotonic()
        if not spec.check_commands:
            self.sink(f"[{spec.name}] no checks defined")
            return BuildResult(target=spec.name, stage=Stage.CHECK, state=TargetState.SUCCEEDED)
        if not bld.is_dir():
            msg = f"build directory {bld} not found; run 'cail run {spec.name}' first"
            logger.error("[%s] %s", spec.name, msg)
            return BuildResult(target=spec.name, stage=Stage.CHECK, state=TargetState.FAILED,
                               exit_code=1, output_tail=(msg,))
        with self.runner.forwarding_signals():
            outcome = buildsystem.check(
                spec, self.source_path(spec), bld, runner=self.runner, sink=self.sink,
                env=self.env, variables=self.variables, tail_lines=self.tail_lines,
            )
        result = self._result(spec, outcome, Stage.CHECK, None, time.monotonic() - started)
        if self.runner.interrupted:
            raise Interrupted(self.runner.interrupted, [result])
        return result

    def clean(self) -> List[Path]:
        removed = workspace.clean(self.root)
        self.state = workspace.inspect(self.root, self.registry.all())
        return removed


def exit_code(results: Sequence[BuildResult]) -> int:
    """0 when every result is ok, otherwise the number of failed targets (capped)."""
    failed = sum(1 for r in results if not r.ok)
    return min(failed, MAX_EXIT_CODE)


def summarize(results: Sequence[BuildResult]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for r in results:
        counts[r.state.value] = counts.get(r.state.value, 0) + 1
    return counts
