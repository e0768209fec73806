# cail/modules/models.py
# -*- coding: utf-8 -*-
"""
Data model for cail.

TargetSpec / ContainerSpec describe what to fetch and how to build it.
FetchOutcome, BuildOutcome and BuildResult are created per target per
invocation and never mutated. WorkspaceState is the in-memory view of
which targets are present on disk and how their last build went.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

Argv = Tuple[str, ...]


class FetchStatus(str, Enum):
    ALREADY_PRESENT = "already-present"
    CLONED = "cloned"
    FAILED = "failed"
    NOT_REQUIRED = "not-required"


class BuildStatus(str, Enum):
    SUCCEEDED = "succeeded"
    CONFIGURE_FAILED = "configure-failed"
    COMPILE_FAILED = "compile-failed"


class Stage(str, Enum):
    FETCH = "fetch"
    CONFIGURE = "configure"
    BUILD = "build"
    CHECK = "check"


class TargetState(str, Enum):
    NOT_STARTED = "not-started"
    FETCHING = "fetching"
    FETCHED = "fetched"
    FETCH_FAILED = "fetch-failed"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN_TARGET = "unknown-target"
    PLANNED = "planned"


TERMINAL_STATES = frozenset({
    TargetState.SUCCEEDED,
    TargetState.FAILED,
    TargetState.FETCH_FAILED,
    TargetState.UNKNOWN_TARGET,
    TargetState.PLANNED,
})


class LastBuildStatus(str, Enum):
    NEVER_BUILT = "never-built"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _argv(cmd) -> Argv:
    if isinstance(cmd, str):
        raise TypeError(f"command must be an argument list, not a string: {cmd!r}")
    return tuple(str(a) for a in cmd)


@dataclass(frozen=True)
class ContainerSpec:
    """A long-running container launched as the build step of a target."""

    image: str
    command: Argv = ()
    ports: Tuple[Tuple[int, int], ...] = ()
    volumes: Tuple[Tuple[str, str], ...] = ()
    gpus: Optional[str] = None
    remove: bool = True
    runtime: str = "docker"

    def argv(self) -> Argv:
        cmd: List[str] = [self.runtime, "run"]
        if self.gpus:
            cmd.append(f"--gpus={self.gpus}")
        if self.remove:
            cmd.append("--rm")
        for host, container in self.ports:
            cmd.append(f"-p{host}:{container}")
        for host_path, container_path in self.volumes:
            cmd += ["-v", f"{host_path}:{container_path}"]
        cmd.append(self.image)
        cmd += list(self.command)
        return tuple(cmd)


@dataclass(frozen=True)
class TargetSpec:
    name: str
    repository_url: Optional[str]
    subdirectory: str
    configure_commands: Tuple[Argv, ...] = ()
    build_commands: Tuple[Argv, ...] = ()
    outputs: FrozenSet[str] = frozenset()
    description: str = ""
    build_subdirectory: Optional[str] = "build"
    check_commands: Tuple[Argv, ...] = ()
    notes: Tuple[str, ...] = ()
    container: Optional[ContainerSpec] = None
    clone_depth: Optional[int] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("target name must not be empty")
        if not self.subdirectory or Path(self.subdirectory).is_absolute() or ".." in Path(self.subdirectory).parts:
            raise ValueError(f"target {self.name}: subdirectory must be a relative path inside the workspace")
        # normalize lists coming from YAML into tuples so TargetSpec stays hashable
        object.__setattr__(self, "configure_commands", tuple(_argv(c) for c in self.configure_commands))
        object.__setattr__(self, "build_commands", tuple(_argv(c) for c in self.build_commands))
        object.__setattr__(self, "check_commands", tuple(_argv(c) for c in self.check_commands))
        object.__setattr__(self, "outputs", frozenset(self.outputs))
        object.__setattr__(self, "notes", tuple(self.notes))

    @property
    def needs_fetch(self) -> bool:
        return bool(self.repository_url)


@dataclass(frozen=True)
class FetchOutcome:
    status: FetchStatus
    path: Path
    reason: str = ""
    returncode: int = 0

    @property
    def ok(self) -> bool:
        return self.status != FetchStatus.FAILED


@dataclass(frozen=True)
class CommandResult:
    argv: Argv
    returncode: int
    output_tail: Tuple[str, ...] = ()
    duration: float = 0.0


@dataclass(frozen=True)
class BuildOutcome:
    status: BuildStatus
    exit_code: int = 0
    output_tail: Tuple[str, ...] = ()
    command: Argv = ()

    @property
    def ok(self) -> bool:
        return self.status == BuildStatus.SUCCEEDED

    @property
    def stage(self) -> Stage:
        return Stage.CONFIGURE if self.status == BuildStatus.CONFIGURE_FAILED else Stage.BUILD


@dataclass(frozen=True)
class BuildResult:
    target: str
    stage: Stage
    state: TargetState
    status: Optional[BuildStatus] = None
    fetch: Optional[FetchStatus] = None
    exit_code: int = 0
    duration: float = 0.0
    output_tail: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.state in (TargetState.SUCCEEDED, TargetState.PLANNED)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for k in ("stage", "state", "status", "fetch"):
            if d[k] is not None:
                d[k] = d[k].value
        d["output_tail"] = list(self.output_tail)
        d["duration"] = round(self.duration, 3)
        return d


@dataclass
class TargetStatus:
    present: bool = False
    last_build: LastBuildStatus = LastBuildStatus.NEVER_BUILT


@dataclass
class WorkspaceState:
    root: Path
    targets: Dict[str, TargetStatus] = field(default_factory=dict)

    def status(self, name: str) -> TargetStatus:
        return self.targets.setdefault(name, TargetStatus())

    def mark_present(self, name: str) -> None:
        self.status(name).present = True

    def record_build(self, name: str, ok: bool) -> None:
        self.status(name).last_build = LastBuildStatus.SUCCEEDED if ok else LastBuildStatus.FAILED
