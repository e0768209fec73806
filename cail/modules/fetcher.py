# cail/modules/fetcher.py
# -*- coding: utf-8 -*-
"""
fetcher.py - obtain a target's source tree

- A populated directory at the destination is left untouched (ALREADY_PRESENT):
  local edits are never clobbered, re-fetching requires `cail clean`.
- Otherwise one `git clone` attempt; any failure is returned as FAILED with the
  git output kept verbatim so the caller can show it. No retry.
- Targets without a repository (container targets) report NOT_REQUIRED.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from cail.modules.buildsystem import CommandRunner, Sink
from cail.modules.logging import get_logger
from cail.modules.models import Argv, FetchOutcome, FetchStatus, TargetSpec
from cail.modules.workspace import is_populated

logger = get_logger("fetcher")


def clone_command(spec: TargetSpec, dest: Path, depth: Optional[int] = None) -> Argv:
    cmd = ["git", "clone"]
    depth = spec.clone_depth or depth
    if depth:
        cmd += ["--depth", str(depth)]
    cmd += [str(spec.repository_url), str(dest)]
    return tuple(cmd)


def fetch(spec: TargetSpec, workspace_path: Path, runner: Optional[CommandRunner] = None,
          depth: Optional[int] = None, sink: Optional[Sink] = None) -> FetchOutcome:
    """Clone spec.repository_url into workspace_path/spec.subdirectory unless already there."""
    dest = Path(workspace_path) / spec.subdirectory
    if not spec.needs_fetch:
        logger.debug("[%s] no repository to fetch", spec.name)
        return FetchOutcome(FetchStatus.NOT_REQUIRED, dest)
    if is_populated(dest):
        logger.info("[%s] using existing clone at %s", spec.name, dest)
        return FetchOutcome(FetchStatus.ALREADY_PRESENT, dest)
    if dest.exists() and not dest.is_dir():
        reason = f"{dest} exists and is not a directory"
        logger.error("[%s] %s", spec.name, reason)
        return FetchOutcome(FetchStatus.FAILED, dest, reason, 1)

    runner = runner or CommandRunner()
    dest.parent.mkdir(parents=True, exist_ok=True)
    argv = clone_command(spec, dest, depth)
    logger.info("[%s] cloning %s ...", spec.name, spec.repository_url)
    result = runner.run(argv, cwd=dest.parent, sink=sink, tail_lines=None)
    if result.returncode != 0:
        reason = "\n".join(result.output_tail) or f"git clone exited with {result.returncode}"
        logger.error("[%s] clone failed (exit %d)", spec.name, result.returncode)
        return FetchOutcome(FetchStatus.FAILED, dest, reason, result.returncode)
    return FetchOutcome(FetchStatus.CLONED, dest)
