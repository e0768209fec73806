# cail/modules/workspace.py
# -*- coding: utf-8 -*-
"""
Workspace management: one root directory holding every target's source and
build trees.

- resolve_path / build_path : pure path composition
- ensure_root                : create the root (context manager), WorkspaceUnwritable on failure
- clean                      : best-effort recursive delete, CleanupFailed lists what stayed
- inspect                    : derive WorkspaceState from what exists on disk
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Union

from cail.modules.errors import CleanupFailed, WorkspaceUnwritable
from cail.modules.logging import get_logger
from cail.modules.models import TargetSpec, WorkspaceState

logger = get_logger("workspace")

PathLike = Union[str, Path]


def resolve_path(root: PathLike, spec: TargetSpec) -> Path:
    return Path(os.path.abspath(os.path.expanduser(str(root)))) / spec.subdirectory


def build_path(root: PathLike, spec: TargetSpec) -> Path:
    src = resolve_path(root, spec)
    return src / spec.build_subdirectory if spec.build_subdirectory else src


def is_populated(path: Path) -> bool:
    """True for a directory with at least one entry."""
    if not path.is_dir():
        return False
    with os.scandir(path) as it:
        return any(True for _ in it)


@contextmanager
def ensure_root(root: PathLike) -> Iterator[Path]:
    """Create the workspace root if needed and yield its absolute path."""
    path = Path(os.path.abspath(os.path.expanduser(str(root))))
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceUnwritable(path, e.strerror or str(e)) from e
    if not path.is_dir():
        raise WorkspaceUnwritable(path, "exists and is not a directory")
    # access() lies under some ACL/overlay setups, so probe with a real file
    try:
        with tempfile.TemporaryFile(dir=str(path)):
            pass
    except OSError as e:
        raise WorkspaceUnwritable(path, e.strerror or str(e)) from e
    logger.debug("workspace: using root %s", path)
    yield path


def _is_under(path: str, parent: str) -> bool:
    return path == parent or path.startswith(parent.rstrip(os.sep) + os.sep)


def clean(root: PathLike) -> List[Path]:
    """
    Recursively delete root. Every removable path is removed even when some
    are not; CleanupFailed is raised at the end listing the failures.
    Returns the removed paths.
    """
    top = os.path.abspath(os.path.expanduser(str(root)))
    if not os.path.lexists(top):
        logger.info("workspace: %s does not exist, nothing to clean", top)
        return []
    if os.path.islink(top) or not os.path.isdir(top):
        try:
            os.unlink(top)
        except OSError as e:
            logger.warning("workspace: cannot remove %s: %s", top, e.strerror or e)
            raise CleanupFailed(Path(top), [Path(top)]) from e
        return [Path(top)]

    removed: List[Path] = []
    failed: List[Path] = []

    def _record_failure(path: str, err: OSError) -> None:
        logger.warning("workspace: cannot remove %s: %s", path, err.strerror or err)
        failed.append(Path(path))

    for dirpath, dirnames, filenames in os.walk(top, topdown=False, onerror=lambda e: _record_failure(e.filename, e)):
        for name in filenames + [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]:
            path = os.path.join(dirpath, name)
            try:
                os.unlink(path)
                removed.append(Path(path))
            except OSError as e:
                _record_failure(path, e)
        # a directory holding a failed path cannot be empty; skip it instead of reporting twice
        if any(_is_under(str(f), dirpath) for f in failed):
            continue
        try:
            os.rmdir(dirpath)
            removed.append(Path(dirpath))
        except OSError as e:
            _record_failure(dirpath, e)

    if failed:
        raise CleanupFailed(Path(top), failed, removed=len(removed))
    logger.info("workspace: removed %s (%d paths)", top, len(removed))
    return removed


def inspect(root: PathLike, specs) -> WorkspaceState:
    """Build the in-memory state for every spec from the filesystem."""
    state = WorkspaceState(root=Path(os.path.abspath(os.path.expanduser(str(root)))))
    for spec in specs:
        status = state.status(spec.name)
        status.present = resolve_path(root, spec).is_dir()
    return state

