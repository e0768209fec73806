# cail/modules/errors.py
# -*- coding: utf-8 -*-
"""
Error taxonomy for cail.

Errors that stop an invocation before any useful work is possible are raised
as exceptions (UnknownTarget, WorkspaceUnwritable, ConfigError). Cleanup
failures and interrupts carry partial results so callers can still report them.
Per-target fetch/configure/compile failures are not exceptions: they live in
the result objects (see modules.models).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence


class ErrorCode(str, Enum):
    UNKNOWN_TARGET = "E_UNKNOWN_TARGET"
    WORKSPACE_UNWRITABLE = "E_WORKSPACE_UNWRITABLE"
    CLEANUP_FAILED = "E_CLEANUP_FAILED"
    CONFIG = "E_CONFIG"
    INTERRUPTED = "E_INTERRUPTED"


class CailError(Exception):
    """Base error: message plus stable code, optional hint and context."""

    code: ErrorCode = ErrorCode.CONFIG

    def __init__(self, message: str, *, hint: Optional[str] = None, context: Optional[Mapping[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v not in (None, "", [], ()):
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class UnknownTarget(CailError):
    code = ErrorCode.UNKNOWN_TARGET

    def __init__(self, name: str, known: Sequence[str] = ()):
        super().__init__(
            f"Unknown target: {name}",
            hint="Run 'cail list-targets' to see registered targets.",
            context={"known": ", ".join(known)},
        )
        self.name = name


class WorkspaceUnwritable(CailError):
    code = ErrorCode.WORKSPACE_UNWRITABLE

    def __init__(self, root: Path, reason: str):
        super().__init__(
            f"Workspace root is not writable: {root}",
            hint="Set CAIL_BUILD_ROOT or --root to a writable directory.",
            context={"root": root, "reason": reason},
        )
        self.root = root
        self.reason = reason


class CleanupFailed(CailError):
    code = ErrorCode.CLEANUP_FAILED

    def __init__(self, root: Path, failed: Sequence[Path], removed: int = 0):
        super().__init__(
            f"Could not remove {len(failed)} path(s) under {root}",
            hint="Fix permissions on the listed paths and run 'cail clean' again.",
            context={"root": root, "removed": removed, "failed": ", ".join(str(p) for p in failed)},
        )
        self.root = root
        self.failed: List[Path] = list(failed)
        self.removed = removed


class ConfigError(CailError):
    code = ErrorCode.CONFIG


class Interrupted(CailError):
    """Raised after a forwarded signal stopped the batch; results holds what finished."""

    code = ErrorCode.INTERRUPTED

    def __init__(self, signum: int, results: Sequence[Any] = ()):
        super().__init__(f"Interrupted by signal {signum}", context={"completed": len(results)})
        self.signum = signum
        self.results = list(results)


__all__ = [
    "CailError",
    "CleanupFailed",
    "ConfigError",
    "ErrorCode",
    "Interrupted",
    "UnknownTarget",
    "WorkspaceUnwritable",
]
