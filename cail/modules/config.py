# cail/modules/config.py
# -*- coding: utf-8 -*-
"""
cail configuration loader

Features:
- Read YAML config from the first existing location (explicit path, $CAIL_CONFIG, cwd, user)
- Merge with authoritative DEFAULTS, normalize paths and coerce basic types
- Apply environment overrides (CAIL_BUILD_ROOT, BUILD_TYPE, CMAKE_GENERATOR, ...)
- Validate structure: warn by default, raise ConfigError when fatal=True
- Typed access via the Config dataclass; the loaded Config is passed explicitly
  to the orchestrator instead of being read from module globals
"""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from cail.modules.errors import ConfigError
from cail.modules.logging import get_logger

logger = get_logger("config")

DEFAULT_ROOT = "~/.cail/builds"

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "workspace": {
        "root": DEFAULT_ROOT,
    },
    "build": {
        "build_type": "Release",
        "generator": "Ninja",
        "tail_lines": 200,
        "env": {},  # extra environment for child processes
        "variables": {
            "llvm_targets": "X86;AArch64",
            "llvm_projects": "clang;mlir",
            "triton_image": "nvcr.io/nvidia/tritonserver:25.10-py3",
        },
    },
    "fetch": {
        "depth": None,  # None -> full clone
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 3,
        "jsonl": {"enabled": False, "path": "~/.cail/logs/cail.jsonl"},
    },
    "targets": [],
}

# env var -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "CAIL_BUILD_ROOT": "workspace.root",
    "BUILD_TYPE": "build.build_type",
    "CMAKE_GENERATOR": "build.generator",
    "LLVM_TARGETS": "build.variables.llvm_targets",
    "LLVM_PROJECTS": "build.variables.llvm_projects",
    "TRITON_IMG": "build.variables.triton_image",
    "CAIL_LOG_LEVEL": "logging.level",
}


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS and env
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

    @property
    def workspace_root(self) -> Path:
        return Path(_expand_path(self.get("workspace.root") or DEFAULT_ROOT))

    @property
    def tail_lines(self) -> int:
        return self._positive_int("build.tail_lines", 200)

    @property
    def fetch_depth(self) -> Optional[int]:
        if self.get("fetch.depth") is None:
            return None
        return self._positive_int("fetch.depth")

    def _positive_int(self, key: str, default: Any = None) -> int:
        value = self.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"{key} must be an integer >= 1, got {value!r}", context={"path": self.path})
        return value

    def variables(self) -> Dict[str, str]:
        """Placeholder values for ${var} expansion in target commands."""
        out = {k: str(v) for k, v in (self.get("build.variables") or {}).items()}
        out["build_type"] = str(self.get("build.build_type", "Release"))
        out["generator"] = str(self.get("build.generator", "Ninja"))
        out["root"] = str(self.workspace_root)
        return out

    def build_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        env.update({k: str(v) for k, v in (self.get("build.env") or {}).items()})
        return env


# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def _set_dotted(cfg: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    cur = cfg
    for p in parts[:-1]:
        nxt = cur.get(p)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[p] = nxt
        cur = nxt
    cur[parts[-1]] = value


def _find_candidates(explicit: Optional[str], env: Mapping[str, str]) -> List[Path]:
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser())
    if env.get("CAIL_CONFIG"):
        candidates.append(Path(env["CAIL_CONFIG"]).expanduser())
    candidates.extend([
        Path.cwd() / "cail.yaml",
        Path.cwd() / "cail.yml",
        Path.home() / ".config" / "cail" / "config.yaml",
    ])
    return candidates


def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}", context={"error": e}) from e
    try:
        data = yaml.safe_load(txt)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", context={"error": e}) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at top level")
    return data


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    ws = out.get("workspace")
    if isinstance(ws, dict) and ws.get("root"):
        ws["root"] = _expand_path(ws["root"])
    log = out.get("logging")
    if isinstance(log, dict):
        if log.get("file"):
            log["file"] = _expand_path(log["file"])
        jsonl = log.get("jsonl")
        if isinstance(jsonl, dict) and jsonl.get("path"):
            jsonl["path"] = _expand_path(jsonl["path"])
    build = out.get("build")
    if isinstance(build, dict) and "tail_lines" in build:
        try:
            build["tail_lines"] = int(build["tail_lines"])
        except (TypeError, ValueError):
            logger.debug("config: cannot coerce build.tail_lines=%r", build["tail_lines"])
    fetch = out.get("fetch")
    if isinstance(fetch, dict) and fetch.get("depth") is not None:
        try:
            fetch["depth"] = int(fetch["depth"])
        except (TypeError, ValueError):
            logger.debug("config: cannot coerce fetch.depth=%r", fetch["depth"])
    return out


def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    build = cfg.get("build")
    if not isinstance(build, dict):
        issues.append("build must be a mapping")
    else:
        tl = build.get("tail_lines")
        if not isinstance(tl, int) or tl < 1:
            issues.append("build.tail_lines must be integer >= 1")
        if not isinstance(build.get("env"), dict):
            issues.append("build.env must be a mapping")
        if not isinstance(build.get("variables"), dict):
            issues.append("build.variables must be a mapping")
    depth = (cfg.get("fetch") or {}).get("depth")
    if depth is not None and (not isinstance(depth, int) or depth < 1):
        issues.append("fetch.depth must be null or integer >= 1")
    if not isinstance(cfg.get("targets"), list):
        issues.append("targets should be a list")
    return (len(issues) == 0, issues)


# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str], env: Mapping[str, str]) -> Optional[Path]:
    for p in _find_candidates(explicit, env):
        if p.exists():
            return p
    if explicit:
        raise ConfigError(f"Config file not found: {explicit}")
    return None


def load(explicit_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None, fatal: bool = False) -> Config:
    """
    Load and merge config: DEFAULTS < YAML file < environment variables.
    If fatal=True then structural validation failures raise ConfigError.
    """
    env = os.environ if env is None else env
    cfg_path = _find_path(explicit_path, env)
    raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
    merged = _deep_merge(DEFAULTS, raw)
    for var, dotted in ENV_OVERRIDES.items():
        if env.get(var):
            _set_dotted(merged, dotted, env[var])
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            raise ConfigError(msg, context={"path": cfg_path})
        logger.warning(msg)
    logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
    return Config(raw=raw, merged=normalized, path=cfg_path)


def validate_config(cfg: Config) -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(cfg.merged)
    root = cfg.workspace_root
    # nearest existing ancestor must be writable for the root to be creatable
    probe = root
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    if not os.access(probe, os.W_OK):
        issues.append(f"workspace.root {root} is not creatable (parent {probe} not writable)")
    return (len(issues) == 0, issues)
