# cail/modules/logging.py
# -*- coding: utf-8 -*-
"""
cail logging

Features:
 - Console color formatter
 - Rotating file handler (size accepts human strings like "10M")
 - JSONL transparency log
 - Module-tagged records via get_logger(module) -> LoggerAdapter
 - setup_logging() is idempotent: re-applying replaces the handlers it installed
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT_LOGGER = "cail"

_lock = threading.RLock()
_installed: List[logging.Handler] = []


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


# ----------------------
# JSONL formatter for transparency log
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "cail_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


class _ModuleNameFilter(logging.Filter):
    """Fill cail_module for records emitted through plain loggers."""

    def filter(self, record):
        if not hasattr(record, "cail_module"):
            name = record.name
            record.cail_module = name[len(ROOT_LOGGER) + 1:] if name.startswith(ROOT_LOGGER + ".") else name
        return True


def _parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mul in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mul)
        return int(float(ss))
    except ValueError:
        return None


def _level(name: Any, default: int = logging.INFO) -> int:
    return getattr(logging, str(name or "").upper(), default)


def setup_logging(cfg: Optional[Dict[str, Any]] = None, stream=None) -> logging.Logger:
    """Install handlers on the 'cail' logger from the `logging` config section."""
    cfg = cfg or {}
    root = logging.getLogger(ROOT_LOGGER)
    with _lock:
        for h in _installed:
            root.removeHandler(h)
            h.close()
        _installed.clear()

        fmt = cfg.get("format") or "[%(asctime)s] [%(levelname)s] [%(cail_module)s] %(message)s"
        datefmt = cfg.get("datefmt", "%H:%M:%S")
        name_filter = _ModuleNameFilter()

        ch = logging.StreamHandler(stream or sys.stderr)
        ch.setLevel(_level(cfg.get("level")))
        ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True))))
        ch.addFilter(name_filter)
        _installed.append(ch)

        if cfg.get("file"):
            file_path = Path(cfg["file"]).expanduser()
            file_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.handlers.RotatingFileHandler(
                str(file_path),
                maxBytes=_parse_size(cfg.get("max_size", "10M")) or 10 * 1024 * 1024,
                backupCount=int(cfg.get("backups", 3)),
                encoding="utf-8",
            )
            fh.setLevel(_level(cfg.get("file_level"), logging.DEBUG))
            fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(cail_module)s] %(message)s"))
            fh.addFilter(name_filter)
            _installed.append(fh)

        jsonl_cfg = cfg.get("jsonl") or {}
        if jsonl_cfg.get("enabled"):
            path = Path(jsonl_cfg.get("path") or "~/.cail/logs/cail.jsonl").expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            jh = logging.FileHandler(str(path), encoding="utf-8")
            jh.setLevel(_level(jsonl_cfg.get("level")))
            jh.setFormatter(JSONLineFormatter())
            jh.addFilter(name_filter)
            _installed.append(jh)

        for h in _installed:
            root.addHandler(h)
        root.setLevel(min(h.level for h in _installed))
        root.propagate = False
    return root


def get_logger(module_name: str) -> logging.LoggerAdapter:
    """Return a LoggerAdapter that injects 'cail_module' into records."""
    return logging.LoggerAdapter(logging.getLogger(f"{ROOT_LOGGER}.{module_name}"), {"cail_module": module_name})
