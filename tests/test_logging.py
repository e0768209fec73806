import io
import json
import logging
from pathlib import Path

from cail.modules.logging import _parse_size, get_logger, setup_logging


def test_setup_is_idempotent_and_tags_module() -> None:
    first, second = io.StringIO(), io.StringIO()
    setup_logging({"level": "INFO", "color": False}, stream=first)
    root = setup_logging({"level": "INFO", "color": False}, stream=second)

    get_logger("fetcher").info("cloning demo")

    assert len(root.handlers) == 1
    assert first.getvalue() == ""
    assert "[INFO] [fetcher] cloning demo" in second.getvalue()


def test_level_filters_console_output() -> None:
    stream = io.StringIO()
    setup_logging({"level": "WARNING", "color": False}, stream=stream)

    log = get_logger("buildsystem")
    log.info("hidden")
    log.warning("shown")

    assert "hidden" not in stream.getvalue()
    assert "shown" in stream.getvalue()


def test_jsonl_and_rotating_file_handlers(tmp_path: Path) -> None:
    cfg = {
        "level": "ERROR",
        "color": False,
        "file": str(tmp_path / "logs" / "cail.log"),
        "jsonl": {"enabled": True, "path": str(tmp_path / "logs" / "cail.jsonl"), "level": "INFO"},
    }
    setup_logging(cfg, stream=io.StringIO())

    logging.getLogger("cail.orchestrator").info("plain logger record")
    for handler in logging.getLogger("cail").handlers:
        handler.flush()

    record = json.loads((tmp_path / "logs" / "cail.jsonl").read_text().splitlines()[-1])
    assert record["module"] == "orchestrator"
    assert record["message"] == "plain logger record"
    assert "plain logger record" in (tmp_path / "logs" / "cail.log").read_text()


def test_parse_size_accepts_human_strings() -> None:
    assert _parse_size("10M") == 10 * 1024 * 1024
    assert _parse_size("512k") == 512 * 1024
    assert _parse_size(2048) == 2048
    assert _parse_size("lots") is None
