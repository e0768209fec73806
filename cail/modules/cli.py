#!/usr/bin/env python3
# cail/modules/cli.py
"""
cail CLI - fetch, configure and build external source trees into one workspace

Commands:
  run <target|all> [--dry-run] [--json]   fetch + build (fail-soft for "all")
  clean [--yes]                           remove the whole workspace root
  list-targets                            registered targets in run order
  check <target>                          post-build test commands (e.g. check-mlir)
  verify                                  tool versions and GPU info
  deps [--apply]                          Ubuntu build dependencies

Exit code: 0 when every requested target succeeded, otherwise the number of
failed targets; 2 for errors that stop the invocation; 130 on interrupt.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cail.modules import config as config_mod
from cail.modules import toolchain
from cail.modules.buildsystem import format_argv
from cail.modules.errors import CailError, CleanupFailed, Interrupted
from cail.modules.logging import get_logger, setup_logging
from cail.modules.models import BuildResult
from cail.modules.orchestrator import ALL, Orchestrator, exit_code, summarize

logger = get_logger("cli")

EXIT_ERROR = 2
EXIT_INTERRUPTED = 130


# -----------------------
# CLI Implementation
# -----------------------
class CailCLI:
    def __init__(self, cfg: config_mod.Config, console: Console):
        self.cfg = cfg
        self.console = console
        self.stream = console
        self.orch = Orchestrator.from_config(cfg, sink=self._sink)

    def _sink(self, line: str) -> None:
        self.stream.out(line, highlight=False)

    # small pretty helpers
    def print_ok(self, msg: str) -> None:
        self.console.print(Text.assemble(("✔ ", "bold green"), msg))

    def print_warn(self, msg: str) -> None:
        self.console.print(Text.assemble(("! ", "bold yellow"), msg))

    def print_err(self, msg: str) -> None:
        self.console.print(Text.assemble(("✖ ", "bold red"), msg))

    # -----------------------
    # commands
    # -----------------------
    def list_targets(self) -> int:
        table = Table(title=f"Targets (workspace: {self.orch.root})")
        table.add_column("target", style="bold", no_wrap=True)
        table.add_column("source")
        table.add_column("present")
        table.add_column("description")
        for spec in self.orch.registry.all():
            if spec.container is not None:
                source = f"container {spec.container.image}"
            else:
                source = spec.repository_url or "-"
            present = "yes" if self.orch.state.status(spec.name).present else "no"
            table.add_row(spec.name, source, present, spec.description)
        self.console.print(table)
        return 0

    def run(self, target: str, dry_run: bool = False, as_json: bool = False) -> int:
        if as_json:
            # keep stdout machine-readable; child output goes to stderr
            self.stream = Console(stderr=True, no_color=self.console.no_color, highlight=False)
        try:
            results = self.orch.run(target, dry_run=dry_run)
        except Interrupted as e:
            self.render_results(e.results, as_json)
            self.print_err(str(e))
            return EXIT_INTERRUPTED
        self.render_results(results, as_json)
        return exit_code(results)

    def check(self, target: str) -> int:
        try:
            result = self.orch.check(target)
        except Interrupted as e:
            self.render_results(e.results)
            self.print_err(str(e))
            return EXIT_INTERRUPTED
        self.render_results([result])
        return exit_code([result])

    def clean(self, yes: bool = False) -> int:
        root = self.orch.root
        if not yes:
            self.print_warn(f"This removes the entire build workspace: {root}")
            self.print_warn("Re-run with --yes to confirm.")
            return 1
        self.console.print(f"Removing build workspace: {root}")
        try:
            removed = self.orch.clean()
        except CleanupFailed as e:
            self.print_err(e.message)
            for path in e.failed:
                self.console.print(f"  {path}", highlight=False)
            return 1
        self.print_ok(f"Done ({len(removed)} paths removed)")
        return 0

    def verify(self) -> int:
        table = Table(title="Tool versions")
        table.add_column("tool", style="bold")
        table.add_column("version")
        for report in toolchain.verify_tools(self.orch.runner):
            table.add_row(report.name, report.version if report.found else Text("not found", style="yellow"))
        self.console.print(table)
        self.console.print("[bold]GPU[/bold]")
        for line in toolchain.gpu_info(self.orch.runner):
            self.console.print(f"  {line}", highlight=False)
        return 0

    def deps(self, apply: bool = False) -> int:
        commands = toolchain.install_commands()
        if not apply:
            for argv in commands:
                self.console.print(format_argv(argv), highlight=False)
            self.console.print(f"If you need NVIDIA GPU containers, install nvidia-container-toolkit:\n  {toolchain.CONTAINER_TOOLKIT_URL}")
            return 0
        for argv in commands:
            result = self.orch.runner.run(argv, sink=self._sink)
            if result.returncode != 0:
                self.print_err(f"{format_argv(argv)} exited with {result.returncode}")
                return result.returncode
        self.print_ok("Dependencies installed")
        return 0

    # -----------------------
    # reporting
    # -----------------------
    def render_results(self, results: Sequence[BuildResult], as_json: bool = False) -> None:
        if as_json:
            self.console.out(json.dumps([r.to_dict() for r in results], indent=2), highlight=False)
            return
        counts = ", ".join(f"{n} {state}" for state, n in summarize(results).items())
        table = Table(title="Summary", caption=counts or None)
        table.add_column("target", style="bold")
        table.add_column("state")
        table.add_column("stage")
        table.add_column("exit", justify="right")
        table.add_column("time", justify="right")
        for r in results:
            style = "green" if r.ok else "red"
            table.add_row(r.target, Text(r.state.value, style=style), r.stage.value, str(r.exit_code), f"{r.duration:.1f}s")
        self.console.print(table)
        for r in results:
            if r.ok:
                continue
            body = "\n".join(r.output_tail) or "(no output captured)"
            title = f"{r.target}: {r.state.value} at {r.stage.value} (exit {r.exit_code})"
            self.console.print(Panel(Text(body), title=title, border_style="red"))


# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="cail", description="Fetch and build external source trees into a managed workspace")
    ap.add_argument("--root", help="workspace root (default: $CAIL_BUILD_ROOT or ~/.cail/builds)")
    ap.add_argument("--config", help="path to a YAML config file")
    ap.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    ap.add_argument("--no-color", action="store_true", help="disable colored output")
    sub = ap.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="fetch and build a target, or all targets")
    p_run.add_argument("target", help=f"target name or '{ALL}'")
    p_run.add_argument("--dry-run", action="store_true", help="print the commands without running anything")
    p_run.add_argument("--json", action="store_true", help="print results as JSON")

    p_clean = sub.add_parser("clean", help="remove the entire workspace root")
    p_clean.add_argument("--yes", action="store_true", help="confirm removal")

    sub.add_parser("list-targets", help="list registered targets")

    p_check = sub.add_parser("check", help="run post-build checks for a target")
    p_check.add_argument("target")

    sub.add_parser("verify", help="print tool versions and GPU info")

    p_deps = sub.add_parser("deps", help="Ubuntu build dependencies (printed unless --apply)")
    p_deps.add_argument("--apply", action="store_true", help="run the install commands (sudo)")
    return ap


def _load_config(args: argparse.Namespace) -> config_mod.Config:
    cfg = config_mod.load(args.config)
    if args.root:
        cfg.merged["workspace"]["root"] = os.path.abspath(os.path.expanduser(args.root))
    if args.log_level:
        cfg.merged["logging"]["level"] = args.log_level
    if args.no_color:
        cfg.merged["logging"]["color"] = False
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    parser = make_parser()
    args = parser.parse_args(argv)
    console = Console(no_color=args.no_color, highlight=False)
    if not args.cmd:
        parser.print_help()
        return 1

    try:
        cfg = _load_config(args)
        setup_logging(cfg.get("logging"))
        cli = CailCLI(cfg, console)
        if args.cmd == "run":
            return cli.run(args.target, dry_run=args.dry_run, as_json=args.json)
        if args.cmd == "clean":
            return cli.clean(yes=args.yes)
        if args.cmd == "list-targets":
            return cli.list_targets()
        if args.cmd == "check":
            return cli.check(args.target)
        if args.cmd == "verify":
            return cli.verify()
        if args.cmd == "deps":
            return cli.deps(apply=args.apply)
    except CailError as e:
        logger.debug("command failed", exc_info=True)
        console.print(Text.assemble(("✖ ", "bold red"), str(e)))
        return EXIT_ERROR
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
