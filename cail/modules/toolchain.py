# cail/modules/toolchain.py
# -*- coding: utf-8 -*-
"""
Host toolchain checks and dependency hints.

- verify_tools(): version line of each build tool (missing tools are reported, not fatal)
- gpu_info(): `nvidia-smi -L` output or a "no GPU" line
- install_commands(): apt commands for the common Ubuntu build dependencies
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import List, Optional, Tuple

from cail.modules.buildsystem import CommandRunner
from cail.modules.logging import get_logger
from cail.modules.models import Argv

logger = get_logger("toolchain")

TOOLS: Tuple[Tuple[str, Argv], ...] = (
    ("gcc", ("gcc", "--version")),
    ("clang", ("clang", "--version")),
    ("cmake", ("cmake", "--version")),
    ("ninja", ("ninja", "--version")),
    ("git", ("git", "--version")),
    ("python", ("python3", "--version")),
    ("docker", ("docker", "--version")),
)

UBUNTU_PACKAGES = (
    "build-essential", "cmake", "ninja-build", "git", "python3", "python3-pip",
    "docker.io", "pkg-config", "curl",
)

CONTAINER_TOOLKIT_URL = (
    "https://docs.nvidia.com/datacenter/cloud-native/container-toolkit/latest/install-guide.html"
)

NO_GPU = "No NVIDIA GPU detected or nvidia-smi not found"


@dataclass(frozen=True)
class ToolReport:
    name: str
    found: bool
    version: Optional[str] = None


def verify_tools(runner: Optional[CommandRunner] = None) -> List[ToolReport]:
    runner = runner or CommandRunner()
    reports: List[ToolReport] = []
    for name, argv in TOOLS:
        if shutil.which(argv[0]) is None:
            logger.debug("tool not found: %s", argv[0])
            reports.append(ToolReport(name, False))
            continue
        result = runner.run(argv, tail_lines=None)
        first = next((line for line in result.output_tail if line.strip()), "")
        reports.append(ToolReport(name, result.returncode == 0, first or None))
    return reports


def gpu_info(runner: Optional[CommandRunner] = None) -> List[str]:
    if shutil.which("nvidia-smi") is None:
        return [NO_GPU]
    runner = runner or CommandRunner()
    result = runner.run(("nvidia-smi", "-L"), tail_lines=None)
    lines = [line for line in result.output_tail if line.strip()]
    if result.returncode != 0 or not lines:
        return [NO_GPU]
    return lines


def install_commands(packages: Tuple[str, ...] = UBUNTU_PACKAGES) -> List[Argv]:
    return [
        ("sudo", "apt-get", "update"),
        ("sudo", "apt-get", "install", "-y") + tuple(packages),
    ]
