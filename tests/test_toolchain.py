import pytest
from conftest import ExplodingRunner, RecordingRunner

from cail.modules import toolchain


def test_missing_tools_are_reported_without_running(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(toolchain.shutil, "which", lambda name: None)

    reports = toolchain.verify_tools(ExplodingRunner())

    assert [r.name for r in reports] == [name for name, _ in toolchain.TOOLS]
    assert not any(r.found for r in reports)


def test_version_is_first_output_line(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(toolchain.shutil, "which", lambda name: f"/usr/bin/{name}")
    runner = RecordingRunner(output=["", "tool 1.2.3", "more"])

    reports = toolchain.verify_tools(runner)

    assert all(r.found and r.version == "tool 1.2.3" for r in reports)
    assert runner.calls[0][0] == ("gcc", "--version")


def test_gpu_info_falls_back_when_nvidia_smi_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(toolchain.shutil, "which", lambda name: "/usr/bin/nvidia-smi")
    failing = RecordingRunner(failing={("nvidia-smi", "-L"): 9}, output=["NVIDIA-SMI has failed"])
    listing = RecordingRunner(output=["GPU 0: NVIDIA A100 (UUID: GPU-x)"])

    assert toolchain.gpu_info(failing) == [toolchain.NO_GPU]
    assert toolchain.gpu_info(listing) == ["GPU 0: NVIDIA A100 (UUID: GPU-x)"]


def test_install_commands_end_with_package_list() -> None:
    update, install = toolchain.install_commands(("cmake", "ninja-build"))

    assert update == ("sudo", "apt-get", "update")
    assert install == ("sudo", "apt-get", "install", "-y", "cmake", "ninja-build")
