from pathlib import Path

import pytest

from cail.modules import config as config_mod
from cail.modules.errors import ConfigError


def test_defaults_without_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))

    cfg = config_mod.load(env={})

    assert cfg.path is None
    assert cfg.workspace_root == tmp_path / ".cail" / "builds"
    assert cfg.get("build.build_type") == "Release"
    assert cfg.tail_lines == 200


def test_file_overrides_defaults_and_env_overrides_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cail.yaml").write_text(
        "workspace:\n  root: /srv/from-file\nbuild:\n  build_type: Debug\n  generator: Unix Makefiles\n",
        encoding="utf-8",
    )

    cfg = config_mod.load(env={"CAIL_BUILD_ROOT": str(tmp_path / "from-env"), "LLVM_TARGETS": "X86"})

    assert cfg.path.name == "cail.yaml"
    assert cfg.workspace_root == tmp_path / "from-env"
    variables = cfg.variables()
    assert variables["build_type"] == "Debug"
    assert variables["generator"] == "Unix Makefiles"
    assert variables["llvm_targets"] == "X86"
    assert variables["llvm_projects"] == "clang;mlir"


def test_cail_config_env_selects_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    other = tmp_path / "elsewhere.yml"
    other.write_text("fetch:\n  depth: '1'\n", encoding="utf-8")

    cfg = config_mod.load(env={"CAIL_CONFIG": str(other)})

    assert cfg.get("fetch.depth") == 1


def test_build_env_passes_through_and_extends(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cail.yaml").write_text("build:\n  env:\n    CCACHE_DIR: /cache\n", encoding="utf-8")

    env = config_mod.load(env={}).build_env(base={"PATH": "/usr/bin", "BUILD_TYPE": "Debug"})

    assert env == {"PATH": "/usr/bin", "BUILD_TYPE": "Debug", "CCACHE_DIR": "/cache"}


def test_invalid_yaml_and_missing_explicit_file_raise(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "bad.yaml"
    bad.write_text("build: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        config_mod.load(str(bad), env={})
    with pytest.raises(ConfigError):
        config_mod.load(str(tmp_path / "absent.yaml"), env={})


def test_structural_issues_are_fatal_only_on_request(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cail.yaml").write_text("surprise: 1\nbuild:\n  tail_lines: 0\n", encoding="utf-8")

    cfg = config_mod.load(env={})
    ok, issues = config_mod.validate_config(cfg)

    assert not ok
    assert any("surprise" in issue for issue in issues)
    assert any("tail_lines" in issue for issue in issues)
    with pytest.raises(ConfigError):
        config_mod.load(env={}, fatal=True)


def test_numeric_settings_must_be_positive_integers(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "cail.yaml").write_text("build:\n  tail_lines: lots\nfetch:\n  depth: -1\n", encoding="utf-8")

    cfg = config_mod.load(env={})

    with pytest.raises(ConfigError):
        cfg.tail_lines
    with pytest.raises(ConfigError):
        cfg.fetch_depth
