import pytest

from cail.modules import config as config_mod
from cail.modules.errors import ConfigError, UnknownTarget
from cail.modules.models import TargetSpec
from cail.modules.registry import TargetRegistry, build_registry, default_registry, target_from_mapping


def _spec(name: str) -> TargetSpec:
    return TargetSpec(name=name, repository_url=f"https://example.com/{name}", subdirectory=name)


def test_all_preserves_registration_order() -> None:
    registry = TargetRegistry([_spec("zeta"), _spec("alpha"), _spec("mid")])

    assert [s.name for s in registry.all()] == ["zeta", "alpha", "mid"]
    assert registry.names() == ["zeta", "alpha", "mid"]
    assert len(registry) == 3


def test_lookup_unknown_target_raises() -> None:
    registry = TargetRegistry([_spec("demo")])

    with pytest.raises(UnknownTarget) as excinfo:
        registry.lookup("nope")

    assert excinfo.value.name == "nope"
    assert "demo" in str(excinfo.value)


def test_duplicate_and_reserved_names_are_rejected() -> None:
    registry = TargetRegistry([_spec("demo")])

    with pytest.raises(ValueError):
        registry.register(_spec("demo"))
    with pytest.raises(ValueError):
        registry.register(_spec("all"))


def test_default_registry_follows_lab_order() -> None:
    assert default_registry().names() == ["llvm", "xla", "iree", "triton", "cutlass", "nccl"]


def test_default_llvm_target_uses_passthrough_placeholders() -> None:
    llvm = default_registry().lookup("llvm")

    configure = llvm.configure_commands[0]
    assert "-DCMAKE_BUILD_TYPE=${build_type}" in configure
    assert "${generator}" in configure
    assert llvm.build_commands == (("ninja", "clang", "mlir-opt", "mlir-translate"),)
    assert llvm.check_commands == (("ninja", "check-mlir"),)
    assert "mlir-opt" in llvm.outputs


def test_triton_is_container_target_without_repository() -> None:
    triton = default_registry().lookup("triton")

    assert triton.repository_url is None
    assert not triton.needs_fetch
    argv = triton.container.argv()
    assert argv[:2] == ("docker", "run")
    assert "-p8000:8000" in argv
    assert argv[-2:] == ("tritonserver", "--model-repository=/models")


def test_spec_rejects_string_commands_and_escaping_subdirectory() -> None:
    with pytest.raises(TypeError):
        TargetSpec(name="x", repository_url=None, subdirectory="x", build_commands=["make all"])
    with pytest.raises(ValueError):
        TargetSpec(name="x", repository_url=None, subdirectory="../outside")


def test_yaml_targets_are_appended_after_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    cfg_file = tmp_path / "lab.yaml"
    cfg_file.write_text(
        "targets:\n"
        "  - name: tutorial\n"
        "    repository: https://example.com/tutorial.git\n"
        "    configure: [[cmake, ..]]\n"
        "    build: [[ninja]]\n"
        "  - name: server\n"
        "    container:\n"
        "      image: example/server:1\n"
        "      ports: ['9000:8000']\n"
        "      volumes: ['/tmp/models:/models']\n",
        encoding="utf-8",
    )
    cfg = config_mod.load(str(cfg_file), env={})

    registry = build_registry(cfg)

    assert registry.names()[-2:] == ["tutorial", "server"]
    tutorial = registry.lookup("tutorial")
    assert tutorial.configure_commands == (("cmake", ".."),)
    server = registry.lookup("server")
    assert server.container.ports == ((9000, 8000),)
    assert server.container.volumes == (("/tmp/models", "/models"),)


def test_malformed_target_entry_raises_config_error() -> None:
    with pytest.raises(ConfigError):
        target_from_mapping({"repository": "https://example.com/x"})
    with pytest.raises(ConfigError):
        target_from_mapping({"name": "x", "bogus": 1})
    with pytest.raises(ConfigError):
        target_from_mapping({"name": "x", "build": ["make all"]})
