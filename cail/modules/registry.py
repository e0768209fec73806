# cail/modules/registry.py
# -*- coding: utf-8 -*-
"""
Target registry: the ordered table of buildable targets.

Registration order is the iteration order for `run all`. The built-in table
mirrors the lab's primary stack (LLVM/MLIR -> XLA -> IREE) followed by the
serving/performance stack (Triton server -> CUTLASS -> NCCL). Extra targets
can be declared in the `targets:` list of the YAML config; they are appended
after the built-ins in file order.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from cail.modules.config import Config
from cail.modules.errors import ConfigError, UnknownTarget
from cail.modules.models import ContainerSpec, TargetSpec

CMAKE_CONFIGURE = ("cmake", "-G", "${generator}", "-DCMAKE_BUILD_TYPE=${build_type}")


class TargetRegistry:
    def __init__(self, specs: Sequence[TargetSpec] = ()):
        self._specs: Dict[str, TargetSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: TargetSpec) -> None:
        if spec.name == "all":
            raise ValueError("'all' is reserved for batch runs")
        if spec.name in self._specs:
            raise ValueError(f"target already registered: {spec.name}")
        self._specs[spec.name] = spec

    def lookup(self, name: str) -> TargetSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownTarget(name, list(self._specs)) from None

    def all(self) -> List[TargetSpec]:
        return list(self._specs.values())

    def names(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[TargetSpec]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._specs)


def default_targets() -> List[TargetSpec]:
    return [
        TargetSpec(
            name="llvm",
            description="LLVM with Clang & MLIR (assertions on)",
            repository_url="https://github.com/llvm/llvm-project",
            subdirectory="llvm-project",
            configure_commands=[
                CMAKE_CONFIGURE + (
                    "-DLLVM_ENABLE_PROJECTS=${llvm_projects}",
                    "-DLLVM_TARGETS_TO_BUILD=${llvm_targets}",
                    "-DLLVM_ENABLE_ASSERTIONS=ON",
                    "../llvm",
                ),
            ],
            build_commands=[("ninja", "clang", "mlir-opt", "mlir-translate")],
            outputs={"clang", "mlir-opt", "mlir-translate"},
            check_commands=[("ninja", "check-mlir")],
            notes=("Binaries in ${build_dir}/bin",),
        ),
        TargetSpec(
            name="xla",
            description="OpenXLA/XLA source (build via the dev container)",
            repository_url="https://github.com/openxla/xla",
            subdirectory="xla",
            build_subdirectory=None,
            notes=(
                "Refer to the official developer guide for containerized Bazel builds:",
                "https://openxla.org/xla/developer_guide",
            ),
        ),
        TargetSpec(
            name="iree",
            description="IREE tools (iree-compile, iree-run-module)",
            repository_url="https://github.com/iree-org/iree",
            subdirectory="iree",
            configure_commands=[
                ("python3", "-m", "pip", "install", "--upgrade", "pip"),
                ("python3", "-m", "pip", "install", "-r", "../runtime/bindings/python/iree/runtime/requirements.txt"),
                CMAKE_CONFIGURE + ("..",),
            ],
            build_commands=[("ninja", "iree-compile", "iree-run-module")],
            outputs={"iree-compile", "iree-run-module"},
            notes=("Binaries in ${build_dir}/bin",),
        ),
        TargetSpec(
            name="triton",
            description="Triton Inference Server container (NVIDIA GPU + nvidia-container-toolkit)",
            repository_url=None,
            subdirectory="triton",
            build_subdirectory=None,
            container=ContainerSpec(
                image="${triton_image}",
                command=("tritonserver", "--model-repository=/models"),
                ports=((8000, 8000), (8001, 8001), (8002, 8002)),
                volumes=(("${source_dir}/model_repository", "/models"),),
                gpus="1",
            ),
            notes=("Model repository: ${source_dir}/model_repository",),
        ),
        TargetSpec(
            name="cutlass",
            description="CUTLASS examples/tests",
            repository_url="https://github.com/NVIDIA/cutlass",
            subdirectory="cutlass",
            configure_commands=[CMAKE_CONFIGURE + ("..",)],
            build_commands=[("ninja",)],
            notes=("Binaries in ${build_dir}",),
        ),
        TargetSpec(
            name="nccl",
            description="NCCL source (build/test pointers)",
            repository_url="https://github.com/NVIDIA/nccl",
            subdirectory="nccl",
            build_subdirectory=None,
            notes=(
                "For multi-GPU perf tests, clone nccl-tests as well:",
                "git clone https://github.com/NVIDIA/nccl-tests ${root}/nccl-tests",
                "Follow its README to build and run bandwidth/latency tests.",
            ),
        ),
    ]


def default_registry() -> TargetRegistry:
    return TargetRegistry(default_targets())


# ----------------------------
# YAML-declared targets
# ----------------------------
_TARGET_KEYS = {
    "name", "repository", "repository_url", "subdirectory", "configure", "build", "outputs",
    "description", "build_subdirectory", "check", "notes", "container", "clone_depth",
}


def _container_from_mapping(name: str, data: Mapping[str, Any]) -> ContainerSpec:
    if not data.get("image"):
        raise ConfigError(f"target {name}: container.image is required")
    ports = []
    for p in data.get("ports") or []:
        host, _, container = str(p).partition(":")
        ports.append((int(host), int(container or host)))
    volumes = []
    for v in data.get("volumes") or []:
        host, sep, container = str(v).partition(":")
        if not sep:
            raise ConfigError(f"target {name}: volume '{v}' must be host:container")
        volumes.append((host, container))
    return ContainerSpec(
        image=str(data["image"]),
        command=tuple(str(a) for a in data.get("command") or ()),
        ports=tuple(ports),
        volumes=tuple(volumes),
        gpus=str(data["gpus"]) if data.get("gpus") is not None else None,
        remove=bool(data.get("remove", True)),
        runtime=str(data.get("runtime", "docker")),
    )


def target_from_mapping(data: Mapping[str, Any]) -> TargetSpec:
    if not isinstance(data, Mapping):
        raise ConfigError(f"target entry must be a mapping, got {type(data).__name__}")
    name = data.get("name")
    if not name:
        raise ConfigError("target entry is missing 'name'")
    unknown = set(data) - _TARGET_KEYS
    if unknown:
        raise ConfigError(f"target {name}: unknown keys {sorted(unknown)}")
    try:
        container = _container_from_mapping(name, data["container"]) if data.get("container") else None
        return TargetSpec(
            name=str(name),
            repository_url=data.get("repository_url") or data.get("repository"),
            subdirectory=str(data.get("subdirectory") or name),
            configure_commands=data.get("configure") or (),
            build_commands=data.get("build") or (),
            outputs=data.get("outputs") or (),
            description=str(data.get("description") or ""),
            build_subdirectory=data.get("build_subdirectory", "build"),
            check_commands=data.get("check") or (),
            notes=tuple(data.get("notes") or ()),
            container=container,
            clone_depth=data.get("clone_depth"),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"target {name}: {e}") from e


def build_registry(cfg: Optional[Config] = None, include_defaults: bool = True) -> TargetRegistry:
    registry = default_registry() if include_defaults else TargetRegistry()
    entries = cfg.get("targets", []) if cfg is not None else []
    for entry in entries or []:
        spec = target_from_mapping(entry)
        try:
            registry.register(spec)
        except ValueError as e:
            raise ConfigError(str(e)) from e
    return registry
