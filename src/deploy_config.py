"""
Project settings for the fuse4x deploy script.

Built-in defaults describe the fuse4x kext project. An optional
`kext_project.yaml` next to the Xcode project can override any of them:

    base_dir: .
    kext_name: fuse4x.kext
    helper_name: load_fuse4x
    bundle_id: org.fuse4x.kext.fuse4x
    extensions_dir: /System/Library/Extensions/
    owner: root:wheel
    build_dir: build
    version_macro: FUSE4X_VERSION_LITERAL
    elevate: [sudo]
    distribution:
      sdk_args: [-sdk, macosx10.5, MACOSX_DEPLOYMENT_TARGET=10.5]
      halt_on_failure_args: [-PBXBuildsContinueAfterErrors=0]
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as e:
    raise ImportError(
        "PyYAML is required. Use your project venv (e.g. `./venv/bin/python ...`), "
        "or `pip install pyyaml`."
    ) from e


PROJECT_YAML_NAME = "kext_project.yaml"

KEXT_DIR = "/System/Library/Extensions/"
KEXT_NAME = "fuse4x.kext"
HELPER_NAME = "load_fuse4x"
BUNDLE_ID = "org.fuse4x.kext.fuse4x"
KEXT_OWNER = "root:wheel"
VERSION_MACRO = "FUSE4X_VERSION_LITERAL"

# kexts must be built against the SDK of the oldest OS they support
DISTRIBUTION_SDK_ARGS = ["-sdk", "macosx10.5", "MACOSX_DEPLOYMENT_TARGET=10.5"]
DISTRIBUTION_HALT_ARGS = ["-PBXBuildsContinueAfterErrors=0"]


def default_elevate() -> List[str]:
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return []
    return ["sudo"]


@dataclass(frozen=True)
class ProjectConfig:
    project_dir: Path
    kext_name: str = KEXT_NAME
    helper_name: str = HELPER_NAME
    bundle_id: str = BUNDLE_ID
    extensions_dir: str = KEXT_DIR
    owner: str = KEXT_OWNER
    build_dir: str = "build"
    version_macro: str = VERSION_MACRO
    elevate: List[str] = field(default_factory=default_elevate)
    sdk_args: List[str] = field(default_factory=lambda: list(DISTRIBUTION_SDK_ARGS))
    halt_on_failure_args: List[str] = field(default_factory=lambda: list(DISTRIBUTION_HALT_ARGS))

    def build_output_dir(self, configuration: str) -> Path:
        return self.project_dir / self.build_dir / configuration


_TOP_LEVEL_KEYS = {
    "base_dir",
    "kext_name",
    "helper_name",
    "bundle_id",
    "extensions_dir",
    "owner",
    "build_dir",
    "version_macro",
    "elevate",
    "distribution",
}
_DISTRIBUTION_KEYS = {"sdk_args", "halt_on_failure_args"}


def yaml_load_file(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML root must be a map: {path}")
    return data


def _as_str_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        return value.split()
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list of strings")
    return [str(v) for v in value]


def load_project_config(project_yaml_path: Optional[Path] = None, cwd: Optional[Path] = None) -> ProjectConfig:
    """
    Load project settings.

    With no explicit path, `kext_project.yaml` in `cwd` is used when present;
    otherwise the built-in fuse4x defaults apply and `cwd` is the project dir.
    """
    cwd = (cwd or Path.cwd()).resolve()
    if project_yaml_path is None:
        candidate = cwd / PROJECT_YAML_NAME
        if not candidate.exists():
            return ProjectConfig(project_dir=cwd)
        project_yaml_path = candidate

    project_yaml_path = project_yaml_path.expanduser()
    if not project_yaml_path.is_file():
        raise FileNotFoundError(f"project file not found: {project_yaml_path}")

    data = yaml_load_file(project_yaml_path)
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"unknown keys in {project_yaml_path}: {', '.join(sorted(unknown))}")

    base_dir = str(data.get("base_dir", "."))
    kwargs: Dict[str, Any] = {
        "project_dir": (project_yaml_path.parent / base_dir).resolve(),
    }
    for key in ("kext_name", "helper_name", "bundle_id", "extensions_dir", "owner", "build_dir", "version_macro"):
        if key in data and data[key] is not None:
            kwargs[key] = str(data[key])
    if "elevate" in data:
        kwargs["elevate"] = _as_str_list(data["elevate"] or [], "elevate")

    dist = data.get("distribution", {}) or {}
    if not isinstance(dist, dict):
        raise ValueError("distribution must be a map")
    unknown = set(dist) - _DISTRIBUTION_KEYS
    if unknown:
        raise ValueError(f"unknown keys in distribution: {', '.join(sorted(unknown))}")
    for key in _DISTRIBUTION_KEYS:
        if key in dist:
            kwargs[key] = _as_str_list(dist[key] or [], f"distribution.{key}")

    return ProjectConfig(**kwargs)
