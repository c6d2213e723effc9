"""
Plain data passed between the deploy phases.

Everything here lives for a single invocation; nothing is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class DeployError(Exception):
    step = "deploy"

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        if step:
            self.step = step

    def __str__(self) -> str:
        return f"{self.step}: {self.args[0]}"


class InvalidArgument(DeployError):
    step = "options"


class BuildToolError(DeployError):
    step = "build"


class UnloadError(DeployError):
    step = "unload"


class LoadError(DeployError):
    step = "load"


class InstallError(DeployError):
    step = "install"


class PermissionFixupError(DeployError):
    step = "permissions"


class Profile(Enum):
    DEVELOPMENT = "development"
    DISTRIBUTION = "distribution"


class DeployState(Enum):
    START = "start"
    OPTIONS_RESOLVED = "options_resolved"
    CLEANED_OR_SKIPPED = "cleaned_or_skipped"
    BUILT = "built"
    UNLOADED = "unloaded"
    SKIPPED_UNLOAD = "skipped_unload"
    INSTALLED = "installed"
    OWNERSHIP_FIXED = "ownership_fixed"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class InvocationOptions:
    profile: Profile = Profile.DEVELOPMENT
    clean: bool = False
    debug: bool = False
    install_root: Optional[Path] = None
    project_file: Optional[Path] = None
    load: bool = False
    dry_run: bool = False

    @property
    def targets_live_system(self) -> bool:
        return self.install_root is None


@dataclass(frozen=True)
class BuildConfiguration:
    name: str
    build_args: List[str] = field(default_factory=list)
    version: Optional[str] = None


@dataclass(frozen=True)
class InstallTarget:
    package_source: Path
    package_dest: Path
    helper_source: Optional[Path] = None
    helper_dest: Optional[Path] = None

    @property
    def dest_dir(self) -> Path:
        return self.package_dest.parent

    @property
    def has_helper(self) -> bool:
        return self.helper_source is not None and self.helper_dest is not None
