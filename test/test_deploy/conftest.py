from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from deploy_config import ProjectConfig
from host_ops import CommandRunner


class RecordingRunner(CommandRunner):
    """Records every command instead of running it."""

    def __init__(
        self,
        fail_on: Optional[Dict[str, int]] = None,
        fail_when: Optional[Callable[[List[str]], bool]] = None,
        dry_run: bool = False,
    ):
        super().__init__(cwd=None, elevate=["sudo"], dry_run=dry_run)
        self.commands: List[List[str]] = []
        self.fail_on = fail_on or {}
        self.fail_when = fail_when

    def run(self, cmd, privileged=False):
        args = self._args(cmd, privileged)
        self.commands.append(args)
        if self.fail_when is not None and self.fail_when(list(cmd)):
            return 1
        return self.fail_on.get(cmd[0], 0)

    def capture(self, cmd, privileged=False):
        self.commands.append(self._args(cmd, privileged))
        return 0, ""

    def index_of(self, tool: str) -> int:
        for i, args in enumerate(self.commands):
            if tool in args[:2]:
                return i
        return -1

    def commands_for(self, tool: str) -> List[List[str]]:
        return [args for args in self.commands if tool in args[:2]]


class FakeRegistry:
    def __init__(self, runner: RecordingRunner, loaded: bool = False, unload_ok: bool = True, load_ok: bool = True):
        self.runner = runner
        self.loaded = loaded
        self.unload_ok = unload_ok
        self.load_ok = load_ok
        self.queries: List[str] = []
        self.unloaded: List[str] = []
        self.loaded_paths: List[Path] = []

    def query(self, bundle_id):
        self.queries.append(bundle_id)
        return self.loaded

    def unload(self, bundle_id):
        self.unloaded.append(bundle_id)
        # keep the unload ordered with the other commands
        self.runner.commands.append(["sudo", "kextunload", "-b", bundle_id])
        if self.unload_ok:
            self.loaded = False
        return self.unload_ok

    def load(self, kext_path):
        self.loaded_paths.append(kext_path)
        self.runner.commands.append(["sudo", "kextload", str(kext_path)])
        return self.load_ok


@pytest.fixture
def project_dir(tmp_path):
    for configuration in ("Debug", "Release", "Distribution"):
        (tmp_path / "build" / configuration / "fuse4x.kext" / "Contents").mkdir(parents=True)
    (tmp_path / "build" / "Distribution" / "load_fuse4x").write_text("#!/bin/sh\n")
    return tmp_path


@pytest.fixture
def config(project_dir):
    return ProjectConfig(project_dir=project_dir, elevate=["sudo"])
