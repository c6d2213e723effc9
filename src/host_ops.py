"""
Thin wrappers over the external commands the deploy script drives:
xcodebuild, git, kextstat/kextunload/kextload and the privileged
filesystem tools (mkdir, cp, chmod, chown) run through sudo.

Every command is echoed before it runs. In dry-run mode mutating
commands are only echoed; read-only queries still execute.
"""

from __future__ import annotations

import shlex
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from deploy_model import BuildToolError, UnloadError


class CommandRunner:
    def __init__(self, cwd: Optional[Path] = None, elevate: Sequence[str] = ("sudo",), dry_run: bool = False):
        self.cwd = cwd
        self.elevate = list(elevate)
        self.dry_run = dry_run

    def _args(self, cmd: Sequence[str], privileged: bool) -> List[str]:
        args = [str(c) for c in cmd]
        if privileged:
            args = self.elevate + args
        return args

    def run(self, cmd: Sequence[str], privileged: bool = False) -> int:
        """Run a mutating command, return its exit code (0 in dry-run mode)."""
        args = self._args(cmd, privileged)
        print("+", shlex.join(args))
        if self.dry_run:
            return 0
        try:
            return subprocess.run(args, cwd=self.cwd).returncode
        except FileNotFoundError:
            print(f"command not found: {args[0]}", file=sys.stderr)
            return 127

    def capture(self, cmd: Sequence[str], privileged: bool = False) -> Tuple[int, str]:
        """Run a read-only command and capture stdout, even in dry-run mode."""
        args = self._args(cmd, privileged)
        print("+", shlex.join(args))
        try:
            result = subprocess.run(args, cwd=self.cwd, text=True, errors="replace", capture_output=True)
        except FileNotFoundError:
            print(f"command not found: {args[0]}", file=sys.stderr)
            return 127, ""
        if result.stderr:
            print(result.stderr, end="" if result.stderr.endswith("\n") else "\n", file=sys.stderr)
        return result.returncode, result.stdout


class KextRegistry:
    """Query/unload/load of kernel extensions by bundle identifier."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def query(self, bundle_id: str) -> bool:
        rc, out = self.runner.capture(["kextstat", "-l"])
        if rc != 0:
            raise UnloadError(f"kextstat failed with return code {rc}")
        for line in out.splitlines():
            if bundle_id in line.split():
                return True
        return False

    def unload(self, bundle_id: str) -> bool:
        return self.runner.run(["kextunload", "-b", bundle_id], privileged=True) == 0

    def load(self, kext_path: Path) -> bool:
        return self.runner.run(["kextload", str(kext_path)], privileged=True) == 0


def git_describe(runner: CommandRunner) -> str:
    rc, out = runner.capture(["git", "describe", "--tags", "--dirty"])
    version = out.strip()
    if rc != 0 or not version:
        raise BuildToolError(f"cannot read version from git describe (return code {rc})")
    return version


def make_dirs(runner: CommandRunner, path: Path) -> bool:
    return runner.run(["mkdir", "-p", str(path)], privileged=True) == 0


def copy_tree(runner: CommandRunner, src: Path, dest_dir: Path) -> bool:
    """
    `cp -R` into dest_dir. An existing bundle of the same name is overwritten
    file by file, not removed first: files dropped from a newer build stay.
    """
    return runner.run(["cp", "-R", str(src), str(dest_dir)], privileged=True) == 0


def copy_file(runner: CommandRunner, src: Path, dest: Path) -> bool:
    return runner.run(["cp", str(src), str(dest)], privileged=True) == 0


def set_setuid(runner: CommandRunner, path: Path) -> bool:
    return runner.run(["chmod", "u+s", str(path)], privileged=True) == 0


def chown_tree(runner: CommandRunner, owner: str, path: Path) -> bool:
    return runner.run(["chown", "-R", owner, str(path)], privileged=True) == 0
