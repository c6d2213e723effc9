import unittest
from pathlib import Path
from unittest.mock import patch

import pytest

import deploy
from deploy import parse_options
from deploy_model import InvalidArgument, Profile


def test_defaults_target_live_release_build():
    options = parse_options([])

    assert options.profile is Profile.DEVELOPMENT
    assert not options.clean
    assert not options.debug
    assert options.targets_live_system


def test_debug_and_clean():
    options = parse_options(["--debug", "--clean"])

    assert options.debug
    assert options.clean
    assert options.profile is Profile.DEVELOPMENT


def test_release_implies_clean():
    options = parse_options(["--release"])

    assert options.profile is Profile.DISTRIBUTION
    assert options.clean


def test_debug_conflicts_with_release():
    with pytest.raises(InvalidArgument):
        parse_options(["--debug", "--release"])


def test_root_without_value():
    with pytest.raises(InvalidArgument):
        parse_options(["--root"])


@pytest.mark.parametrize("args", [["--root", ""], ["--root="], ["--root", "   "]])
def test_empty_root_is_rejected(args):
    with pytest.raises(InvalidArgument) as exc_info:
        parse_options(args)

    assert "empty" in str(exc_info.value)


def test_root_must_exist(tmp_path):
    with pytest.raises(InvalidArgument) as exc_info:
        parse_options(["--root", str(tmp_path / "nonexistent")])

    assert "does not exist" in str(exc_info.value)


def test_existing_root(tmp_path):
    options = parse_options(["--root", str(tmp_path)])

    assert options.install_root == tmp_path.resolve()
    assert not options.targets_live_system


def test_load_rejected_with_root(tmp_path):
    with pytest.raises(InvalidArgument):
        parse_options(["--root", str(tmp_path), "--load"])


def test_project_and_dry_run():
    options = parse_options(["--project", "kext_project.yaml", "--dry-run"])

    assert options.project_file == Path("kext_project.yaml")
    assert options.dry_run


class TestMain(unittest.TestCase):
    """main() must refuse bad invocations before any command runs"""

    def test_nonexistent_root_runs_nothing(self):
        with patch("host_ops.subprocess.run") as mock_run:
            rc = deploy.main(["deploy.py", "--root", "/nonexistent/fuse4x/stage"])
        self.assertEqual(rc, 2)
        mock_run.assert_not_called()

    def test_missing_root_value_runs_nothing(self):
        with patch("host_ops.subprocess.run") as mock_run:
            rc = deploy.main(["deploy.py", "--debug", "--root"])
        self.assertEqual(rc, 2)
        mock_run.assert_not_called()

    def test_empty_root_runs_nothing(self):
        with patch("host_ops.subprocess.run") as mock_run:
            rc = deploy.main(["deploy.py", "--root="])
        self.assertEqual(rc, 2)
        mock_run.assert_not_called()

    def test_bad_project_file(self):
        with patch("host_ops.subprocess.run") as mock_run:
            rc = deploy.main(["deploy.py", "--project", "/nonexistent/kext_project.yaml"])
        self.assertEqual(rc, 2)
        mock_run.assert_not_called()

    def test_failed_phase_returns_nonzero(self):
        with patch.object(deploy.Deployer, "run", side_effect=deploy.BuildToolError("cannot build kext")):
            with patch("sys.stderr") as stderr:
                rc = deploy.main(["deploy.py", "--debug"])
        self.assertEqual(rc, 1)
        written = "".join(call.args[0] for call in stderr.write.call_args_list)
        self.assertIn("ERROR: build: cannot build kext", written)

    def test_success_returns_zero(self):
        target = deploy.InstallTarget(
            package_source=Path("build/Debug/fuse4x.kext"),
            package_dest=Path("/System/Library/Extensions/fuse4x.kext"),
        )
        with patch.object(deploy.Deployer, "run", return_value=target):
            rc = deploy.main(["deploy.py", "--debug"])
        self.assertEqual(rc, 0)
