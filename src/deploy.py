# Build fuse4x.kext with xcodebuild and deploy it.
# Possible flags are:
#   --debug       build the Debug configuration (default is Release)
#   --clean       `git clean -xdf` before build
#   --release     clean and build the Distribution configuration, stamped with
#                 `git describe --tags --dirty`; installs the load_fuse4x helper
#   --root DIR    install into this directory. If this flag is not set the script
#                 redeploys the kext to the local machine and unloads the running one
#   --load        load the installed kext afterwards (local machine only)
#   --project F   kext_project.yaml with overrides of the fuse4x defaults
#   --dry-run     print commands without executing them

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, List, Optional

import yaml

from deploy_config import ProjectConfig, load_project_config
from deploy_model import (
    BuildConfiguration,
    BuildToolError,
    DeployError,
    DeployState,
    InstallError,
    InstallTarget,
    InvalidArgument,
    InvocationOptions,
    LoadError,
    PermissionFixupError,
    Profile,
    UnloadError,
)
from host_ops import (
    CommandRunner,
    KextRegistry,
    chown_tree,
    copy_file,
    copy_tree,
    git_describe,
    make_dirs,
    set_setuid,
)


class _OptionParser(argparse.ArgumentParser):
    def error(self, message):
        raise InvalidArgument(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = _OptionParser(prog="deploy.py", description="Build and install the fuse4x kernel extension")
    profile = parser.add_mutually_exclusive_group()
    profile.add_argument("--debug", action="store_true", help="Build the Debug configuration")
    profile.add_argument(
        "--release",
        action="store_true",
        help="Clean and build the Distribution configuration with the git version stamped in",
    )
    parser.add_argument("--clean", action="store_true", help="Purge untracked and generated files before build")
    parser.add_argument("--root", metavar="DIR", default=None, help="Stage the install under DIR (must exist)")
    parser.add_argument("--load", action="store_true", help="Load the kext after installing it on this machine")
    parser.add_argument("--project", metavar="FILE", default=None, help="Path to kext_project.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")
    return parser


def parse_options(args: List[str]) -> InvocationOptions:
    """Turn command line arguments into options; nothing is executed here."""
    ns = _build_parser().parse_args(args)

    install_root = None
    if ns.root is not None:
        if not ns.root.strip():
            raise InvalidArgument("root directory must not be empty")
        install_root = Path(ns.root).expanduser()
        if not install_root.is_dir():
            raise InvalidArgument(f"root directory {ns.root} does not exist")
        install_root = install_root.resolve()

    if ns.load and install_root is not None:
        raise InvalidArgument("--load cannot be combined with --root")

    profile = Profile.DISTRIBUTION if ns.release else Profile.DEVELOPMENT
    return InvocationOptions(
        profile=profile,
        clean=ns.clean or ns.release,
        debug=ns.debug,
        install_root=install_root,
        project_file=Path(ns.project) if ns.project else None,
        load=ns.load,
        dry_run=ns.dry_run,
    )


def resolve_build_configuration(
    options: InvocationOptions,
    config: ProjectConfig,
    version: Optional[str] = None,
) -> BuildConfiguration:
    if options.profile is Profile.DISTRIBUTION:
        if not version:
            raise ValueError("distribution builds need a version")
        name = "Distribution"
    else:
        name = "Debug" if options.debug else "Release"

    args = ["xcodebuild", "-parallelizeTargets", "-configuration", name, "-alltargets"]
    if options.profile is Profile.DISTRIBUTION:
        args += config.sdk_args
        args += config.halt_on_failure_args
        args.append(f"GCC_PREPROCESSOR_DEFINITIONS={config.version_macro}={version}")
    return BuildConfiguration(name=name, build_args=args, version=version)


def compute_install_target(
    options: InvocationOptions,
    config: ProjectConfig,
    build_config: BuildConfiguration,
) -> InstallTarget:
    if options.install_root is not None:
        dest_dir = options.install_root / config.extensions_dir.lstrip("/")
    else:
        dest_dir = Path(config.extensions_dir)

    output_dir = config.build_output_dir(build_config.name)
    package_dest = dest_dir / config.kext_name
    if options.profile is not Profile.DISTRIBUTION:
        return InstallTarget(package_source=output_dir / config.kext_name, package_dest=package_dest)

    return InstallTarget(
        package_source=output_dir / config.kext_name,
        package_dest=package_dest,
        helper_source=output_dir / config.helper_name,
        helper_dest=package_dest / "Support" / config.helper_name,
    )


class Deployer:
    def __init__(
        self,
        options: InvocationOptions,
        config: ProjectConfig,
        runner: Optional[CommandRunner] = None,
        registry: Optional[KextRegistry] = None,
        describe: Callable[[CommandRunner], str] = git_describe,
    ):
        self.options = options
        self.config = config
        self.runner = runner or CommandRunner(
            cwd=config.project_dir, elevate=config.elevate, dry_run=options.dry_run
        )
        self.registry = registry or KextRegistry(self.runner)
        self.describe = describe
        self.state = DeployState.START
        self.failure: Optional[DeployError] = None

    def run(self) -> InstallTarget:
        self.state = DeployState.OPTIONS_RESOLVED
        try:
            self.clean_workspace()
            self.state = DeployState.CLEANED_OR_SKIPPED

            build_config = self.build()
            self.state = DeployState.BUILT

            if self.options.targets_live_system:
                self.unload_running_kext()
                self.state = DeployState.UNLOADED
            else:
                print("# staging install, running kext left untouched")
                self.state = DeployState.SKIPPED_UNLOAD

            target = compute_install_target(self.options, self.config, build_config)
            self.install(target)
            self.state = DeployState.INSTALLED

            self.fix_ownership(target)
            self.state = DeployState.OWNERSHIP_FIXED

            if self.options.load:
                self.load_kext(target)
        except DeployError as e:
            self.state = DeployState.FAILED
            self.failure = e
            raise

        self.state = DeployState.SUCCESS
        return target

    def clean_workspace(self) -> None:
        if not self.options.clean:
            return
        print(f"# clean workspace {self.config.project_dir}")
        rc = self.runner.run(["git", "clean", "-xdf"])
        if rc != 0:
            raise BuildToolError(f"git clean failed with return code {rc}", step="clean")

    def build(self) -> BuildConfiguration:
        version = None
        if self.options.profile is Profile.DISTRIBUTION:
            version = self.describe(self.runner)
            print(f"# version: {version}")

        build_config = resolve_build_configuration(self.options, self.config, version)
        print(f"# build {self.config.kext_name} configuration={build_config.name}")
        rc = self.runner.run(build_config.build_args)
        if rc != 0:
            raise BuildToolError(f"cannot build kext, xcodebuild returned {rc}")
        return build_config

    def unload_running_kext(self) -> None:
        bundle_id = self.config.bundle_id
        if not self.registry.query(bundle_id):
            print(f"# {bundle_id} is not loaded")
            return
        print(f"# unload {bundle_id}")
        if not self.registry.unload(bundle_id):
            raise UnloadError(f"cannot unload the kext {bundle_id}")

    def _check_build_output(self, path: Path) -> None:
        if not self.options.dry_run and not path.exists():
            raise InstallError(f"build output missing: {path}")

    def install(self, target: InstallTarget) -> None:
        self._check_build_output(target.package_source)
        if target.has_helper:
            self._check_build_output(target.helper_source)

        if self.options.install_root is not None:
            if not make_dirs(self.runner, target.dest_dir):
                raise InstallError(f"cannot create {target.dest_dir}")

        print(f"# install {target.package_source} -> {target.package_dest}")
        if not copy_tree(self.runner, target.package_source, target.dest_dir):
            raise InstallError(f"cannot copy {target.package_source} to {target.dest_dir}")

        if not target.has_helper:
            return

        support_dir = target.helper_dest.parent
        if not make_dirs(self.runner, support_dir):
            raise InstallError(f"cannot create {support_dir}")
        if not copy_file(self.runner, target.helper_source, target.helper_dest):
            raise InstallError(f"cannot copy {target.helper_source} to {target.helper_dest}")
        # load_fuse4x mounts on behalf of unprivileged users
        if not set_setuid(self.runner, target.helper_dest):
            raise PermissionFixupError(f"cannot set the setuid bit on {target.helper_dest}")

    def fix_ownership(self, target: InstallTarget) -> None:
        print(f"# chown {self.config.owner} {target.package_dest}")
        if not chown_tree(self.runner, self.config.owner, target.package_dest):
            raise PermissionFixupError(f"cannot chown {target.package_dest} to {self.config.owner}")

    def load_kext(self, target: InstallTarget) -> None:
        if self.registry.query(self.config.bundle_id):
            print(f"# {self.config.bundle_id} is already loaded")
            return
        print(f"# load {target.package_dest}")
        if not self.registry.load(target.package_dest):
            raise LoadError(f"cannot load the kext from {target.package_dest}")


def _load_config(options: InvocationOptions) -> ProjectConfig:
    try:
        return load_project_config(options.project_file)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        raise InvalidArgument(f"bad project file: {e}") from e


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv
    try:
        options = parse_options(argv[1:])
        config = _load_config(options)
    except InvalidArgument as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print(
        f"will deploy {config.kext_name}: profile={options.profile.value}, "
        f"root={options.install_root or '/'}, dry_run={options.dry_run}"
    )
    deployer = Deployer(options, config)
    try:
        target = deployer.run()
    except DeployError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"{config.kext_name} deployed to {target.package_dest}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
