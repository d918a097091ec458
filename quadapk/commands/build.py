#
# Copyright 2024 quadapk Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

import argparse
import sys
import time

from quadapk.build_scripts import build_android
from quadapk.build_scripts.build_android import BuildOptions
from quadapk.utils.context.command import CliCommand
from quadapk.utils.context.context import CliContext
from quadapk.utils.context.namespace import CliNameSpace
from quadapk.utils.errors import QuadApkError


def add_build_arguments(parser: argparse.ArgumentParser, release_flag=True):
    if release_flag:
        parser.add_argument(
            "--release",
            action="store_true",
            help="Build artifacts in release mode, with optimizations",
        )
    parser.add_argument(
        "-p", "--package",
        type=str,
        default=None,
        help="Package to build",
    )
    parser.add_argument(
        "--bin",
        action="append",
        default=[],
        help="Build only the specified binary (repeatable)",
    )
    parser.add_argument(
        "--example",
        action="append",
        default=[],
        help="Build only the specified example (repeatable)",
    )
    parser.add_argument(
        "--bins",
        action="store_true",
        help="Build all binaries",
    )
    parser.add_argument(
        "--examples",
        action="store_true",
        help="Build all examples",
    )
    parser.add_argument(
        "--all-targets",
        action="store_true",
        help="Build all targets, test builds are skipped",
    )
    parser.add_argument(
        "-F", "--features",
        action="append",
        default=[],
        help="Space or comma separated list of features to activate (repeatable)",
    )
    parser.add_argument(
        "--all-features",
        action="store_true",
        help="Activate all available features",
    )
    parser.add_argument(
        "--no-default-features",
        action="store_true",
        help="Do not activate the `default` feature",
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=None,
        help="Build artifacts with the specified cargo profile",
    )
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        help="ABI to build, rust triple or android abi name (repeatable, default: "
             "build_targets of Cargo.toml)",
    )
    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Number of ABIs built in parallel (default: all)",
    )
    parser.add_argument(
        "--nosign",
        action="store_true",
        help="Don't sign the APK with the debug keystore",
    )
    parser.add_argument(
        "--nostrip",
        action="store_true",
        help="Keep debug symbols in release builds",
    )
    parser.add_argument(
        "--strict-dylibs",
        action="store_true",
        help="Fail when a needed shared library cannot be found",
    )
    parser.add_argument(
        "--manifest-path",
        type=str,
        default=None,
        help="Path to Cargo.toml",
    )
    parser.add_argument(
        "--target-dir",
        type=str,
        default=None,
        help="Directory for all generated artifacts",
    )
    parser.add_argument(
        "--frozen",
        action="store_true",
        help="Require Cargo.lock and cache are up to date",
    )
    parser.add_argument(
        "--locked",
        action="store_true",
        help="Require Cargo.lock is up to date",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run without accessing the network",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Echo the output of cargo and rustc",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Don't print progress banners",
    )


def build_options(args: CliNameSpace, release=None) -> BuildOptions:
    if args.jobs is not None and args.jobs < 1:
        print("ERROR: --jobs must be at least 1")
        sys.exit(1)
    release = args.release if release is None else release
    if args.profile:
        if getattr(args, "release", False) and args.profile != "release":
            print(f"ERROR: conflicting usage of --profile={args.profile} and --release")
            sys.exit(1)
        # artifacts of any other profile go to the debug directory
        release = args.profile == "release"
    return BuildOptions(
        release=release,
        package=args.package,
        bins=args.bin,
        examples=args.example,
        all_bins=args.bins,
        all_examples=args.examples,
        all_targets=args.all_targets,
        features=args.features,
        all_features=args.all_features,
        no_default_features=args.no_default_features,
        profile=args.profile,
        frozen=args.frozen,
        locked=args.locked,
        offline=args.offline,
        targets=args.target,
        jobs=args.jobs,
        nosign=args.nosign,
        nostrip=args.nostrip,
        strict_dylibs=args.strict_dylibs,
        manifest_path=args.manifest_path,
        target_dir=args.target_dir,
        verbose=args.verbose,
        quiet=args.quiet,
    )


def format_elapsed_time(elapsed):
    if elapsed < 60:
        return f"{elapsed:.2f} seconds"
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes} min {seconds:.1f} sec"


def run_build(options: BuildOptions, context: CliContext):
    """
    Run the build pipeline, exiting with status 1 on any fatal error.

    Returns:
        tuple: (AndroidConfig, mapping of (UnitKind, name) -> apk path)
    """
    before_time = time.time()
    try:
        result = build_android.main(options, environ=context.environ)
    except QuadApkError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nBuild aborted by user")
        sys.exit(130)
    print(f"\nBuild completed in {format_elapsed_time(time.time() - before_time)}")
    return result


class Build(CliCommand):
    def description(self) -> str:
        return """
        Compile the bin/example targets of a cargo package into APKs.

        Every target is built as a shared library for each configured ABI
        (armeabi-v7a, arm64-v8a, x86, x86_64) and packaged together with the
        Java glue of miniquad. APKs are written to
        target/android-artifacts/<debug|release>/apk/.

        Examples:
            quadapk build                        # Build all bins, debug
            quadapk build --release              # Build all bins, release
            quadapk build --example triangle     # Build one example
            quadapk build --target arm64-v8a     # Build a single ABI
            cargo quad-apk build --release       # As a cargo subcommand
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="quadapk build",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        add_build_arguments(parser)
        return parser.parse_args(self.command_argv("build", argv), namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace):
        run_build(build_options(args), context)
