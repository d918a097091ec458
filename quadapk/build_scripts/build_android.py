#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_android.py
# quadapk
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

"""
Android APK build pipeline.

This script builds the bin and example targets of a cargo package into
shared libraries for every configured ABI and packages each of them into an
APK. It handles:
- Toolchain discovery in the Android NDK and SDK
- Running `cargo build --target <triple>` once per ABI, ABIs in parallel
- Collecting the shared libraries reported by the rustc wrapper
- Packaging, aligning and signing the APKs

Requirements:
- Android NDK r23 or later (set in ANDROID_NDK_ROOT or NDK_HOME)
- Android SDK with build-tools and a platform (set in ANDROID_HOME)
- A JDK (javac, java, keytool on PATH or in JAVA_HOME)
- The rust targets installed with `rustup target add`
"""

import os
import shutil
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from quadapk.build_scripts import build_utils
from quadapk.build_scripts.config import AndroidConfig, TargetSettings, load_android_config
from quadapk.build_scripts.package_apk import build_apks
from quadapk.build_scripts.quad_toml import collect_auxiliary_files
from quadapk.build_scripts.rustc_wrapper import read_records
from quadapk.build_scripts.targets import BuildArchitecture, CompilationUnit, SharedLibraryMap, UnitKind
from quadapk.build_scripts.toolchain import ToolchainContext, create_toolchain_context
from quadapk.build_scripts.workspace import Workspace, find_cargo
from quadapk.utils.cmd.cmd_util import exec_streaming, format_command
from quadapk.utils.errors import ConfigError, ExternalToolError, ToolNotFoundError

WRAPPER_SCRIPT = "quadapk-rustc-wrapper"
# package providing the java glue and the rust module injected into every target
GLUE_PACKAGE = "miniquad"


@dataclass
class BuildOptions:
    release: bool = False
    package: Optional[str] = None
    bins: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)
    all_bins: bool = False
    all_examples: bool = False
    all_targets: bool = False
    features: List[str] = field(default_factory=list)
    all_features: bool = False
    no_default_features: bool = False
    profile: Optional[str] = None
    frozen: bool = False
    locked: bool = False
    offline: bool = False
    targets: List[str] = field(default_factory=list)
    jobs: Optional[int] = None
    nosign: bool = False
    nostrip: bool = False
    strict_dylibs: bool = False
    manifest_path: Optional[str] = None
    target_dir: Optional[str] = None
    verbose: bool = False
    quiet: bool = False


def find_rustc_wrapper() -> str:
    """Location of the quadapk-rustc-wrapper console script"""
    candidates = [
        shutil.which(WRAPPER_SCRIPT),
        os.path.join(os.path.dirname(sys.executable), WRAPPER_SCRIPT + build_utils.EXECUTABLE_SUFFIX_EXE),
    ]
    for candidate in candidates:
        if candidate and os.path.isfile(candidate):
            return candidate
    raise ToolNotFoundError(
        WRAPPER_SCRIPT,
        ["PATH", os.path.dirname(sys.executable)],
        "Reinstall quadapk so its console scripts are available",
    )


def cargo_build_command(cargo, abi: BuildArchitecture, options: BuildOptions) -> List[str]:
    command = [cargo, "build", "--target", abi.rust_triple]
    if options.profile:
        command += ["--profile", options.profile]
    elif options.release:
        command.append("--release")
    if options.manifest_path:
        command += ["--manifest-path", options.manifest_path]
    if options.package:
        command += ["--package", options.package]
    if options.target_dir:
        command += ["--target-dir", options.target_dir]
    for name in options.bins:
        command += ["--bin", name]
    for name in options.examples:
        command += ["--example", name]
    if options.all_bins:
        command.append("--bins")
    if options.all_examples:
        command.append("--examples")
    if options.all_targets:
        command.append("--all-targets")
    for features in options.features:
        command += ["--features", features]
    if options.all_features:
        command.append("--all-features")
    if options.no_default_features:
        command.append("--no-default-features")
    for flag in ("frozen", "locked", "offline"):
        if getattr(options, flag):
            command.append(f"--{flag}")
    return command


def select_units(units: List[CompilationUnit], options: BuildOptions) -> List[CompilationUnit]:
    """
    Units to package, following cargo's target selection: every bin when
    nothing is selected, otherwise the union of --bin/--example names and the
    --bins, --examples and --all-targets groups, in package order.

    Raises:
        ConfigError: a selected target does not exist
    """
    all_bins = options.all_bins or options.all_targets
    all_examples = options.all_examples or options.all_targets
    if not (options.bins or options.examples or all_bins or all_examples):
        return [u for u in units if u.kind == UnitKind.BIN]

    selected = [
        u for u in units
        if (all_bins and u.kind == UnitKind.BIN) or (all_examples and u.kind == UnitKind.EXAMPLE)
    ]
    for kind, names in ((UnitKind.BIN, options.bins), (UnitKind.EXAMPLE, options.examples)):
        for name in names:
            unit = next((u for u in units if u.kind == kind and u.name == name), None)
            if unit is None:
                raise ConfigError(f"no {kind.value} target named `{name}`")
            if unit not in selected:
                selected.append(unit)
    return selected


def build_abi(context: ToolchainContext, command: List[str], env: Dict[str, str], cwd=None, verbose=False):
    """
    Run cargo for one ABI and collect what the wrapper recorded.

    Returns:
        SharedLibraryMap: shared libraries of this ABI

    Raises:
        ExternalToolError: cargo exited with a non-zero status
    """
    prefix = f"[{context.abi.android_abi}] "
    lines = []

    def on_line(line):
        lines.append(line)
        if verbose:
            print(prefix + line, flush=True)

    # start from a clean records file, records of a previous run are stale
    with open(context.records_path, "w"):
        pass
    context.write()

    print(f"build cmd: [{format_command(command)}]")
    code = exec_streaming(command, on_line, on_line, cwd=cwd, env=env)
    if code != 0:
        raise ExternalToolError(command, code, "" if verbose else "\n".join(lines))
    return read_records(context.records_path)


def build_shared_libraries(
    config: AndroidConfig,
    units: List[CompilationUnit],
    settings: Dict[CompilationUnit, TargetSettings],
    root_build_dir,
    mod_inject_path,
    options: BuildOptions,
    environ=None,
) -> SharedLibraryMap:
    """
    Build the shared libraries of every unit for every configured ABI.

    Each ABI gets its own ToolchainContext and child environment; ABIs run on a
    thread pool and their maps are merged in configured ABI order.

    Raises:
        ToolNotFoundError: the NDK lacks a required tool
        ExternalToolError: cargo failed for an ABI
    """
    environ = dict(os.environ if environ is None else environ)
    cargo = find_cargo()
    wrapper = find_rustc_wrapper()
    unit_packages = [(unit, settings[unit].package_name) for unit in units]

    contexts = [
        create_toolchain_context(
            config,
            abi,
            root_build_dir,
            mod_inject_path,
            units=unit_packages,
            nostrip=options.nostrip,
            strict_dylibs=options.strict_dylibs,
        )
        for abi in config.build_targets
    ]

    max_workers = len(contexts)
    if options.jobs:
        max_workers = max(1, min(options.jobs, max_workers))
    print(f"main archs:{[c.abi.android_abi for c in contexts]}, jobs:{max_workers}")

    results: Dict[BuildArchitecture, SharedLibraryMap] = {}
    errors: Dict[BuildArchitecture, Exception] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(
                build_abi,
                context,
                cargo_build_command(cargo, context.abi, options),
                context.env(environ, wrapper),
                config.manifest_dir,
                options.verbose,
            ): context.abi
            for context in contexts
        }
        for future in as_completed(futures):
            abi = futures[future]
            try:
                results[abi] = future.result()
                print(f"[{abi.android_abi}] build success")
            except Exception as e:
                print(f"ERROR: [{abi.android_abi}] build failed")
                errors[abi] = e

    print("==================Android Build Done========================")
    print(f"Build All:{[a.android_abi for a in config.build_targets]}")
    print(f"Build Success:{[a.android_abi for a in config.build_targets if a in results]}")
    print(f"Build Failed:{[a.android_abi for a in config.build_targets if a in errors]}")

    for abi in config.build_targets:
        if abi in errors:
            raise errors[abi]

    merged = SharedLibraryMap()
    for abi in config.build_targets:
        merged.merge(results[abi])
    return merged


def glue_paths(glue_root) -> Dict[str, str]:
    paths = {
        "main_activity": os.path.join(glue_root, "java", "MainActivity.java"),
        "quad_native": os.path.join(glue_root, "java", "QuadNative.java"),
        "mod_inject": os.path.join(glue_root, "src", "native", "android", "mod_inject.rs"),
    }
    for path in paths.values():
        if not os.path.isfile(path):
            raise ToolNotFoundError(path, [glue_root], f"The {GLUE_PACKAGE} package does not ship android glue")
    return paths


def main(options: BuildOptions, environ=None):
    """
    Build and package every selected unit.

    Returns:
        tuple: (AndroidConfig, PackageResult mapping of (UnitKind, name) -> apk path)

    Raises:
        QuadApkError: any fatal error, the run stops at the first one
    """
    before_time = time.time()
    environ = os.environ if environ is None else environ

    workspace = Workspace.load(options.manifest_path)
    manifest_path = workspace.member_manifest(options.package)
    config = load_android_config(manifest_path, release=options.release, environ=environ)
    if options.targets:
        config.build_targets = [BuildArchitecture.parse(t) for t in options.targets]
    if not build_utils.check_ndk_env(config.ndk_path):
        raise ToolNotFoundError(
            f"Android NDK r{build_utils.NDK_MIN_MAJOR_VERSION} or later",
            [config.ndk_path],
            "Set ANDROID_NDK_ROOT or NDK_HOME to a supported NDK",
        )

    # every bin/example is known to the hook, cargo only compiles the selected ones
    all_units = workspace.units(options.package)
    if not select_units(all_units, options):
        raise ConfigError("no bin or example target to package")
    settings = {unit: config.resolve(unit.kind, unit.name) for unit in all_units}
    aux_files = collect_auxiliary_files(workspace.package_roots())

    glue = glue_paths(workspace.package_root(GLUE_PACKAGE))
    root_build_dir = build_utils.get_root_build_directory(
        options.target_dir or workspace.target_dir, options.release
    )
    os.makedirs(root_build_dir, exist_ok=True)

    if not options.quiet:
        print(f"==================Android Build, release: {options.release}==================")
    shared_libraries = build_shared_libraries(
        config, all_units, settings, root_build_dir, glue["mod_inject"], options, environ
    )

    result = build_apks(
        config,
        root_build_dir,
        shared_libraries,
        settings,
        aux_files,
        main_activity_path=glue["main_activity"],
        quad_native_path=glue["quad_native"],
        sign=not options.nosign,
    )

    if not options.quiet:
        print("==================Output========================")
        for (kind, name), apk in result.items():
            print(f"{kind.value} {name}: {apk}")
    print(f"use time: {int(time.time() - before_time)}")
    return config, result
