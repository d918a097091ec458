#!/usr/bin/env python3
# -- coding: utf-8 --
#
# package_apk.py
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
APK assembly.

For every unit with shared libraries this module:
1. Writes AndroidManifest.xml and res/layout/main.xml
2. Packages resources with `aapt package`
3. Compiles MainActivity, QuadNative and auxiliary Java sources with javac
4. Converts the classes to classes.dex with d8
5. Adds classes.dex and the shared libraries with `aapt add`
6. Aligns with zipalign and signs with apksigner using the debug keystore
"""

import glob
import os
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

from quadapk.build_scripts import build_utils
from quadapk.build_scripts.config import AndroidConfig, TargetSettings
from quadapk.build_scripts.keystore import DEBUG_KEYSTORE_PASSWORD, ensure_debug_keystore
from quadapk.build_scripts.manifest import write_main_layout, write_manifest
from quadapk.build_scripts.preprocessor import (
    LIBRARY_NAME_TOKEN,
    PACKAGE_NAME_TOKEN,
    preprocess_main_activity,
    read_injects,
)
from quadapk.build_scripts.quad_toml import JAVA_SOURCE_DIR, AuxiliaryFiles
from quadapk.build_scripts.targets import CompilationUnit, PackageResult, SharedLibrary, SharedLibraryMap, UnitKind
from quadapk.utils.cmd.cmd_util import run_tool

# d8 can't find java.lang.System when desugaring against android.jar
D8_MIN_API = "26"


@dataclass(frozen=True)
class ApkTools:
    aapt: str
    d8: str
    zipalign: str
    apksigner: str
    javac: str

    @classmethod
    def find(cls, config: AndroidConfig) -> "ApkTools":
        """
        Raises:
            ToolNotFoundError: a build tool or javac is missing
        """
        sdk, version = config.sdk_path, config.build_tools_version
        return cls(
            aapt=build_utils.find_build_tool(sdk, version, "aapt", build_utils.EXECUTABLE_SUFFIX_EXE),
            d8=build_utils.find_build_tool(sdk, version, "d8", build_utils.EXECUTABLE_SUFFIX_BAT),
            zipalign=build_utils.find_build_tool(sdk, version, "zipalign", build_utils.EXECUTABLE_SUFFIX_EXE),
            apksigner=build_utils.find_build_tool(sdk, version, "apksigner", build_utils.EXECUTABLE_SUFFIX_BAT),
            javac=build_utils.find_java_executable("javac"),
        )


def final_apk_directory(root_build_dir, unit: CompilationUnit) -> str:
    final_apk_dir = os.path.join(root_build_dir, "apk")
    if unit.kind == UnitKind.BIN:
        return final_apk_dir
    if unit.kind == UnitKind.EXAMPLE:
        return os.path.join(final_apk_dir, "examples")
    raise ValueError(f"Unexpected target kind: {unit.kind}")


def _java_local_path(local_path: str) -> str:
    return os.path.join(*local_path[len(JAVA_SOURCE_DIR):].split("/"))


def write_java_sources(
    target_directory,
    settings: TargetSettings,
    aux_files: AuxiliaryFiles,
    main_activity_path,
    quad_native_path,
):
    """
    Generate MainActivity.java and copy the other Java sources into the
    target directory.

    Returns:
        list: Java source paths relative to the target directory
    """
    package_name = settings.manifest_package_name
    library_name = settings.library_name

    java_dir = os.path.join(target_directory, *package_name.split("."))
    os.makedirs(java_dir, exist_ok=True)
    target_activity_path = os.path.join(java_dir, "MainActivity.java")

    with open(main_activity_path, "r", encoding="utf-8") as f:
        java_src = f.read()
    inject = read_injects(aux_files.main_activity_injects)
    with open(target_activity_path, "w", encoding="utf-8") as f:
        f.write(preprocess_main_activity(java_src, package_name, library_name, inject))

    quad_native_dir = os.path.join(target_directory, "quad_native")
    os.makedirs(quad_native_dir, exist_ok=True)
    shutil.copyfile(quad_native_path, os.path.join(quad_native_dir, "QuadNative.java"))

    sources = [os.path.join("quad_native", "QuadNative.java")]
    for global_path, local_path in aux_files.java_files:
        with open(global_path, "r", encoding="utf-8") as f:
            java_src = f.read()
        java_src = java_src.replace(PACKAGE_NAME_TOKEN, package_name)
        java_src = java_src.replace(LIBRARY_NAME_TOKEN, library_name)

        relative = _java_local_path(local_path)
        target_path = os.path.join(target_directory, relative)
        os.makedirs(os.path.dirname(target_path), exist_ok=True)
        with open(target_path, "w", encoding="utf-8") as f:
            f.write(java_src)
        sources.append(relative)

    r_java_path = os.path.join(target_directory, "build", "gen", *package_name.split("."), "R.java")
    sources += [r_java_path, target_activity_path]
    return sources


def javac_command(javac, android_jar_path, aux_files: AuxiliaryFiles, sources, rt_jar_path: Optional[str]):
    classpath = os.pathsep.join([android_jar_path] + [jar for jar, _ in aux_files.comptime_jar_files])
    command = [javac, "-source", "1.7", "-target", "1.7", "-Xlint:deprecation"]
    if rt_jar_path:
        command += ["-bootclasspath", rt_jar_path]
    command += ["-classpath", classpath, "-d", os.path.join("build", "obj")]
    return command + list(sources)


def d8_command(d8, target_directory, aux_files: AuxiliaryFiles):
    class_files = sorted(glob.glob(os.path.join(target_directory, "**", "*.class"), recursive=True))
    command = build_utils.script_command(d8) + class_files
    command += [jar for jar, _ in aux_files.runtime_jar_files]
    command += ["--no-desugaring", "--min-api", D8_MIN_API]
    return command


def aapt_package_command(aapt, unaligned_apk_name, android_jar_path, settings: TargetSettings):
    command = [
        aapt, "package",
        "-F", unaligned_apk_name,
        "-m",
        "-J", "build/gen",
        "-M", "AndroidManifest.xml",
        "-S", "res",
        "-I", android_jar_path,
    ]
    if settings.res_path:
        command += ["-S", settings.res_path]
    # Link assets
    if settings.assets_path:
        command += ["-A", settings.assets_path]
    return command


def add_shared_library(aapt, target_directory, unaligned_apk_name, library: SharedLibrary):
    """
    Copy the shared library to lib/<abi>/<file> and add it to the APK. The
    forward slashes of the in-APK path matter: the library does not load if
    aapt is given backslashes.
    """
    so_path = library.apk_path
    target_shared_object_path = os.path.join(target_directory, *so_path.split("/"))
    os.makedirs(os.path.dirname(target_shared_object_path), exist_ok=True)
    shutil.copyfile(library.path, target_shared_object_path)
    run_tool([aapt, "add", unaligned_apk_name, so_path], cwd=target_directory)


def build_apk(
    config: AndroidConfig,
    root_build_dir,
    unit: CompilationUnit,
    libraries,
    settings: TargetSettings,
    aux_files: AuxiliaryFiles,
    tools: ApkTools,
    main_activity_path,
    quad_native_path,
    rt_jar_path: Optional[str],
    sign: bool = True,
) -> str:
    """
    Assemble, align and sign the APK of one unit.

    Returns:
        str: path of the final APK

    Raises:
        ExternalToolError: a packaging tool failed
    """
    print(f"==================Packaging {unit.kind.value} {unit.name}==================")
    target_directory = build_utils.get_target_directory(root_build_dir, unit)
    os.makedirs(target_directory, exist_ok=True)

    write_manifest(target_directory, config, settings, unit, aux_files.java_services)
    write_main_layout(target_directory)

    # Create unaligned APK which includes resources and assets
    unaligned_apk_name = f"{unit.name}_unaligned.apk"
    unaligned_apk_path = os.path.join(target_directory, unaligned_apk_name)
    if os.path.exists(unaligned_apk_path):
        os.remove(unaligned_apk_path)

    os.makedirs(os.path.join(target_directory, "build", "obj"), exist_ok=True)
    os.makedirs(os.path.join(target_directory, "build", "gen"), exist_ok=True)

    sources = write_java_sources(target_directory, settings, aux_files, main_activity_path, quad_native_path)

    run_tool(
        aapt_package_command(tools.aapt, unaligned_apk_name, config.android_jar_path, settings),
        cwd=target_directory,
    )
    run_tool(
        javac_command(tools.javac, config.android_jar_path, aux_files, sources, rt_jar_path),
        cwd=target_directory,
    )
    run_tool(d8_command(tools.d8, target_directory, aux_files), cwd=target_directory)
    run_tool([tools.aapt, "add", unaligned_apk_name, "classes.dex"], cwd=target_directory)

    for library in libraries:
        add_shared_library(tools.aapt, target_directory, unaligned_apk_name, library)

    # Determine the directory in which to place the aligned and signed APK
    target_apk_directory = final_apk_directory(root_build_dir, unit)
    os.makedirs(target_apk_directory, exist_ok=True)

    # Align apk
    final_apk_path = os.path.join(target_apk_directory, f"{unit.name}.apk")
    run_tool(
        [tools.zipalign, "-f", "-v", "4", unaligned_apk_name, final_apk_path],
        cwd=target_directory,
    )

    keystore_path = ensure_debug_keystore(cwd=root_build_dir)
    if sign:
        # Sign the APK with the development certificate
        run_tool(
            build_utils.script_command(tools.apksigner)
            + ["sign", "--ks", keystore_path, "--ks-pass", f"pass:{DEBUG_KEYSTORE_PASSWORD}", final_apk_path],
            cwd=target_directory,
        )
    else:
        print(f"WARNING: {final_apk_path} is not signed")
    return final_apk_path


def build_apks(
    config: AndroidConfig,
    root_build_dir,
    shared_libraries: SharedLibraryMap,
    settings: Dict[CompilationUnit, TargetSettings],
    aux_files: AuxiliaryFiles,
    main_activity_path,
    quad_native_path,
    sign: bool = True,
    tools: Optional[ApkTools] = None,
):
    """
    Package every unit of the shared library map, in map order.

    Returns:
        MappingProxyType: (UnitKind, name) -> final APK path
    """
    tools = tools or ApkTools.find(config)
    rt_jar_path = build_utils.find_rt_jar()
    result = PackageResult()
    for unit, libraries in shared_libraries.items():
        unit_settings = settings.get(unit) or config.resolve(unit.kind, unit.name)
        apk = build_apk(
            config,
            root_build_dir,
            unit,
            libraries,
            unit_settings,
            aux_files,
            tools,
            main_activity_path,
            quad_native_path,
            rt_jar_path,
            sign=sign,
        )
        result.add(unit, apk)
    return result.freeze()
