#!/usr/bin/env python3
# -- coding: utf-8 --
#
# build_utils.py
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
Build utility functions shared by the Android build stages.

This module locates everything the build needs on the host:
- NDK LLVM toolchain binaries (clang, llvm-ar, ld, llvm-readelf, libunwind)
- Android SDK build-tools (aapt, d8, zipalign, apksigner) and adb
- JDK executables (javac, java, keytool) and rt.jar
- Build output directories
- ELF header inspection for architecture checks

NDK files that depend on the platform version are found with the same
fallback the NDK build system uses: the requested version, then the next
lower ones, then the next higher ones.
"""

import os
import platform
import struct

from quadapk.build_scripts.targets import UnitKind
from quadapk.utils.cmd.cmd_util import exec_command
from quadapk.utils.errors import ToolNotFoundError

# NDK r23 is the first release shipping the unprefixed `ld` and `llvm-*` tools
NDK_MIN_MAJOR_VERSION = 23

# Highest platform version probed by find_ndk_path (exclusive)
NDK_PLATFORM_CEILING = 100


def system_is_windows():
    """Check if current platform is Windows."""
    return platform.system().lower() == "windows"


def system_is_macos():
    """Check if current platform is macOS/Darwin."""
    return platform.system().lower() == "darwin"


def system_architecture_is64():
    """Check if current system architecture is 64-bit."""
    return platform.machine().endswith("64")


# These are executable suffixes used to simplify building commands.
# On non-windows platforms they are empty.
EXECUTABLE_SUFFIX_EXE = ".exe" if system_is_windows() else ""
EXECUTABLE_SUFFIX_CMD = ".cmd" if system_is_windows() else ""
EXECUTABLE_SUFFIX_BAT = ".bat" if system_is_windows() else ""


def get_ndk_host_tag():
    """
    Get the NDK host platform tag for toolchain paths.

    Returns:
        str: Platform tag (e.g., "darwin-x86_64", "linux-x86_64", "windows")
    """
    system_str = platform.system().lower()
    if system_architecture_is64():
        system_str = system_str + "-x86_64"
    return system_str


def script_command(path):
    """
    Command prefix that runs a script. Uses "cmd /C" on windows in order to
    allow execution of batch files.
    """
    if system_is_windows():
        return ["cmd", "/C", str(path)]
    return [str(path)]


# =============================================================================
# NDK
# =============================================================================


def get_ndk_revision(ndk_path):
    """
    Read the installed NDK version from its source.properties file.

    Returns:
        tuple: (error_code, ndk_revision_or_error_message)
    """
    if not ndk_path:
        return -1, "Error: ndk does not exist or you do not set it into NDK_HOME."

    properties = os.path.join(ndk_path, "source.properties")
    if not os.path.isfile(properties):
        return -4, f"Error: source.properties does not exist in {ndk_path}"

    ndk_revision = None
    with open(properties) as f:
        for line in f:
            if line.startswith("Pkg.Revision") and len(line.split("=")) == 2:
                ndk_revision = line.split("=")[1].strip()
                break

    if not ndk_revision:
        return -5, "Error: parse source.properties fail"
    return 0, ndk_revision


def check_ndk_env(ndk_path):
    """
    Validate that the NDK exists and is recent enough for the unprefixed tools.

    Returns:
        bool: True if the NDK can be used. Prints the reason otherwise.
    """
    err_code, ndk_revision = get_ndk_revision(ndk_path)
    if err_code != 0:
        print(ndk_revision)
        return False

    try:
        major = int(ndk_revision.split(".")[0])
    except ValueError:
        print(f"Error: unexpected ndk revision '{ndk_revision}'")
        return False

    if major >= NDK_MIN_MAJOR_VERSION:
        return True

    print(f"Error: make sure ndk's version >= r{NDK_MIN_MAJOR_VERSION}, current is {ndk_revision}")
    return False


def llvm_toolchain_root(ndk_path):
    """Returns the path to the LLVM toolchain provided by the NDK"""
    return os.path.join(ndk_path, "toolchains", "llvm", "prebuilt", get_ndk_host_tag())


def make_path(ndk_path):
    """Returns path to NDK provided make"""
    return os.path.join(ndk_path, "prebuilt", get_ndk_host_tag(), "bin", "make" + EXECUTABLE_SUFFIX_EXE)


def find_ndk_path(min_platform, path_builder, what="NDK file"):
    """
    Look for a file whose location depends on the platform version.

    Tries the version matching `min_platform`, then the next lower versions
    down to 2, then the higher versions up to NDK_PLATFORM_CEILING - 1, and
    returns the first path that exists.

    Args:
        min_platform: Configured minimum platform (API level)
        path_builder: Callable building a candidate path from a version
        what: Description used in the error message

    Raises:
        ToolNotFoundError: no candidate exists in the whole range
    """
    platform_version = int(min_platform)

    tmp_platform = platform_version
    while tmp_platform > 1:
        path = path_builder(tmp_platform)
        if os.path.exists(path):
            return path
        tmp_platform -= 1

    # This would be the minimum API level supported by the NDK
    tmp_platform = platform_version
    while tmp_platform < NDK_PLATFORM_CEILING:
        path = path_builder(tmp_platform)
        if os.path.exists(path):
            return path
        tmp_platform += 1

    raise ToolNotFoundError(
        what,
        [path_builder(platform_version)],
        f"toolchain file not found for platform versions 2..{NDK_PLATFORM_CEILING - 1}",
    )


def find_clang(ndk_path, arch, min_sdk_version):
    """Returns path to clang script that should be used to build the target"""
    bin_folder = os.path.join(llvm_toolchain_root(ndk_path), "bin")
    return find_ndk_path(
        min_sdk_version,
        lambda p: os.path.join(bin_folder, f"{arch.ndk_llvm_triple}{p}-clang{EXECUTABLE_SUFFIX_CMD}"),
        "NDK clang",
    )


def find_clang_cpp(ndk_path, arch, min_sdk_version):
    """Returns path to clang++ script that should be used to build the target"""
    bin_folder = os.path.join(llvm_toolchain_root(ndk_path), "bin")
    return find_ndk_path(
        min_sdk_version,
        lambda p: os.path.join(bin_folder, f"{arch.ndk_llvm_triple}{p}-clang++{EXECUTABLE_SUFFIX_CMD}"),
        "NDK clang++",
    )


def _find_llvm_tool(ndk_path, name):
    tool_path = os.path.join(llvm_toolchain_root(ndk_path), "bin", name)
    if not os.path.exists(tool_path):
        raise ToolNotFoundError(name, [tool_path])
    return tool_path


def find_ar(ndk_path):
    # NDK r23 renamed <ndk_llvm_triple>-ar to llvm-ar
    return _find_llvm_tool(ndk_path, f"llvm-ar{EXECUTABLE_SUFFIX_EXE}")


def find_readelf(ndk_path):
    # NDK r23 renamed <ndk_llvm_triple>-readelf to llvm-readelf
    return _find_llvm_tool(ndk_path, f"llvm-readelf{EXECUTABLE_SUFFIX_EXE}")


def find_linker(ndk_path):
    # NDK r23 renamed <ndk_llvm_triple>-ld to ld
    return _find_llvm_tool(ndk_path, f"ld{EXECUTABLE_SUFFIX_EXE}")


def find_libunwind_dir(ndk_path, arch):
    """
    Returns dir to libunwind.a for the correct architecture
    e.g. ...llvm/prebuilt/linux-x86_64/lib/clang/14.0.6/lib/linux/i386
    """
    searched = []
    for lib_dir in ("lib", "lib64"):
        clang_dir = os.path.join(llvm_toolchain_root(ndk_path), lib_dir, "clang")
        if not os.path.isdir(clang_dir):
            searched.append(clang_dir)
            continue
        for clang_ver in sorted(os.listdir(clang_dir)):
            libunwind_dir = os.path.join(clang_dir, clang_ver, "lib", "linux", arch.clang_arch)
            if os.path.exists(os.path.join(libunwind_dir, "libunwind.a")):
                return libunwind_dir
            searched.append(libunwind_dir)
    raise ToolNotFoundError("libunwind.a", searched)


# =============================================================================
# Android SDK and JDK
# =============================================================================


def get_build_tools_path(sdk_path, build_tools_version):
    return os.path.join(sdk_path, "build-tools", build_tools_version)


def find_build_tool(sdk_path, build_tools_version, name, suffix=""):
    tool_path = os.path.join(get_build_tools_path(sdk_path, build_tools_version), name + suffix)
    if not os.path.exists(tool_path):
        raise ToolNotFoundError(name, [tool_path], "Install the Android SDK build-tools")
    return tool_path


def find_adb(sdk_path):
    adb_path = os.path.join(sdk_path, "platform-tools", "adb" + EXECUTABLE_SUFFIX_EXE)
    if not os.path.exists(adb_path):
        raise ToolNotFoundError("adb", [adb_path], "Install the Android SDK platform-tools")
    return adb_path


def find_java_executable(name):
    """
    Find an executable that is part of the Java SDK.

    Looks in PATH first, then in $JAVA_HOME/bin.
    """
    filename = name + EXECUTABLE_SUFFIX_EXE
    searched = []
    for path in os.environ.get("PATH", "").split(os.pathsep):
        if not path:
            continue
        filepath = os.path.join(path, filename)
        if os.path.isfile(filepath):
            return filepath
    searched.append("PATH")

    java_home = os.environ.get("JAVA_HOME")
    if java_home:
        filepath = os.path.join(java_home, "bin", filename)
        if os.path.exists(filepath):
            return filepath
        searched.append(os.path.join(java_home, "bin"))
    else:
        searched.append("JAVA_HOME (not set)")

    raise ToolNotFoundError(
        filename,
        searched,
        "Configure PATH or JAVA_HOME with the path to the JRE or JDK",
    )


def find_rt_jar():
    """
    Locate rt.jar from the class loading trace of `java -verbose`.

    Returns:
        str or None: rt.jar path, None for JDK 9+ which no longer ship it
    """
    java_path = find_java_executable("java")
    _, output = exec_command([java_path, "-verbose", "-version"])
    for line in output.splitlines():
        # [Opened /usr/lib/jvm/java-8-openjdk/jre/lib/rt.jar]
        if "Opened" in line and "rt.jar" in line:
            return line.strip()[8:-1]
    return None


# =============================================================================
# Build directories
# =============================================================================


def get_root_build_directory(target_dir, release):
    """
    Returns the directory in which all quadapk artifacts for the current
    debug/release configuration should be produced.
    """
    android_artifacts_dir = os.path.join(target_dir, "android-artifacts")
    return os.path.join(android_artifacts_dir, "release" if release else "debug")


def get_target_directory(root_build_dir, unit):
    """Returns the sub directory within the root build directory for the unit"""
    if unit.kind == UnitKind.BIN:
        return os.path.join(root_build_dir, "bin", unit.name)
    if unit.kind == UnitKind.EXAMPLE:
        return os.path.join(root_build_dir, "examples", unit.name)
    raise ValueError(f"Unexpected target kind: {unit.kind}")


# =============================================================================
# Library File Information Parsing
# =============================================================================

# ELF e_machine values
ELF_MACHINE_MAP = {
    0x03: "x86",
    0x3E: "x86_64",
    0x28: "arm",
    0xB7: "aarch64",
    0x08: "mips",
    0xF3: "riscv",
}


def _parse_elf_arch(data):
    """
    Parse ELF file to get architecture.

    Args:
        data: File bytes

    Returns:
        str: Architecture name or None
    """
    if len(data) < 20:
        return None

    # Check ELF magic
    if data[:4] != b'\x7fELF':
        return None

    # Get endianness
    endian = '<' if data[5] == 1 else '>'  # 1 = little, 2 = big

    # e_machine is at offset 18 (2 bytes)
    e_machine = struct.unpack(f'{endian}H', data[18:20])[0]

    return ELF_MACHINE_MAP.get(e_machine, f"unknown(0x{e_machine:X})")


def get_elf_arch(library_path):
    """Architecture of an ELF file on disk, None if it is not an ELF file"""
    try:
        with open(library_path, "rb") as f:
            return _parse_elf_arch(f.read(20))
    except OSError:
        return None
