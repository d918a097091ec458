#!/usr/bin/env python3
# -- coding: utf-8 --
#
# toolchain.py
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
Per-ABI toolchain context.

Everything the compile hook needs to know about one ABI build lives in an
immutable ToolchainContext. The orchestrator serialises it to JSON and hands
its location to the rustc wrapper through the child environment, so several
ABIs can be built at the same time without touching os.environ.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

from quadapk.build_scripts import build_utils
from quadapk.build_scripts.targets import BuildArchitecture, CompilationUnit

CONTEXT_ENV_VAR = "QUADAPK_CONTEXT"
CONTEXT_FILE = "quadapk.context.json"
RECORDS_FILE = "shared_libraries.jsonl"
CMAKE_TOOLCHAIN_FILE = "quadapk.toolchain.cmake"


@dataclass(frozen=True)
class ToolchainContext:
    abi: BuildArchitecture
    build_target_dir: str
    clang: str
    clang_cpp: str
    ar: str
    linker: str
    readelf: str
    sysroot: str
    # platform libraries for the configured min sdk version (usr/lib/<triple>/<api>)
    platform_lib_dir: str
    # version independent libraries like libc++_shared.so (usr/lib/<triple>)
    lib_dir: str
    libunwind_dir: str
    cmake_toolchain: str
    make_program: str
    mod_inject_path: str
    release: bool = False
    nostrip: bool = False
    strict_dylibs: bool = False
    # (unit, package name) for every bin / example that may be compiled
    units: Tuple[Tuple[CompilationUnit, str], ...] = field(default_factory=tuple)

    @property
    def build_path(self) -> str:
        """Output directory of the shared libraries built for bin/example targets"""
        return os.path.join(self.build_target_dir, "build")

    @property
    def records_path(self) -> str:
        return os.path.join(self.build_target_dir, RECORDS_FILE)

    @property
    def context_path(self) -> str:
        return os.path.join(self.build_target_dir, CONTEXT_FILE)

    @property
    def strip(self) -> bool:
        return self.release and not self.nostrip

    def package_name(self, unit: CompilationUnit) -> Optional[str]:
        for known, package_name in self.units:
            if known == unit:
                return package_name
        return None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["abi"] = self.abi.rust_triple
        data["units"] = [[unit.to_dict(), package_name] for unit, package_name in self.units]
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "ToolchainContext":
        data = dict(data)
        data["abi"] = BuildArchitecture(data["abi"])
        data["units"] = tuple(
            (CompilationUnit.from_dict(unit), package_name) for unit, package_name in data.get("units", [])
        )
        return cls(**data)

    def write(self) -> str:
        with open(self.context_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        return self.context_path

    @classmethod
    def read(cls, path) -> "ToolchainContext":
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))

    def env(self, base_env: Dict[str, str], wrapper: str) -> Dict[str, str]:
        """
        Environment of the cargo process building this ABI.

        Sets the variables read by the cc and cmake crates, plus the rustc
        wrapper and the location of this context.
        """
        env = dict(base_env)
        triple = self.abi.rust_triple.replace("-", "_")
        env.update({
            # Set environment variables needed for use with the cc crate
            "CC": self.clang,
            "CXX": self.clang_cpp,
            "AR": self.ar,
            f"CC_{triple}": self.clang,
            f"CXX_{triple}": self.clang_cpp,
            f"AR_{triple}": self.ar,
            # Use libc++. It is current default C++ runtime
            "CXXSTDLIB": "c++",
            "CMAKE_TOOLCHAIN_FILE": self.cmake_toolchain,
            "CMAKE_GENERATOR": "Unix Makefiles",
            "CMAKE_MAKE_PROGRAM": self.make_program,
            "RUSTC_WRAPPER": wrapper,
            CONTEXT_ENV_VAR: self.context_path,
        })
        return env


def write_cmake_toolchain(ndk_path, min_sdk_version, build_target_dir, abi: BuildArchitecture) -> str:
    """
    Write a CMake toolchain which will remove references to the rustc build
    target before including the NDK provided toolchain. The NDK provided
    android toolchain will set the target appropriately.

    Returns:
        str: the path to the generated toolchain file
    """
    toolchain_path = os.path.join(build_target_dir, CMAKE_TOOLCHAIN_FILE)
    # Use forward slashes even on windows to avoid path escaping issues.
    ndk = str(ndk_path).replace("\\", "/")
    with open(toolchain_path, "w") as f:
        f.write(
            f"set(ANDROID_PLATFORM android-{min_sdk_version})\n"
            f"set(ANDROID_ABI {abi.android_abi})\n"
            f'string(REPLACE "--target={abi.rust_triple}" "" CMAKE_C_FLAGS "${{CMAKE_C_FLAGS}}")\n'
            f'string(REPLACE "--target={abi.rust_triple}" "" CMAKE_CXX_FLAGS "${{CMAKE_CXX_FLAGS}}")\n'
            "unset(CMAKE_C_COMPILER CACHE)\n"
            "unset(CMAKE_CXX_COMPILER CACHE)\n"
            f'include("{ndk}/build/cmake/android.toolchain.cmake")\n'
        )
    return toolchain_path


def create_toolchain_context(config, abi, root_build_dir, mod_inject_path, units=(), nostrip=False, strict_dylibs=False):
    """
    Resolve every toolchain path for one ABI.

    Args:
        config: AndroidConfig
        abi: BuildArchitecture to build
        root_build_dir: Root of the android artifacts directory
        mod_inject_path: Rust glue module appended to bin/example sources
        units: (CompilationUnit, package name) pairs
        nostrip: Keep debug symbols even in release builds
        strict_dylibs: Fail when a needed shared library is not found

    Raises:
        ToolNotFoundError: a toolchain file is missing
    """
    # Directory that will contain files specific to this build target
    build_target_dir = os.path.join(root_build_dir, abi.android_abi)
    os.makedirs(build_target_dir, exist_ok=True)

    ndk_path = config.ndk_path
    tool_root = build_utils.llvm_toolchain_root(ndk_path)
    sysroot = os.path.join(tool_root, "sysroot")
    lib_dir = os.path.join(sysroot, "usr", "lib", abi.ndk_triple)
    platform_lib_dir = build_utils.find_ndk_path(
        config.min_sdk_version,
        lambda p: os.path.join(lib_dir, str(p)),
        f"NDK platform libraries for {abi.android_abi}",
    )

    return ToolchainContext(
        abi=abi,
        build_target_dir=build_target_dir,
        clang=build_utils.find_clang(ndk_path, abi, config.min_sdk_version),
        clang_cpp=build_utils.find_clang_cpp(ndk_path, abi, config.min_sdk_version),
        ar=build_utils.find_ar(ndk_path),
        linker=build_utils.find_linker(ndk_path),
        readelf=build_utils.find_readelf(ndk_path),
        sysroot=sysroot,
        platform_lib_dir=platform_lib_dir,
        lib_dir=lib_dir,
        libunwind_dir=build_utils.find_libunwind_dir(ndk_path, abi),
        cmake_toolchain=write_cmake_toolchain(ndk_path, config.min_sdk_version, build_target_dir, abi),
        make_program=build_utils.make_path(ndk_path),
        mod_inject_path=mod_inject_path,
        release=config.release,
        nostrip=nostrip,
        strict_dylibs=strict_dylibs,
        units=tuple(units),
    )
