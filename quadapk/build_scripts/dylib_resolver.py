#!/usr/bin/env python3
# -- coding: utf-8 --
#
# dylib_resolver.py
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
Transitive shared library resolution.

Starting from the library built for a bin/example target, every `NEEDED`
entry reported by llvm-readelf is looked up in the library search paths and
followed recursively. Libraries already provided by the Android platform image
are never packaged. A library which cannot be found produces a warning and the
build continues, unless strict resolution is requested.
"""

import os
import sys
from collections import OrderedDict
from typing import Callable, Iterable, List, Optional

from quadapk.build_scripts.build_utils import get_elf_arch, system_is_macos, system_is_windows
from quadapk.build_scripts.targets import BuildArchitecture, SharedLibrary
from quadapk.utils.cmd.cmd_util import run_tool_with_output
from quadapk.utils.errors import MissingTransitiveLibraryError

NEEDED_TAG = "(NEEDED)"
NEEDED_PREFIX = "Shared library: ["


def parse_needed(readelf_output: str) -> List[str]:
    """Library names of the NEEDED entries in `readelf -d` output"""
    needed = []
    for line in readelf_output.splitlines():
        if NEEDED_TAG not in line or NEEDED_PREFIX not in line:
            continue
        lib = line.split(NEEDED_PREFIX)[-1].split("]")[0]
        if lib and lib not in needed:
            needed.append(lib)
    return needed


def list_needed_dylibs(readelf_path, library_path) -> List[str]:
    """List all linked shared libraries"""
    return parse_needed(run_tool_with_output([readelf_path, "-d", library_path]))


def list_android_dylibs(version_specific_libraries_path) -> List[str]:
    """List the shared libraries provided by the Android platform image"""
    dylibs = []
    for entry in sorted(os.listdir(version_specific_libraries_path)):
        if entry.endswith(".so") and os.path.isfile(os.path.join(version_specific_libraries_path, entry)):
            dylibs.append(entry)
    return dylibs


def libs_search_paths_from_args(args: Iterable[str]) -> List[str]:
    """Get native library search paths from rustc args (`-L native=...`, `-L dependency=...`)"""
    paths = []
    is_search_path = False
    for arg in args:
        if is_search_path:
            is_search_path = False
            if arg.startswith("native=") or arg.startswith("dependency="):
                paths.append(arg.split("=")[-1])
        elif arg == "-L":
            is_search_path = True
        elif arg.startswith("-Lnative=") or arg.startswith("-Ldependency="):
            paths.append(arg.split("=")[-1])
    return paths


def dylib_path(environ=None) -> List[str]:
    """Ambient dynamic library search paths of the host"""
    environ = os.environ if environ is None else environ
    if system_is_windows():
        var = "PATH"
    elif system_is_macos():
        var = "DYLD_FALLBACK_LIBRARY_PATH"
    else:
        var = "LD_LIBRARY_PATH"
    return [p for p in environ.get(var, "").split(os.pathsep) if p]


class DylibResolver:
    """
    Computes the closure of shared libraries needed by a primary library.

    Args:
        abi: ABI the libraries are built for
        search_paths: Ordered directories in which NEEDED names are looked up
        platform_dylibs: File names provided by the platform image
        list_needed: Callable returning the NEEDED names of a library path
        strict: Raise instead of warning when a library cannot be found
        warn: Callable receiving warning lines
    """

    def __init__(
        self,
        abi: BuildArchitecture,
        search_paths: List[str],
        platform_dylibs: Iterable[str],
        list_needed: Callable[[str], List[str]],
        strict: bool = False,
        warn: Optional[Callable[[str], None]] = None,
    ):
        self.abi = abi
        self.search_paths = list(search_paths)
        self.platform_dylibs = list(platform_dylibs)
        self.list_needed = list_needed
        self.strict = strict
        self.warn = warn or (lambda line: print(line, file=sys.stderr))

    def find_library_path(self, library: str) -> Optional[str]:
        """First search path holding a file named `library` built for our ABI"""
        for path in self.search_paths:
            lib_path = os.path.join(path, library)
            if not os.path.isfile(lib_path):
                continue
            arch = get_elf_arch(lib_path)
            if arch is not None and arch != self.abi.elf_machine:
                # e.g. the host's copy found through LD_LIBRARY_PATH
                continue
            return lib_path
        return None

    def resolve(self, library_path: str) -> List[SharedLibrary]:
        # The map of [library]: is_processed
        # Android platform libraries are seeded as processed to avoid packaging them
        found_dylibs = OrderedDict((dylib, True) for dylib in self.platform_dylibs)

        for dylib in self.list_needed(library_path):
            found_dylibs.setdefault(dylib, False)

        resolved = []
        while True:
            dylib = next((name for name, processed in found_dylibs.items() if not processed), None)
            if dylib is None:
                break
            found_dylibs[dylib] = True

            path = self.find_library_path(dylib)
            if path is None:
                if self.strict:
                    raise MissingTransitiveLibraryError(dylib, self.search_paths)
                self.warn(f'Warning: Shared library "{dylib}" not found.')
                continue

            for needed in self.list_needed(path):
                found_dylibs.setdefault(needed, False)
            resolved.append(SharedLibrary(self.abi, path, dylib))

        return resolved
