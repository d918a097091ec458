#!/usr/bin/env python3
# -- coding: utf-8 --
#
# targets.py
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
Build targets and the records passed between build stages.

- BuildArchitecture: the four Android ABIs and the names each tool uses for them
- CompilationUnit: a cargo bin or example target
- SharedLibrary / SharedLibraryMap: .so files to embed, per unit and ABI
- PackageResult: the APK produced for each unit
"""

import os
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Tuple

from quadapk.utils.errors import ConfigError


class BuildArchitecture(Enum):
    """Android ABI, keyed by the rust target triple"""

    ARMV7 = "armv7-linux-androideabi"
    AARCH64 = "aarch64-linux-android"
    I686 = "i686-linux-android"
    X86_64 = "x86_64-linux-android"

    @property
    def rust_triple(self) -> str:
        return self.value

    @property
    def android_abi(self) -> str:
        return _ANDROID_ABI[self]

    @property
    def ndk_triple(self) -> str:
        """Directory name of the sysroot libraries (usr/lib/<ndk_triple>)"""
        return _NDK_TRIPLE[self]

    @property
    def ndk_llvm_triple(self) -> str:
        """Prefix of the NDK clang wrapper scripts"""
        return _NDK_LLVM_TRIPLE[self]

    @property
    def clang_arch(self) -> str:
        """Directory name used for the compiler runtime (libunwind.a)"""
        return _CLANG_ARCH[self]

    @property
    def elf_machine(self) -> str:
        """Machine name reported by the ELF header of binaries for this ABI"""
        return _ELF_MACHINE[self]

    @classmethod
    def parse(cls, name: str) -> "BuildArchitecture":
        """Accept either a rust triple or an Android ABI name"""
        name = name.strip()
        for arch in cls:
            if name in (arch.rust_triple, arch.android_abi):
                return arch
        known = ", ".join(a.android_abi for a in cls)
        raise ConfigError(f"Unknown build target '{name}', expected one of: {known}")

    @classmethod
    def defaults(cls) -> List["BuildArchitecture"]:
        return [cls.ARMV7, cls.AARCH64, cls.I686, cls.X86_64]


_ANDROID_ABI = {
    BuildArchitecture.ARMV7: "armeabi-v7a",
    BuildArchitecture.AARCH64: "arm64-v8a",
    BuildArchitecture.I686: "x86",
    BuildArchitecture.X86_64: "x86_64",
}

_NDK_TRIPLE = {
    BuildArchitecture.ARMV7: "arm-linux-androideabi",
    BuildArchitecture.AARCH64: "aarch64-linux-android",
    BuildArchitecture.I686: "i686-linux-android",
    BuildArchitecture.X86_64: "x86_64-linux-android",
}

_NDK_LLVM_TRIPLE = {
    BuildArchitecture.ARMV7: "armv7a-linux-androideabi",
    BuildArchitecture.AARCH64: "aarch64-linux-android",
    BuildArchitecture.I686: "i686-linux-android",
    BuildArchitecture.X86_64: "x86_64-linux-android",
}

_CLANG_ARCH = {
    BuildArchitecture.ARMV7: "arm",
    BuildArchitecture.AARCH64: "aarch64",
    BuildArchitecture.I686: "i386",
    BuildArchitecture.X86_64: "x86_64",
}

_ELF_MACHINE = {
    BuildArchitecture.ARMV7: "arm",
    BuildArchitecture.AARCH64: "aarch64",
    BuildArchitecture.I686: "x86",
    BuildArchitecture.X86_64: "x86_64",
}


class UnitKind(Enum):
    BIN = "bin"
    EXAMPLE = "example"
    OTHER = "other"

    @classmethod
    def from_cargo_kinds(cls, kinds: Iterable[str]) -> "UnitKind":
        """Map the `kind` list of a `cargo metadata` target"""
        kinds = list(kinds)
        if "bin" in kinds:
            return cls.BIN
        if "example" in kinds:
            return cls.EXAMPLE
        return cls.OTHER

    @property
    def is_primary(self) -> bool:
        return self in (UnitKind.BIN, UnitKind.EXAMPLE)


@dataclass(frozen=True)
class CompilationUnit:
    kind: UnitKind
    name: str
    src_path: str

    def to_dict(self) -> Dict:
        return {"kind": self.kind.value, "name": self.name, "src_path": self.src_path}

    @classmethod
    def from_dict(cls, data: Dict) -> "CompilationUnit":
        return cls(UnitKind(data["kind"]), data["name"], data["src_path"])


@dataclass(frozen=True)
class SharedLibrary:
    abi: BuildArchitecture
    path: str
    filename: str

    @property
    def apk_path(self) -> str:
        """Location inside the APK. aapt only accepts forward slashes here"""
        return "/".join(["lib", self.abi.android_abi, self.filename])

    def to_dict(self) -> Dict:
        return {"abi": self.abi.rust_triple, "path": self.path, "filename": self.filename}

    @classmethod
    def from_dict(cls, data: Dict) -> "SharedLibrary":
        return cls(BuildArchitecture(data["abi"]), os.fspath(data["path"]), data["filename"])


class SharedLibraryMap:
    """
    Ordered multi-map from CompilationUnit to the shared libraries it needs.

    A unit never holds two libraries with the same (abi, filename); later
    insertions of such a pair are ignored.
    """

    def __init__(self):
        self._libraries: "OrderedDict[CompilationUnit, List[SharedLibrary]]" = OrderedDict()

    def insert(self, unit: CompilationUnit, library: SharedLibrary) -> bool:
        libraries = self._libraries.setdefault(unit, [])
        for existing in libraries:
            if existing.abi == library.abi and existing.filename == library.filename:
                return False
        libraries.append(library)
        return True

    def merge(self, other: "SharedLibraryMap"):
        for unit, libraries in other.items():
            for library in libraries:
                self.insert(unit, library)

    def get(self, unit: CompilationUnit) -> List[SharedLibrary]:
        return list(self._libraries.get(unit, []))

    def units(self) -> List[CompilationUnit]:
        return list(self._libraries.keys())

    def items(self) -> Iterator[Tuple[CompilationUnit, List[SharedLibrary]]]:
        for unit, libraries in self._libraries.items():
            yield unit, list(libraries)

    def __len__(self):
        return len(self._libraries)

    def __contains__(self, unit):
        return unit in self._libraries

    def __repr__(self):
        return f"SharedLibraryMap({dict(self._libraries)!r})"


class PackageResult:
    """(unit kind, unit name) -> path of the aligned and signed APK"""

    def __init__(self):
        self._apks: Dict[Tuple[UnitKind, str], str] = OrderedDict()

    def add(self, unit: CompilationUnit, apk_path):
        self._apks[(unit.kind, unit.name)] = os.fspath(apk_path)

    def freeze(self):
        return MappingProxyType(self._apks)
