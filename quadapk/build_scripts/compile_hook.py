#!/usr/bin/env python3
# -- coding: utf-8 --
#
# compile_hook.py
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
Rewrites the rustc invocations issued by cargo for one ABI.

Bin and example targets are compiled as shared libraries with the Rust glue
module appended to their sources, then linked against the NDK. Test builds are
skipped. Any other crate asking for a cdylib is downgraded to an rlib, and
everything else runs unchanged.
"""

import os
from enum import Enum
from typing import Callable, List, Optional, Tuple

from quadapk.build_scripts.dylib_resolver import (
    DylibResolver,
    dylib_path,
    libs_search_paths_from_args,
    list_android_dylibs,
    list_needed_dylibs,
)
from quadapk.build_scripts.targets import CompilationUnit, SharedLibrary, SharedLibraryMap, UnitKind
from quadapk.build_scripts.toolchain import ToolchainContext
from quadapk.utils.cmd.cmd_util import exec_streaming, run_tool_with_output
from quadapk.utils.errors import ArgumentRewriteError, ScratchFileError

GLUE_MODULE = "cargo_apk_glue_code"
JAVA_CLASS_PATH_TOKEN = "JAVA_CLASS_PATH"
SCRATCH_PREFIX = "__cargo_apk_"
LIBGCC_SHIM_DIR = "_libgcc_"

# rustc options whose value may be given as the following argument
OPTIONS_WITH_VALUE = {
    "-A", "-C", "-D", "-F", "-L", "-W", "-Z", "-l", "-o",
    "--allow", "--cap-lints", "--cfg", "--check-cfg", "--codegen", "--color",
    "--crate-name", "--crate-type", "--deny", "--diagnostic-width", "--edition",
    "--emit", "--env-set", "--error-format", "--explain", "--extern",
    "--forbid", "--json", "--out-dir", "--print", "--remap-path-prefix",
    "--sysroot", "--target", "--warn",
}


class Mode(Enum):
    BUILD = "build"
    TEST = "test"


class Action(Enum):
    SHARED_LIBRARY = "shared-library"
    STATIC_LIBRARY = "static-library"
    SKIP = "skip"


class RustcInvocation:
    """
    Typed view of a rustc command line.

    Arguments are kept in their original order so an invocation which is not
    rewritten serialises back to exactly what cargo passed. Options are
    recognised both as `--flag value` and `--flag=value`.
    """

    def __init__(self, program: str, args: List[str]):
        self.program = program
        self._args = list(args)
        self.extra_args: List[str] = []
        self.crate_name: Optional[str] = None
        self.out_dir: Optional[str] = None
        self.source: Optional[str] = None
        self._source_index: Optional[int] = None
        self.is_test = False
        self.prints: List[str] = []
        self.link_search: List[str] = []
        # option -> [(index of the token holding the value, "=" prefix or "")]
        self._values = {}

        i = 0
        while i < len(self._args):
            arg = self._args[i]
            option, value, index, prefix = None, None, i, ""
            if arg in OPTIONS_WITH_VALUE and i + 1 < len(self._args):
                option, value, index = arg, self._args[i + 1], i + 1
                i += 1
            elif arg.startswith("--") and "=" in arg and arg.split("=", 1)[0] in OPTIONS_WITH_VALUE:
                option, value = arg.split("=", 1)
                prefix = option + "="
            elif arg.startswith("-L") and len(arg) > 2:
                option, value, prefix = "-L", arg[2:], "-L"
            elif arg == "--test":
                self.is_test = True
            elif arg in ("-vV", "-V", "--version"):
                self.prints.append(arg)
            elif arg == "-" or (not arg.startswith("-") and self.source is None and arg.endswith(".rs")):
                self.source = arg
                self._source_index = i

            if option is not None:
                self._values.setdefault(option, []).append((index, prefix))
                if option == "--crate-name":
                    self.crate_name = value
                elif option == "--out-dir":
                    self.out_dir = value
                elif option == "--print":
                    self.prints.append(value)
                elif option == "-L":
                    self.link_search.append(value)
            i += 1

    @classmethod
    def parse(cls, argv: List[str]) -> "RustcInvocation":
        """`argv` is the wrapper's argument list: rustc path followed by its args"""
        if not argv:
            raise ValueError("missing rustc executable")
        return cls(argv[0], argv[1:])

    @property
    def args(self) -> List[str]:
        return self._args + self.extra_args

    @property
    def crate_types(self) -> List[str]:
        return [self._value(index, prefix) for index, prefix in self._values.get("--crate-type", [])]

    @property
    def is_query(self) -> bool:
        """Print queries and version probes are never rewritten"""
        return bool(self.prints) or self.source == "-"

    def _value(self, index, prefix):
        return self._args[index][len(prefix):]

    def replace_crate_type(self, old: str, new: str) -> bool:
        replaced = False
        for index, prefix in self._values.get("--crate-type", []):
            if self._value(index, prefix) == old:
                self._args[index] = prefix + new
                replaced = True
        return replaced

    def set_out_dir(self, out_dir: str):
        slots = self._values.get("--out-dir")
        if not slots:
            self._values["--out-dir"] = [(len(self._args) + 1, "")]
            self._args += ["--out-dir", out_dir]
        else:
            for index, prefix in slots:
                self._args[index] = prefix + out_dir
        self.out_dir = out_dir

    def replace_source_file(self, filename: str, new_filename: str) -> bool:
        """Swap the argument naming `filename`, keeping its directory part"""
        candidates = list(enumerate(self._args))
        if self._source_index is not None:
            candidates.insert(0, (self._source_index, self._args[self._source_index]))
        for i, arg in candidates:
            if arg.startswith("-"):
                continue
            if os.path.basename(arg) == filename:
                new_arg = os.path.join(os.path.dirname(arg), new_filename)
                self._args[i] = new_arg
                if self.source == arg:
                    self.source = new_arg
                return True
        return False

    def add_args(self, *args: str):
        self.extra_args.extend(args)

    def with_print_file_names(self) -> "RustcInvocation":
        query = RustcInvocation(self.program, self.args)
        query.add_args("--print", "file-names")
        return query

    def to_args(self) -> List[str]:
        return [self.program] + self.args


def classify(unit: Optional[CompilationUnit], mode: Mode) -> Action:
    """
    Decide how an invocation is handled.

    | unit kind     | mode  | action         |
    |---------------|-------|----------------|
    | BIN / EXAMPLE | build | shared-library |
    | any           | test  | skip           |
    | other         | build | static-library |
    """
    if mode == Mode.TEST:
        return Action.SKIP
    if unit is not None and unit.kind.is_primary:
        return Action.SHARED_LIBRARY
    return Action.STATIC_LIBRARY


def jni_mangle(package_name: str) -> str:
    """Mangle a java package name the way JNI expects in exported symbol names"""
    return package_name.replace("_", "_1").replace("-", "_1").replace(".", "_")


def glue_module(mod_inject: str, package_name: str) -> str:
    body = mod_inject.replace(JAVA_CLASS_PATH_TOKEN, f"Java_{jni_mangle(package_name)}")
    return f"mod {GLUE_MODULE} {{\n{body}\n}}"


def scratch_source_path(src_path) -> str:
    src_path = os.fspath(src_path)
    stem = os.path.splitext(os.path.basename(src_path))[0]
    return os.path.join(os.path.dirname(src_path), f"{SCRATCH_PREFIX}{stem}.tmp")


class ScratchSourceFile:
    """
    Temporary copy of a target source, removed when the block exits.

    Raises:
        ScratchFileError: the file cannot be created, or cannot be removed
            after a successful build
    """

    def __init__(self, path, content: str):
        self.path = os.fspath(path)
        self.content = content

    def __enter__(self):
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(self.content)
        except OSError as e:
            raise ScratchFileError(self.path, e) from e
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            # never hide the error raised inside the block
            if exc_type is None:
                raise ScratchFileError(self.path, e, operation="remove") from e
        return False


def write_libgcc_shim(build_path) -> str:
    """
    Newer NDKs ship libunwind instead of libgcc. Rust still links -lgcc, so
    provide a libgcc.a linker script forwarding to libunwind.
    """
    shim_dir = os.path.join(build_path, LIBGCC_SHIM_DIR)
    os.makedirs(shim_dir, exist_ok=True)
    with open(os.path.join(shim_dir, "libgcc.a"), "w") as f:
        f.write("INPUT(-lunwind)")
    return shim_dir


class CompileHook:
    """
    Args:
        context: ToolchainContext of the ABI being built
        on_stdout: Called with each stdout line of rustc
        on_stderr: Called with each stderr line of rustc and our notes
    """

    def __init__(
        self,
        context: ToolchainContext,
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None],
    ):
        self.context = context
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr

    def find_unit(self, invocation: RustcInvocation) -> Optional[CompilationUnit]:
        """
        Units are matched by source path. The crate name is only consulted
        when no source argument could be recognised, since a package's own
        lib crate shares the name of its bin.
        """
        if invocation.source:
            src = os.path.realpath(invocation.source)
            for unit, _ in self.context.units:
                if unit.src_path == src:
                    return unit
            return None
        if invocation.crate_name and "bin" in invocation.crate_types:
            for unit, _ in self.context.units:
                if unit.kind == UnitKind.BIN and unit.name.replace("-", "_") == invocation.crate_name:
                    return unit
        return None

    def execute(self, invocation: RustcInvocation) -> Tuple[int, SharedLibraryMap]:
        """
        Run one rustc invocation.

        Returns:
            (exit code, shared libraries to package for the compiled unit)

        Raises:
            ArgumentRewriteError, ScratchFileError, ExternalToolError
        """
        if invocation.is_query:
            return self._run(invocation), SharedLibraryMap()

        unit = self.find_unit(invocation)
        mode = Mode.TEST if invocation.is_test else Mode.BUILD
        action = classify(unit, mode)

        if action == Action.SKIP:
            name = unit.name if unit is not None else invocation.crate_name
            self.on_stderr(f"Ignoring CompileMode::Test for target: {name}")
            return 0, SharedLibraryMap()
        if action == Action.SHARED_LIBRARY:
            return self.build_shared_library(invocation, unit)

        invocation.replace_crate_type("cdylib", "rlib")
        return self._run(invocation), SharedLibraryMap()

    def _run(self, invocation: RustcInvocation) -> int:
        return exec_streaming(invocation.to_args(), self.on_stdout, self.on_stderr)

    def link_args(self, build_path) -> List[str]:
        ctx = self.context
        args = [
            f"-Clinker={ctx.linker}",
            "-Clinker-flavor=ld",
            f"-Clink-arg=--sysroot={ctx.sysroot}",
            f"-Clink-arg=-L{ctx.platform_lib_dir}",
            f"-Clink-arg=-L{ctx.lib_dir}",
            f"-Clink-arg=-L{write_libgcc_shim(build_path)}",
            f"-Clink-arg=-L{ctx.libunwind_dir}",
        ]
        if ctx.strip:
            args.append("-Clink-arg=-strip-all")
        args.append("-Crelocation-model=pic")
        return args

    def build_shared_library(self, invocation: RustcInvocation, unit: CompilationUnit):
        ctx = self.context
        package_name = ctx.package_name(unit) or f"rust.{unit.name}"

        with open(unit.src_path, "r", encoding="utf-8") as f:
            original_src = f.read()
        with open(ctx.mod_inject_path, "r", encoding="utf-8") as f:
            mod_inject = f.read()

        build_path = ctx.build_path
        os.makedirs(build_path, exist_ok=True)

        scratch_path = scratch_source_path(unit.src_path)
        content = f"{original_src}\n{glue_module(mod_inject, package_name)}\n"
        with ScratchSourceFile(scratch_path, content):
            if not invocation.replace_source_file(os.path.basename(unit.src_path), os.path.basename(scratch_path)):
                raise ArgumentRewriteError(unit.name, "Unable to replace source argument")

            invocation.replace_crate_type("bin", "cdylib")
            invocation.set_out_dir(build_path)
            invocation.add_args(*self.link_args(build_path))

            code = self._run(invocation)
            if code != 0:
                return code, SharedLibraryMap()

            # Determine the name of the shared library rustc just produced
            stdout = run_tool_with_output(invocation.with_print_file_names().to_args())
        lines = stdout.splitlines()
        if not lines:
            raise ArgumentRewriteError(unit.name, "rustc reported no output file names")
        library_path = os.path.join(build_path, lines[0].strip())

        libraries = [SharedLibrary(ctx.abi, library_path, f"lib{unit.name}.so")]

        search_paths = libs_search_paths_from_args(invocation.args)
        search_paths.append(ctx.lib_dir)
        search_paths.append(os.path.join(ctx.build_target_dir, "deps"))
        search_paths.extend(dylib_path())

        resolver = DylibResolver(
            ctx.abi,
            search_paths,
            list_android_dylibs(ctx.platform_lib_dir),
            lambda path: list_needed_dylibs(ctx.readelf, path),
            strict=ctx.strict_dylibs,
            warn=self.on_stderr,
        )
        libraries.extend(resolver.resolve(library_path))

        shared_libraries = SharedLibraryMap()
        for library in libraries:
            shared_libraries.insert(unit, library)
        return 0, shared_libraries
