#!/usr/bin/env python3
"""
Tests for the rustc invocation hook.

Run with: python3 -m pytest quadapk/build_scripts/test_compile_hook.py
"""

import os
import tempfile
import unittest
from unittest.mock import patch

from quadapk.build_scripts.compile_hook import (
    Action,
    CompileHook,
    Mode,
    RustcInvocation,
    ScratchSourceFile,
    classify,
    glue_module,
    jni_mangle,
    scratch_source_path,
)
from quadapk.build_scripts.targets import BuildArchitecture, CompilationUnit, SharedLibrary, UnitKind
from quadapk.build_scripts.toolchain import ToolchainContext
from quadapk.utils.errors import ArgumentRewriteError, ScratchFileError


def make_context(root, units=(), release=False, nostrip=False):
    platform_dir = os.path.join(root, "sysroot", "usr", "lib", "aarch64-linux-android", "21")
    lib_dir = os.path.dirname(platform_dir)
    os.makedirs(platform_dir)
    for name in ("libc.so", "liblog.so", "libandroid.so"):
        open(os.path.join(platform_dir, name), "w").close()
    open(os.path.join(lib_dir, "libc++_shared.so"), "w").close()

    mod_inject = os.path.join(root, "mod_inject.rs")
    with open(mod_inject, "w") as f:
        f.write("#[no_mangle]\npub extern \"C\" fn JAVA_CLASS_PATH_QuadNative_surfaceOnCreate() {}\n")

    build_target_dir = os.path.join(root, "build", "arm64-v8a")
    os.makedirs(build_target_dir)
    return ToolchainContext(
        abi=BuildArchitecture.AARCH64,
        build_target_dir=build_target_dir,
        clang="/ndk/bin/aarch64-linux-android21-clang",
        clang_cpp="/ndk/bin/aarch64-linux-android21-clang++",
        ar="/ndk/bin/llvm-ar",
        linker="/ndk/bin/ld",
        readelf="/ndk/bin/llvm-readelf",
        sysroot=os.path.join(root, "sysroot"),
        platform_lib_dir=platform_dir,
        lib_dir=lib_dir,
        libunwind_dir="/ndk/lib/clang/17/lib/linux/aarch64",
        cmake_toolchain=os.path.join(build_target_dir, "quadapk.toolchain.cmake"),
        make_program="/ndk/prebuilt/bin/make",
        mod_inject_path=mod_inject,
        release=release,
        nostrip=nostrip,
        units=tuple(units),
    )


class TestRustcInvocation(unittest.TestCase):
    """Test parsing and rewriting of rustc command lines."""

    ARGS = [
        "/home/u/.rustup/bin/rustc",
        "--crate-name", "my_game",
        "--edition=2021",
        "src/main.rs",
        "--crate-type", "bin",
        "--emit=dep-info,link",
        "-C", "opt-level=3",
        "--out-dir", "/t/deps",
        "-L", "dependency=/t/deps",
        "-Lnative=/t/build/out",
        "--target", "aarch64-linux-android",
    ]

    def test_parse_fields(self):
        """Test the typed fields extracted from the command line."""
        inv = RustcInvocation.parse(self.ARGS)

        self.assertEqual(inv.program, "/home/u/.rustup/bin/rustc")
        self.assertEqual(inv.crate_name, "my_game")
        self.assertEqual(inv.crate_types, ["bin"])
        self.assertEqual(inv.source, "src/main.rs")
        self.assertEqual(inv.out_dir, "/t/deps")
        self.assertEqual(inv.link_search, ["dependency=/t/deps", "native=/t/build/out"])
        self.assertFalse(inv.is_test)
        self.assertFalse(inv.is_query)

    def test_unmodified_serialises_identically(self):
        """Test that an untouched invocation passes through byte for byte."""
        self.assertEqual(RustcInvocation.parse(self.ARGS).to_args(), self.ARGS)

    def test_equals_form(self):
        """Test --flag=value options are understood and rewritten in place."""
        inv = RustcInvocation.parse(["rustc", "--crate-type=cdylib", "--out-dir=/a", "lib.rs"])

        self.assertEqual(inv.crate_types, ["cdylib"])
        self.assertTrue(inv.replace_crate_type("cdylib", "rlib"))
        inv.set_out_dir("/b")
        self.assertEqual(inv.to_args(), ["rustc", "--crate-type=rlib", "--out-dir=/b", "lib.rs"])

    def test_queries(self):
        """Test that print queries and version probes are detected."""
        self.assertTrue(RustcInvocation.parse(["rustc", "-vV"]).is_query)
        self.assertTrue(
            RustcInvocation.parse(["rustc", "-", "--crate-name", "___", "--print=file-names"]).is_query
        )
        self.assertTrue(RustcInvocation.parse(["rustc", "--print", "sysroot"]).is_query)

    def test_test_flag(self):
        """Test that --test marks the invocation as a test build."""
        self.assertTrue(RustcInvocation.parse(["rustc", "--test", "src/main.rs"]).is_test)

    def test_replace_source_keeps_directory(self):
        """Test that the source is matched by file name and keeps its directory."""
        inv = RustcInvocation.parse(self.ARGS)

        self.assertTrue(inv.replace_source_file("main.rs", "__cargo_apk_main.tmp"))
        self.assertIn(os.path.join("src", "__cargo_apk_main.tmp"), inv.to_args())
        self.assertNotIn("src/main.rs", inv.to_args())

    def test_replace_source_missing(self):
        """Test that a missing source argument is reported."""
        inv = RustcInvocation.parse(self.ARGS)
        self.assertFalse(inv.replace_source_file("game.rs", "__cargo_apk_game.tmp"))

    def test_print_file_names_query(self):
        """Test the file name query appends to a copy."""
        inv = RustcInvocation.parse(["rustc", "src/main.rs"])
        query = inv.with_print_file_names()

        self.assertEqual(query.to_args(), ["rustc", "src/main.rs", "--print", "file-names"])
        self.assertEqual(inv.to_args(), ["rustc", "src/main.rs"])


class TestClassification(unittest.TestCase):
    """Test the (unit kind, mode) -> action table."""

    def test_table(self):
        bin_unit = CompilationUnit(UnitKind.BIN, "game", "/p/src/main.rs")
        example = CompilationUnit(UnitKind.EXAMPLE, "demo", "/p/examples/demo.rs")
        other = CompilationUnit(UnitKind.OTHER, "dep", "/p/src/lib.rs")

        cases = [
            (bin_unit, Mode.BUILD, Action.SHARED_LIBRARY),
            (example, Mode.BUILD, Action.SHARED_LIBRARY),
            (bin_unit, Mode.TEST, Action.SKIP),
            (example, Mode.TEST, Action.SKIP),
            (other, Mode.BUILD, Action.STATIC_LIBRARY),
            (None, Mode.BUILD, Action.STATIC_LIBRARY),
            (None, Mode.TEST, Action.SKIP),
        ]
        for unit, mode, expected in cases:
            with self.subTest(unit=unit, mode=mode):
                self.assertEqual(classify(unit, mode), expected)


class TestGlueCode(unittest.TestCase):
    """Test the rust glue module generation."""

    def test_jni_mangle(self):
        self.assertEqual(jni_mangle("rust.my_game"), "rust_my_1game")
        self.assertEqual(jni_mangle("com.example.my-app"), "com_example_my_1app")

    def test_glue_module(self):
        module = glue_module("fn JAVA_CLASS_PATH_QuadNative_init() {}", "rust.my_game")

        self.assertTrue(module.startswith("mod cargo_apk_glue_code {"))
        self.assertIn("fn Java_rust_my_1game_QuadNative_init() {}", module)
        self.assertTrue(module.endswith("}"))

    def test_scratch_source_path(self):
        self.assertEqual(
            scratch_source_path(os.path.join("a", "src", "main.rs")),
            os.path.join("a", "src", "__cargo_apk_main.tmp"),
        )


class TestScratchSourceFile(unittest.TestCase):
    """Test that the scratch file never outlives its block."""

    def test_removed_after_block(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "__cargo_apk_main.tmp")
            with ScratchSourceFile(path, "fn main() {}"):
                self.assertTrue(os.path.exists(path))
            self.assertFalse(os.path.exists(path))

    def test_removed_on_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "__cargo_apk_main.tmp")
            with self.assertRaises(RuntimeError):
                with ScratchSourceFile(path, "fn main() {}"):
                    raise RuntimeError("compile failed")
            self.assertFalse(os.path.exists(path))

    def test_unwritable_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "missing", "__cargo_apk_main.tmp")
            with self.assertRaises(ScratchFileError) as cm:
                with ScratchSourceFile(path, "fn main() {}"):
                    pass
            self.assertIn("Source directory must be writable", str(cm.exception))
            self.assertIn("Unable to create temporary source file", str(cm.exception))

    def test_removal_failure_names_operation(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "__cargo_apk_main.tmp")
            with patch("quadapk.build_scripts.compile_hook.os.remove", side_effect=PermissionError("denied")):
                with self.assertRaises(ScratchFileError) as cm:
                    with ScratchSourceFile(path, "fn main() {}"):
                        pass
            self.assertEqual(cm.exception.operation, "remove")
            self.assertIn("Unable to remove temporary source file", str(cm.exception))


class TestCompileHook(unittest.TestCase):
    """Test CompileHook.execute with rustc replaced by mocks."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = os.path.realpath(self._tmp.name)
        src_dir = os.path.join(self.root, "project", "src")
        os.makedirs(src_dir)
        self.src_path = os.path.join(src_dir, "main.rs")
        with open(self.src_path, "w") as f:
            f.write("fn main() {}\n")
        self.unit = CompilationUnit(UnitKind.BIN, "my-game", self.src_path)
        self.context = make_context(self.root, units=[(self.unit, "rust.my_game")], release=True)
        self.stderr = []
        self.hook = CompileHook(self.context, on_stdout=lambda line: None, on_stderr=self.stderr.append)

    def tearDown(self):
        self._tmp.cleanup()

    def _invocation(self, *extra, source=None):
        return RustcInvocation.parse(
            ["rustc", "--crate-name", "my_game", source or self.src_path, "--crate-type", "bin"] + list(extra)
        )

    @patch("quadapk.build_scripts.compile_hook.exec_streaming")
    def test_test_mode_skipped(self, mock_exec):
        """Test that test builds are not executed."""
        code, libraries = self.hook.execute(self._invocation("--test"))

        self.assertEqual(code, 0)
        self.assertEqual(len(libraries), 0)
        mock_exec.assert_not_called()
        self.assertEqual(self.stderr, ["Ignoring CompileMode::Test for target: my-game"])

    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_dependency_cdylib_becomes_rlib(self, mock_exec):
        """Test that other crates never produce a cdylib."""
        inv = RustcInvocation.parse(["rustc", "--crate-name", "dep", "/dep/src/lib.rs", "--crate-type", "cdylib"])
        code, libraries = self.hook.execute(inv)

        self.assertEqual(code, 0)
        self.assertEqual(len(libraries), 0)
        args = mock_exec.call_args[0][0]
        self.assertEqual(args, ["rustc", "--crate-name", "dep", "/dep/src/lib.rs", "--crate-type", "rlib"])

    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_query_passes_through(self, mock_exec):
        inv = RustcInvocation.parse(["rustc", "-vV"])
        self.hook.execute(inv)
        self.assertEqual(mock_exec.call_args[0][0], ["rustc", "-vV"])

    @patch("quadapk.build_scripts.compile_hook.list_needed_dylibs")
    @patch("quadapk.build_scripts.compile_hook.run_tool_with_output", return_value="libmy_game.so\n")
    @patch("quadapk.build_scripts.compile_hook.exec_streaming")
    def test_primary_unit(self, mock_exec, mock_query, mock_needed):
        """Test the full rewrite of a bin target and its dependency closure."""
        scratch_path = scratch_source_path(self.src_path)
        seen = {}

        def fake_rustc(args, on_stdout, on_stderr):
            seen["args"] = list(args)
            with open(scratch_path) as f:
                seen["source"] = f.read()
            return 0

        mock_exec.side_effect = fake_rustc
        needed = {
            "libmy_game.so": ["libc++_shared.so", "liblog.so", "libc.so"],
            "libc++_shared.so": ["libc.so"],
        }
        mock_needed.side_effect = lambda readelf, path: needed.get(os.path.basename(path), [])

        code, libraries = self.hook.execute(self._invocation())

        self.assertEqual(code, 0)
        args = seen["args"]
        self.assertIn(scratch_path, args)
        self.assertNotIn(self.src_path, args)
        self.assertIn("cdylib", args)
        self.assertNotIn("bin", args)
        self.assertEqual(args[args.index("--out-dir") + 1], self.context.build_path)
        self.assertIn("-Clinker=/ndk/bin/ld", args)
        self.assertIn("-Clinker-flavor=ld", args)
        self.assertIn("-Clink-arg=-strip-all", args)
        self.assertEqual(args[-1], "-Crelocation-model=pic")
        self.assertIn("mod cargo_apk_glue_code {", seen["source"])
        self.assertIn("Java_rust_my_1game_QuadNative_surfaceOnCreate", seen["source"])

        # the scratch file is gone once the build finished
        self.assertFalse(os.path.exists(scratch_path))

        # the file name query runs on the rewritten command line
        query = mock_query.call_args[0][0]
        self.assertEqual(query[-2:], ["--print", "file-names"])

        # libgcc.a forwards to libunwind
        with open(os.path.join(self.context.build_path, "_libgcc_", "libgcc.a")) as f:
            self.assertEqual(f.read(), "INPUT(-lunwind)")

        self.assertEqual(
            libraries.get(self.unit),
            [
                SharedLibrary(
                    BuildArchitecture.AARCH64,
                    os.path.join(self.context.build_path, "libmy_game.so"),
                    "libmy-game.so",
                ),
                SharedLibrary(
                    BuildArchitecture.AARCH64,
                    os.path.join(self.context.lib_dir, "libc++_shared.so"),
                    "libc++_shared.so",
                ),
            ],
        )

    @patch("quadapk.build_scripts.compile_hook.run_tool_with_output")
    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_debug_build_keeps_symbols(self, mock_exec, mock_query):
        context = make_context(os.path.join(self.root, "debug"), units=[(self.unit, "rust.my_game")])
        hook = CompileHook(context, on_stdout=lambda line: None, on_stderr=self.stderr.append)
        mock_query.return_value = "libmy_game.so\n"

        with patch("quadapk.build_scripts.compile_hook.list_needed_dylibs", return_value=[]):
            hook.execute(self._invocation())

        self.assertNotIn("-Clink-arg=-strip-all", mock_exec.call_args[0][0])

    @patch("quadapk.build_scripts.compile_hook.run_tool_with_output")
    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=101)
    def test_compile_failure_propagates_code(self, mock_exec, mock_query):
        code, libraries = self.hook.execute(self._invocation())

        self.assertEqual(code, 101)
        self.assertEqual(len(libraries), 0)
        mock_query.assert_not_called()
        self.assertFalse(os.path.exists(scratch_source_path(self.src_path)))

    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_lib_crate_sharing_bin_name_passes_through(self, mock_exec):
        """Test that src/lib.rs of a package with src/main.rs is not taken for the bin."""
        lib_path = os.path.join(os.path.dirname(self.src_path), "lib.rs")
        with open(lib_path, "w") as f:
            f.write("pub fn run() {}\n")
        argv = ["rustc", "--crate-name", "my_game", lib_path, "--crate-type", "lib", "--out-dir", "/t/deps"]

        code, libraries = self.hook.execute(RustcInvocation.parse(argv))

        self.assertEqual(code, 0)
        self.assertEqual(len(libraries), 0)
        self.assertEqual(mock_exec.call_args[0][0], argv)
        self.assertFalse(os.path.exists(scratch_source_path(self.src_path)))
        self.assertFalse(os.path.exists(scratch_source_path(lib_path)))

    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_unknown_source_passes_through(self, mock_exec):
        argv = ["rustc", "--crate-name", "my_game", os.path.join(self.root, "elsewhere", "game.rs"), "--crate-type", "bin"]

        code, _ = self.hook.execute(RustcInvocation.parse(argv))

        self.assertEqual(code, 0)
        self.assertEqual(mock_exec.call_args[0][0], argv)

    @patch("quadapk.build_scripts.compile_hook.exec_streaming", return_value=0)
    def test_source_argument_missing(self, mock_exec):
        """Test that a bin found by crate name but without its source fails."""
        inv = self._invocation(source=os.path.join(self.root, "elsewhere", "game"))

        with self.assertRaises(ArgumentRewriteError) as cm:
            self.hook.execute(inv)

        self.assertIn("my-game", str(cm.exception))
        mock_exec.assert_not_called()
        self.assertFalse(os.path.exists(scratch_source_path(self.src_path)))


if __name__ == "__main__":
    unittest.main()
