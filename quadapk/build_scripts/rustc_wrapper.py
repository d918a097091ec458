#!/usr/bin/env python3
# -- coding: utf-8 --
#
# rustc_wrapper.py
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
RUSTC_WRAPPER entry point.

cargo runs `quadapk-rustc-wrapper <rustc> <args...>` for every crate. The
wrapper loads the ToolchainContext named by $QUADAPK_CONTEXT, lets the compile
hook rewrite and run the invocation, and appends the shared libraries it
produced to the per-ABI records file as JSON lines. The orchestrator reads
them back once cargo finishes.

Usage:
    quadapk-rustc-wrapper <rustc> [rustc args...]
"""

import json
import os
import subprocess
import sys

from quadapk.build_scripts.compile_hook import CompileHook, RustcInvocation
from quadapk.build_scripts.targets import CompilationUnit, SharedLibrary, SharedLibraryMap
from quadapk.build_scripts.toolchain import CONTEXT_ENV_VAR, ToolchainContext
from quadapk.utils.cmd.cmd_util import eprint
from quadapk.utils.errors import ExternalToolError, QuadApkError


def append_records(records_path, libraries: SharedLibraryMap):
    lines = []
    for unit, unit_libraries in libraries.items():
        for library in unit_libraries:
            lines.append(json.dumps({"unit": unit.to_dict(), "library": library.to_dict()}) + "\n")
    if not lines:
        return
    # one write per invocation, rustc processes of the same ABI may run concurrently
    with open(records_path, "a", encoding="utf-8") as f:
        f.write("".join(lines))


def read_records(records_path) -> SharedLibraryMap:
    libraries = SharedLibraryMap()
    if not os.path.exists(records_path):
        return libraries
    with open(records_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            libraries.insert(
                CompilationUnit.from_dict(record["unit"]),
                SharedLibrary.from_dict(record["library"]),
            )
    return libraries


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        eprint("usage: quadapk-rustc-wrapper <rustc> [args...]")
        sys.exit(2)

    context_path = os.environ.get(CONTEXT_ENV_VAR)
    if not context_path:
        # not started by quadapk, behave like plain rustc
        sys.exit(subprocess.call(argv))

    context = ToolchainContext.read(context_path)
    hook = CompileHook(
        context,
        on_stdout=lambda line: print(line, flush=True),
        on_stderr=eprint,
    )
    try:
        code, libraries = hook.execute(RustcInvocation.parse(argv))
    except ExternalToolError as e:
        eprint(f"ERROR: {e}")
        sys.exit(e.returncode or 1)
    except QuadApkError as e:
        eprint(f"ERROR: {e}")
        sys.exit(1)

    if code == 0:
        append_records(context.records_path, libraries)
    sys.exit(code)


if __name__ == "__main__":
    main()
