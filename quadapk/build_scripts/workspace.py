#!/usr/bin/env python3
# -- coding: utf-8 --
#
# workspace.py
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
Cargo workspace discovery through `cargo metadata`.
"""

import json
import os
import shutil
from typing import Dict, List, Optional

from quadapk.build_scripts.targets import CompilationUnit, UnitKind
from quadapk.utils.cmd.cmd_util import run_tool_with_output
from quadapk.utils.errors import ConfigError, ToolNotFoundError


def find_cargo():
    cargo = os.environ.get("CARGO") or shutil.which("cargo")
    if not cargo:
        raise ToolNotFoundError("cargo", ["$CARGO", "PATH"], "Install rust with rustup")
    return cargo


class Workspace:
    """Packages and targets of a cargo workspace"""

    def __init__(self, metadata: Dict):
        self.metadata = metadata
        self.target_dir = metadata["target_directory"]
        self.root = metadata.get("workspace_root", os.getcwd())
        self._packages = {p["id"]: p for p in metadata.get("packages", [])}
        self._members = [self._packages[i] for i in metadata.get("workspace_members", []) if i in self._packages]

        resolve = metadata.get("resolve") or {}
        nodes = resolve.get("nodes")
        if nodes is None:
            self._resolved = list(self._packages.values())
        else:
            self._resolved = [self._packages[n["id"]] for n in nodes if n["id"] in self._packages]

    @classmethod
    def load(cls, manifest_path=None, filter_platform=None, cwd=None):
        command = [find_cargo(), "metadata", "--format-version", "1"]
        if manifest_path:
            command += ["--manifest-path", manifest_path]
        if filter_platform:
            command += ["--filter-platform", filter_platform]
        output = run_tool_with_output(command, cwd=cwd)
        try:
            return cls(json.loads(output))
        except (ValueError, KeyError) as e:
            raise ConfigError(f"Unable to parse `cargo metadata` output: {e}") from e

    def member(self, package: Optional[str] = None) -> Dict:
        """The selected workspace member; the only member when none is given"""
        if package is None:
            if len(self._members) != 1:
                names = ", ".join(p["name"] for p in self._members)
                raise ConfigError(f"Workspace has multiple packages ({names}), select one with --package")
            return self._members[0]
        for p in self._members:
            if p["name"] == package:
                return p
        raise ConfigError(f"Package '{package}' is not a member of the workspace")

    def member_manifest(self, package: Optional[str] = None) -> str:
        return self.member(package)["manifest_path"]

    def units(self, package: Optional[str] = None) -> List[CompilationUnit]:
        """Bin and example targets of the selected member"""
        units = []
        for target in self.member(package).get("targets", []):
            kind = UnitKind.from_cargo_kinds(target.get("kind", []))
            if kind.is_primary:
                units.append(CompilationUnit(kind, target["name"], os.path.realpath(target["src_path"])))
        return units

    def package_roots(self) -> List[str]:
        """Root directory of every package in the resolved dependency graph"""
        return [os.path.dirname(p["manifest_path"]) for p in self._resolved]

    def package_root(self, package_name: str) -> str:
        for p in self._resolved:
            if p["name"] == package_name:
                return os.path.dirname(p["manifest_path"])
        raise ConfigError(
            f"quadapk can't build a non-{package_name} package, "
            f"but no {package_name} is found in the dependencies tree!"
        )
