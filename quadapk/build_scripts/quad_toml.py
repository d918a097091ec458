#!/usr/bin/env python3
# -- coding: utf-8 --
#
# quad_toml.py
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
Auxiliary Java settings contributed by dependency packages.

Any package in the dependency graph may ship a `quad.toml` next to its
Cargo.toml:

    main_activity_inject = "java/MyInject.java"
    java_files = ["java/my/pkg/Helper.java"]
    comptime_jar_files = ["libs/compile-only.jar"]
    runtime_jar_files = ["libs/runtime.jar"]
    java_services = ["my.pkg.MyService"]

All paths are relative to the package root and use forward slashes.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from quadapk.build_scripts.config import load_toml
from quadapk.utils.errors import ConfigError

QUAD_TOML = "quad.toml"
# java_files are copied relative to this directory
JAVA_SOURCE_DIR = "java/"

LIST_KEYS = ["java_files", "comptime_jar_files", "runtime_jar_files", "java_services"]


@dataclass
class AuxiliaryFiles:
    # files with templates to be injected into MainActivity
    main_activity_injects: List[str] = field(default_factory=list)
    # extra Java files compiled alongside MainActivity: (global path, local path)
    java_files: List[Tuple[str, str]] = field(default_factory=list)
    # extra .jar files for the "javac" classpath
    comptime_jar_files: List[Tuple[str, str]] = field(default_factory=list)
    # extra .jar files merged by "d8"
    runtime_jar_files: List[Tuple[str, str]] = field(default_factory=list)
    # service classes declared enabled in the manifest
    java_services: List[str] = field(default_factory=list)

    def extend(self, other: "AuxiliaryFiles"):
        self.main_activity_injects.extend(other.main_activity_injects)
        self.java_files.extend(other.java_files)
        self.comptime_jar_files.extend(other.comptime_jar_files)
        self.runtime_jar_files.extend(other.runtime_jar_files)
        self.java_services.extend(other.java_services)


def absolute_path(root, path):
    return os.path.join(root, *path.split("/"))


def read_quad_toml(package_root) -> Optional[AuxiliaryFiles]:
    """
    Read the quad.toml of one package.

    Returns:
        AuxiliaryFiles or None when the package has no quad.toml

    Raises:
        ConfigError: the file is malformed
    """
    quad_toml_path = os.path.join(package_root, QUAD_TOML)
    if not os.path.exists(quad_toml_path):
        return None

    data = load_toml(quad_toml_path)

    inject = data.get("main_activity_inject")
    if inject is not None and not isinstance(inject, str):
        raise ConfigError(f"{quad_toml_path} toml file malformed, `main_activity_inject` must be a string")
    for key in LIST_KEYS:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{quad_toml_path} toml file malformed, `{key}` must be a list of strings")
    for path in data.get("java_files") or []:
        if not path.startswith(JAVA_SOURCE_DIR):
            raise ConfigError(
                f"{quad_toml_path} toml file malformed, java file `{path}` must be located under `{JAVA_SOURCE_DIR}`"
            )

    def to_absolute(key):
        return [(absolute_path(package_root, f), f) for f in data.get(key) or []]

    return AuxiliaryFiles(
        main_activity_injects=[absolute_path(package_root, inject)] if inject else [],
        java_files=to_absolute("java_files"),
        comptime_jar_files=to_absolute("comptime_jar_files"),
        runtime_jar_files=to_absolute("runtime_jar_files"),
        java_services=list(data.get("java_services") or []),
    )


def collect_auxiliary_files(package_roots) -> AuxiliaryFiles:
    """Merge the quad.toml of every package root, in the given order"""
    res = AuxiliaryFiles()
    for root in package_roots:
        toml = read_quad_toml(root)
        if toml is not None:
            print(f"found {QUAD_TOML} in {root}")
            res.extend(toml)
    return res
