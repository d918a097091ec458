#!/usr/bin/env python3
# -- coding: utf-8 --
#
# config.py
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
Android configuration handler for quadapk.

Reads `[package.metadata.android]` from the package's Cargo.toml and the SDK /
NDK locations from environment variables. Per-target settings can be
overridden for a single binary or example:

    [package.metadata.android]
    package_name = "rust.mygame"
    label = "My Game"
    build_targets = ["armv7-linux-androideabi", "aarch64-linux-android"]

    [[package.metadata.android.permission]]
    name = "android.permission.CAMERA"

    [package.metadata.android.example.demo]
    label = "Demo"
"""

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from quadapk.build_scripts.targets import BuildArchitecture, UnitKind
from quadapk.utils.errors import ConfigError, ToolNotFoundError

METADATA_TABLE = "package.metadata.android"

DEFAULT_MIN_SDK_VERSION = 18
DEFAULT_TARGET_SDK_VERSION = 29

SDK_ENV_VARS = ["ANDROID_SDK_ROOT", "ANDROID_HOME"]
NDK_ENV_VARS = ["NDK_HOME", "ANDROID_NDK_ROOT", "ANDROID_NDK_HOME", "NDK_ROOT"]

# keys which may be overridden per bin / example target
TARGET_KEYS = [
    "package_name",
    "label",
    "icon",
    "res",
    "assets",
    "fullscreen",
    "opengles_version_major",
    "opengles_version_minor",
    "application_attributes",
    "activity_attributes",
    "version_code",
    "version_name",
    "feature",
    "permission",
]


@dataclass(frozen=True)
class Permission:
    name: str
    max_sdk_version: Optional[int] = None


@dataclass(frozen=True)
class Feature:
    name: str
    required: bool = True
    version: Optional[str] = None


@dataclass(frozen=True)
class TargetSettings:
    """Resolved configuration of one bin or example target"""

    package_name: str
    package_label: str
    package_icon: Optional[str] = None
    permissions: Tuple[Permission, ...] = ()
    features: Tuple[Feature, ...] = ()
    version_code: int = 1
    version_name: str = "1.0"
    fullscreen: bool = False
    opengles_version_major: int = 2
    opengles_version_minor: int = 0
    application_attributes: Optional[str] = None
    activity_attributes: Optional[str] = None
    res_path: Optional[str] = None
    assets_path: Optional[str] = None

    @property
    def manifest_package_name(self) -> str:
        return self.package_name.replace("-", "_")

    @property
    def library_name(self) -> str:
        """Last dot separated component of the package identifier"""
        return self.package_name.split(".")[-1]


@dataclass
class AndroidConfig:
    sdk_path: str
    ndk_path: str
    build_tools_version: str
    android_jar_path: str
    min_sdk_version: int = DEFAULT_MIN_SDK_VERSION
    target_sdk_version: int = DEFAULT_TARGET_SDK_VERSION
    build_targets: List[BuildArchitecture] = field(default_factory=BuildArchitecture.defaults)
    release: bool = False
    manifest_dir: str = "."
    # raw `package.metadata.android` table, minus the per-target tables
    default_target_config: Dict[str, Any] = field(default_factory=dict)
    bin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    example_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def resolve(self, kind: UnitKind, name: str) -> TargetSettings:
        """
        Merge the package defaults with the overrides of one target.

        Raises:
            ConfigError: a value has the wrong type
        """
        if kind == UnitKind.BIN:
            overrides = self.bin_configs.get(name, {})
        elif kind == UnitKind.EXAMPLE:
            overrides = self.example_configs.get(name, {})
        else:
            raise ConfigError(f"Target '{name}' of kind '{kind.value}' cannot be packaged")

        table = dict(self.default_target_config)
        table.update({k: v for k, v in overrides.items() if k in TARGET_KEYS})
        where = f"{METADATA_TABLE}.{kind.value}.{name}" if overrides else METADATA_TABLE

        permissions = tuple(
            Permission(
                name=_get(p, "name", str, None, f"{where}.permission", required=True),
                max_sdk_version=_get(p, "max_sdk_version", int, None, f"{where}.permission"),
            )
            for p in _get(table, "permission", list, [], where)
        )
        features = tuple(
            Feature(
                name=_get(f, "name", str, None, f"{where}.feature", required=True),
                required=_get(f, "required", bool, True, f"{where}.feature"),
                version=_get(f, "version", str, None, f"{where}.feature"),
            )
            for f in _get(table, "feature", list, [], where)
        )

        return TargetSettings(
            package_name=_get(table, "package_name", str, f"rust.{name}", where),
            package_label=_get(table, "label", str, name, where),
            package_icon=_get(table, "icon", str, None, where),
            permissions=permissions,
            features=features,
            version_code=_get(table, "version_code", int, 1, where),
            version_name=_get(table, "version_name", str, "1.0", where),
            fullscreen=_get(table, "fullscreen", bool, False, where),
            opengles_version_major=_get(table, "opengles_version_major", int, 2, where),
            opengles_version_minor=_get(table, "opengles_version_minor", int, 0, where),
            application_attributes=_get(table, "application_attributes", str, None, where),
            activity_attributes=_get(table, "activity_attributes", str, None, where),
            res_path=self._manifest_relative(_get(table, "res", str, None, where)),
            assets_path=self._manifest_relative(_get(table, "assets", str, None, where)),
        )

    def _manifest_relative(self, path):
        if path is None:
            return None
        return os.path.join(self.manifest_dir, path)


def _get(table, key, expected_type, default, where, required=False):
    if not isinstance(table, dict):
        raise ConfigError(f"`{where}` entries must be tables")
    if key not in table:
        if required:
            raise ConfigError(f"`{where}.{key}` is required")
        return default
    value = table[key]
    # bool is a subclass of int, don't accept it where a number is expected
    if expected_type is int and isinstance(value, bool):
        raise ConfigError(f"`{where}.{key}` must be an integer")
    if expected_type is str and isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, expected_type):
        raise ConfigError(f"`{where}.{key}` must be of type {expected_type.__name__}, got {value!r}")
    return value


def load_toml(path) -> Dict[str, Any]:
    """
    Parse a TOML file.

    Raises:
        ConfigError: the file cannot be read or is malformed
    """
    try:
        # Must open in rb mode for tomllib
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Unable to read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path} toml file malformed, {e}") from e


def get_android_metadata(cargo_toml: Dict[str, Any]) -> Dict[str, Any]:
    metadata = cargo_toml.get("package", {}).get("metadata", {}).get("android", {})
    if not isinstance(metadata, dict):
        raise ConfigError(f"`{METADATA_TABLE}` must be a table")
    return metadata


def find_sdk_path(environ=None) -> str:
    environ = os.environ if environ is None else environ
    for name in SDK_ENV_VARS:
        if environ.get(name):
            return environ[name]
    raise ToolNotFoundError(
        "Android SDK",
        [f"${name}" for name in SDK_ENV_VARS],
        "Please set the path to the Android SDK with the $ANDROID_HOME environment variable",
    )


def find_ndk_root(sdk_path, environ=None) -> str:
    environ = os.environ if environ is None else environ
    for name in NDK_ENV_VARS:
        if environ.get(name):
            return environ[name]
    bundled = os.path.join(sdk_path, "ndk-bundle")
    if os.path.isdir(bundled):
        return bundled
    raise ToolNotFoundError(
        "Android NDK",
        [f"${name}" for name in NDK_ENV_VARS] + [bundled],
        "Please set the path to the Android NDK with the $NDK_HOME environment variable",
    )


def _version_key(version: str):
    parts = []
    for part in version.replace("-", ".").split("."):
        parts.append(int(part) if part.isdigit() else -1)
    return parts


def find_build_tools_version(sdk_path) -> str:
    """Highest installed build-tools version"""
    build_tools_dir = os.path.join(sdk_path, "build-tools")
    versions = []
    if os.path.isdir(build_tools_dir):
        versions = [v for v in os.listdir(build_tools_dir) if os.path.isdir(os.path.join(build_tools_dir, v))]
    if not versions:
        raise ToolNotFoundError("Android SDK build-tools", [build_tools_dir])
    return sorted(versions, key=_version_key)[-1]


def parse_android_config(cargo_toml, sdk_path, ndk_path, manifest_dir=".", release=False) -> AndroidConfig:
    """
    Build an AndroidConfig from an already parsed Cargo.toml.

    Raises:
        ConfigError: the android metadata is malformed
        ToolNotFoundError: build-tools or the platform android.jar are missing
    """
    metadata = get_android_metadata(cargo_toml)
    where = METADATA_TABLE

    build_targets = [
        BuildArchitecture.parse(t)
        for t in _get(metadata, "build_targets", list, [], where)
    ] or BuildArchitecture.defaults()

    min_sdk_version = _get(metadata, "min_sdk_version", int, DEFAULT_MIN_SDK_VERSION, where)
    target_sdk_version = _get(
        metadata,
        "target_sdk_version",
        int,
        _get(metadata, "android_version", int, DEFAULT_TARGET_SDK_VERSION, where),
        where,
    )

    build_tools_version = _get(metadata, "build_tools_version", str, None, where)
    if build_tools_version is None:
        build_tools_version = find_build_tools_version(sdk_path)

    android_jar_path = os.path.join(sdk_path, "platforms", f"android-{target_sdk_version}", "android.jar")
    if not os.path.isfile(android_jar_path):
        raise ToolNotFoundError(
            "android.jar",
            [android_jar_path],
            f"Install the Android SDK platform for API level {target_sdk_version}",
        )

    bin_configs = _get(metadata, "bin", dict, {}, where)
    example_configs = _get(metadata, "example", dict, {}, where)
    for name, table in list(bin_configs.items()) + list(example_configs.items()):
        if not isinstance(table, dict):
            raise ConfigError(f"`{where}.bin.{name}` / `{where}.example.{name}` must be a table")

    default_target_config = {k: v for k, v in metadata.items() if k in TARGET_KEYS}

    return AndroidConfig(
        sdk_path=sdk_path,
        ndk_path=ndk_path,
        build_tools_version=build_tools_version,
        android_jar_path=android_jar_path,
        min_sdk_version=min_sdk_version,
        target_sdk_version=target_sdk_version,
        build_targets=build_targets,
        release=release,
        manifest_dir=manifest_dir,
        default_target_config=default_target_config,
        bin_configs=bin_configs,
        example_configs=example_configs,
    )


def load_android_config(manifest_path, release=False, environ=None) -> AndroidConfig:
    """Load the configuration of the package whose Cargo.toml is `manifest_path`"""
    cargo_toml = load_toml(manifest_path)
    sdk_path = find_sdk_path(environ)
    ndk_path = find_ndk_root(sdk_path, environ)
    return parse_android_config(
        cargo_toml,
        sdk_path,
        ndk_path,
        manifest_dir=os.path.dirname(os.path.abspath(manifest_path)),
        release=release,
    )
