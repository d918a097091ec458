#!/usr/bin/env python3
"""
Tests for the Android configuration handler.

Run with: python3 -m pytest quadapk/build_scripts/test_config.py
"""

import os
import tempfile
import unittest

from quadapk.build_scripts.config import (
    AndroidConfig,
    Feature,
    Permission,
    find_build_tools_version,
    find_ndk_root,
    find_sdk_path,
    load_android_config,
    load_toml,
    parse_android_config,
)
from quadapk.build_scripts.targets import BuildArchitecture, UnitKind
from quadapk.utils.errors import ConfigError, ToolNotFoundError

CARGO_TOML = """
[package]
name = "my-game"
version = "0.1.0"

[package.metadata.android]
label = "My Game"
build_targets = ["armv7-linux-androideabi", "aarch64-linux-android"]
min_sdk_version = 21
target_sdk_version = 30
fullscreen = true
assets = "assets"

[[package.metadata.android.permission]]
name = "android.permission.CAMERA"

[[package.metadata.android.feature]]
name = "android.hardware.camera"
required = false

[package.metadata.android.example.demo]
label = "Demo"
package_name = "rust.quad.demo"
fullscreen = false
"""


class SdkTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.sdk = os.path.join(self._tmp.name, "sdk")
        for version in ("29.0.3", "34.0.0", "30.0.2"):
            os.makedirs(os.path.join(self.sdk, "build-tools", version))
        for api in (29, 30):
            platform_dir = os.path.join(self.sdk, "platforms", f"android-{api}")
            os.makedirs(platform_dir)
            open(os.path.join(platform_dir, "android.jar"), "w").close()

    def tearDown(self):
        self._tmp.cleanup()

    def write_cargo_toml(self, text=CARGO_TOML):
        path = os.path.join(self._tmp.name, "game", "Cargo.toml")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(text)
        return path


class TestLoadConfig(SdkTestCase):
    """Test loading the package metadata."""

    def test_load(self):
        manifest_path = self.write_cargo_toml()
        config = load_android_config(manifest_path, release=True, environ={"ANDROID_HOME": self.sdk, "NDK_HOME": "/ndk"})

        self.assertEqual(config.sdk_path, self.sdk)
        self.assertEqual(config.ndk_path, "/ndk")
        self.assertEqual(config.build_tools_version, "34.0.0")
        self.assertEqual(config.min_sdk_version, 21)
        self.assertEqual(config.target_sdk_version, 30)
        self.assertEqual(
            config.android_jar_path, os.path.join(self.sdk, "platforms", "android-30", "android.jar")
        )
        self.assertEqual(config.build_targets, [BuildArchitecture.ARMV7, BuildArchitecture.AARCH64])
        self.assertTrue(config.release)
        self.assertEqual(config.manifest_dir, os.path.dirname(os.path.abspath(manifest_path)))

    def test_defaults(self):
        config = parse_android_config({"package": {"name": "quad"}}, self.sdk, "/ndk")

        self.assertEqual(config.min_sdk_version, 18)
        self.assertEqual(config.target_sdk_version, 29)
        self.assertEqual(config.build_targets, BuildArchitecture.defaults())

    def test_android_version_alias(self):
        config = parse_android_config(
            {"package": {"metadata": {"android": {"android_version": 30}}}}, self.sdk, "/ndk"
        )
        self.assertEqual(config.target_sdk_version, 30)

    def test_missing_platform(self):
        with self.assertRaises(ToolNotFoundError):
            parse_android_config(
                {"package": {"metadata": {"android": {"target_sdk_version": 33}}}}, self.sdk, "/ndk"
            )

    def test_unknown_build_target(self):
        with self.assertRaises(ConfigError):
            parse_android_config(
                {"package": {"metadata": {"android": {"build_targets": ["mips-linux-android"]}}}},
                self.sdk,
                "/ndk",
            )

    def test_bad_types(self):
        for metadata in (
            {"min_sdk_version": "21"},
            {"min_sdk_version": True},
            {"build_targets": "aarch64-linux-android"},
            {"bin": {"game": "not a table"}},
        ):
            with self.subTest(metadata=metadata):
                with self.assertRaises(ConfigError):
                    parse_android_config({"package": {"metadata": {"android": metadata}}}, self.sdk, "/ndk")

    def test_malformed_toml(self):
        path = self.write_cargo_toml("[package\nname = ")
        with self.assertRaises(ConfigError):
            load_toml(path)


class TestResolve(SdkTestCase):
    """Test per-target settings."""

    def setUp(self):
        super().setUp()
        self.config = load_android_config(
            self.write_cargo_toml(), environ={"ANDROID_HOME": self.sdk, "NDK_HOME": "/ndk"}
        )

    def test_bin_uses_package_defaults(self):
        settings = self.config.resolve(UnitKind.BIN, "my-game")

        self.assertEqual(settings.package_name, "rust.my-game")
        self.assertEqual(settings.manifest_package_name, "rust.my_game")
        self.assertEqual(settings.library_name, "my-game")
        self.assertEqual(settings.package_label, "My Game")
        self.assertTrue(settings.fullscreen)
        self.assertEqual(settings.permissions, (Permission("android.permission.CAMERA"),))
        self.assertEqual(settings.features, (Feature("android.hardware.camera", required=False),))
        self.assertEqual(settings.assets_path, os.path.join(self.config.manifest_dir, "assets"))
        self.assertIsNone(settings.res_path)

    def test_example_override(self):
        settings = self.config.resolve(UnitKind.EXAMPLE, "demo")

        self.assertEqual(settings.package_name, "rust.quad.demo")
        self.assertEqual(settings.library_name, "demo")
        self.assertEqual(settings.package_label, "Demo")
        self.assertFalse(settings.fullscreen)
        # keys which are not overridden are inherited
        self.assertEqual(settings.permissions, (Permission("android.permission.CAMERA"),))

    def test_other_kind(self):
        with self.assertRaises(ConfigError):
            self.config.resolve(UnitKind.OTHER, "dep")

    def test_bad_permission(self):
        config = AndroidConfig("/sdk", "/ndk", "34.0.0", "/a.jar", default_target_config={"permission": [{}]})
        with self.assertRaises(ConfigError):
            config.resolve(UnitKind.BIN, "game")


class TestEnvironment(unittest.TestCase):
    """Test SDK and NDK discovery from the environment."""

    def test_find_sdk_path(self):
        self.assertEqual(find_sdk_path({"ANDROID_SDK_ROOT": "/a", "ANDROID_HOME": "/b"}), "/a")
        self.assertEqual(find_sdk_path({"ANDROID_HOME": "/b"}), "/b")
        with self.assertRaises(ToolNotFoundError):
            find_sdk_path({})

    def test_find_ndk_root(self):
        self.assertEqual(find_ndk_root("/sdk", {"ANDROID_NDK_ROOT": "/ndk"}), "/ndk")
        with tempfile.TemporaryDirectory() as sdk:
            with self.assertRaises(ToolNotFoundError):
                find_ndk_root(sdk, {})
            os.makedirs(os.path.join(sdk, "ndk-bundle"))
            self.assertEqual(find_ndk_root(sdk, {}), os.path.join(sdk, "ndk-bundle"))

    def test_find_build_tools_version(self):
        with tempfile.TemporaryDirectory() as sdk:
            with self.assertRaises(ToolNotFoundError):
                find_build_tools_version(sdk)
            for version in ("9.0.0", "10.0.0", "30.0.0-rc1"):
                os.makedirs(os.path.join(sdk, "build-tools", version))
            self.assertEqual(find_build_tools_version(sdk), "30.0.0-rc1")


if __name__ == "__main__":
    unittest.main()
