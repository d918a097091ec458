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

"""Build scripts of the Android APK pipeline."""

__all__ = [
    "build_android",
    "build_utils",
    "compile_hook",
    "config",
    "dylib_resolver",
    "keystore",
    "manifest",
    "package_apk",
    "preprocessor",
    "quad_toml",
    "rustc_wrapper",
    "targets",
    "toolchain",
    "workspace",
]
