#!/usr/bin/env python3
# -- coding: utf-8 --
#
# keystore.py
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
Debug signing key.

We use the same debug keystore as the Android SDK. If it does not exist it is
created with keytool, which is part of the JDK. This credential is for
development only.
"""

import os

from quadapk.build_scripts.build_utils import find_java_executable
from quadapk.utils.cmd.cmd_util import run_tool

DEBUG_KEYSTORE_PASSWORD = "android"
DEBUG_KEY_ALIAS = "androiddebugkey"
DEBUG_DNAME = "CN=Android Debug,O=Android,C=US"


def debug_keystore_path(home=None) -> str:
    home = home or os.path.expanduser("~")
    return os.path.join(home, ".android", "debug.keystore")


def keytool_command(keytool, keystore_path):
    return [
        keytool,
        "-genkey",
        "-v",
        "-keystore", keystore_path,
        "-storepass", DEBUG_KEYSTORE_PASSWORD,
        "-alias", DEBUG_KEY_ALIAS,
        "-keypass", DEBUG_KEYSTORE_PASSWORD,
        "-dname", DEBUG_DNAME,
        "-keyalg", "RSA",
        "-keysize", "2048",
        "-validity", "10000",
    ]


def ensure_debug_keystore(cwd=None, home=None) -> str:
    """
    Return the debug keystore, generating it on first use.

    Raises:
        ToolNotFoundError: keytool is not installed
        ExternalToolError: keytool failed
    """
    keystore_path = debug_keystore_path(home)
    os.makedirs(os.path.dirname(keystore_path), exist_ok=True)
    if not os.path.exists(keystore_path):
        print(f"Generating debug keystore {keystore_path}")
        run_tool(keytool_command(find_java_executable("keytool"), keystore_path), cwd=cwd)
    return keystore_path
