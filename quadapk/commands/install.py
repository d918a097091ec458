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

import argparse
import os
import sys

from quadapk.build_scripts.build_utils import find_adb
from quadapk.commands.build import add_build_arguments, build_options, run_build
from quadapk.utils.cmd.cmd_util import run_tool
from quadapk.utils.context.command import CliCommand
from quadapk.utils.context.context import CliContext
from quadapk.utils.context.namespace import CliNameSpace
from quadapk.utils.errors import QuadApkError


def install_apks(sdk_path, apks):
    """
    Install every APK on the connected device.

    Raises:
        ToolNotFoundError: adb is missing
        ExternalToolError: adb failed
    """
    adb = find_adb(sdk_path)
    for apk_path in apks:
        print(f"Installing apk '{os.path.basename(apk_path)}' to the device")
        run_tool([adb, "install", "-r", apk_path])
    return adb


class Install(CliCommand):
    def description(self) -> str:
        return """
        Build the APKs and install them on the connected device with adb.

        Unlike `build`, the APKs are built in release mode unless --debug
        is given.

        Examples:
            quadapk install                  # Build release and install
            quadapk install --debug          # Build debug and install
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="quadapk install",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument(
            "--debug",
            action="store_true",
            help="Build in debug mode instead of release mode",
        )
        add_build_arguments(parser, release_flag=False)
        return parser.parse_args(self.command_argv("install", argv), namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace):
        config, apks = run_build(build_options(args, release=not args.debug), context)
        try:
            install_apks(config.sdk_path, apks.values())
        except QuadApkError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
