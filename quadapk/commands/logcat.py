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
import subprocess
import sys

from quadapk.build_scripts.build_utils import find_adb
from quadapk.build_scripts.config import find_sdk_path
from quadapk.utils.cmd.cmd_util import format_command
from quadapk.utils.context.command import CliCommand
from quadapk.utils.context.context import CliContext
from quadapk.utils.context.namespace import CliNameSpace
from quadapk.utils.errors import QuadApkError


class Logcat(CliCommand):
    def description(self) -> str:
        return """
        Print the Android log of the connected device (adb logcat).
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="quadapk logcat",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        args, unknown = parser.parse_known_args(self.command_argv("logcat", argv), namespace=CliNameSpace())
        args.adb_args = unknown
        return args

    def exec(self, context: CliContext, args: CliNameSpace):
        try:
            adb = find_adb(find_sdk_path(context.environ))
        except QuadApkError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

        print("Starting logcat")
        command = [adb, "logcat"] + list(args.adb_args)
        print(f"build cmd: [{format_command(command)}]")
        # output goes straight to the terminal until interrupted
        try:
            code = subprocess.call(command)
        except KeyboardInterrupt:
            code = 0
        sys.exit(code)
