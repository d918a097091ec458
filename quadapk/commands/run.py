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
import sys

from quadapk.commands.build import add_build_arguments, build_options, run_build
from quadapk.commands.install import install_apks
from quadapk.utils.cmd.cmd_util import run_tool
from quadapk.utils.context.command import CliCommand
from quadapk.utils.context.context import CliContext
from quadapk.utils.context.namespace import CliNameSpace
from quadapk.utils.errors import ConfigError, QuadApkError

MAIN_ACTIVITY = ".MainActivity"


def launch_command(adb, package_name):
    return [
        adb, "shell", "am", "start",
        "-a", "android.intent.action.MAIN",
        "-n", f"{package_name}/{MAIN_ACTIVITY}",
    ]


class Run(CliCommand):
    def description(self) -> str:
        return """
        Build and install one target, then start its activity on the device.

        If neither --bin nor --example is given the package must have exactly
        one bin target.

        Examples:
            quadapk run                      # Run the only bin target
            quadapk run --example triangle   # Run an example
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = argparse.ArgumentParser(
            prog="quadapk run",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        add_build_arguments(parser)
        return parser.parse_args(self.command_argv("run", argv), namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace):
        if len(args.bin) + len(args.example) > 1:
            print("ERROR: at most one of --bin or --example can be provided")
            sys.exit(1)

        config, apks = run_build(build_options(args), context)
        try:
            if len(apks) != 1:
                names = ", ".join(name for _, name in apks)
                raise ConfigError(f"`run` needs exactly one target, built: {names}. Select one with --bin or --example")
            (kind, name), apk_path = next(iter(apks.items()))

            adb = install_apks(config.sdk_path, [apk_path])
            settings = config.resolve(kind, name)
            print(f"Starting {settings.manifest_package_name}")
            run_tool(launch_command(adb, settings.manifest_package_name))
        except QuadApkError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
