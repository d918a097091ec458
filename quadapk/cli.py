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

import os
import sys
import importlib
import argparse

from quadapk.utils.context.namespace import CliNameSpace
from quadapk.utils.context.context import CliContext
from quadapk.utils.context.command import CliCommand, strip_cargo_subcommand

SCRIPT_PATH = os.path.split(os.path.realpath(__file__))[0]


# Root Class for Command Line Interface
class Cli(CliCommand):
    def description(self) -> str:
        return """quadapk - Android APK builder for miniquad projects

Builds the bin and example targets of a cargo package into shared libraries
for every Android ABI and packages them into signed APKs.

USAGE:
    quadapk <command> [options]
    cargo quad-apk <command> [options]

COMMANDS:
    build       Compile the package into APKs
    install     Build, then install the APKs with adb
    run         Build, install and start one target
    logcat      Print the Android log

EXAMPLES:
    quadapk build --release          # Build all bins in release mode
    quadapk run --example triangle   # Build and start an example
    quadapk logcat                   # Follow the device log

For more information on a specific command:
    quadapk <command> --help
        """

    def get_command_list(self) -> list:
        arr = []
        for command in os.listdir(os.path.join(SCRIPT_PATH, "commands")):
            if not command.startswith("_") and command.endswith(".py"):
                arr.append(os.path.splitext(os.path.basename(command))[0])
        return sorted(arr)

    def _parser(self, add_help) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="quadapk",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
            add_help=add_help,
        )
        parser.add_argument(
            "subcommand",
            metavar=f"{self.get_command_list()}",
            type=str,
            nargs="?" if not add_help else None,
            choices=self.get_command_list(),
        )
        return parser

    def cli(self, argv=None) -> CliNameSpace:
        argv = strip_cargo_subcommand(sys.argv[1:] if argv is None else argv)
        # Help for the main command only (quadapk --help), not for subcommands
        if len(argv) == 1 and argv[0] in ["--help", "-h"]:
            self._parser(add_help=True).print_help()
            sys.exit(0)

        # parse only known args - this will NOT consume --help of the subcommand
        args, unknown = self._parser(add_help=False).parse_known_args(argv, namespace=CliNameSpace())
        return args

    def exec(self, context: CliContext, args: CliNameSpace):
        if not args.subcommand:
            print("ERROR: No command specified\n")
            self._parser(add_help=True).print_help()
            sys.exit(1)

        # get module name
        module_name = f"quadapk.commands.{args.subcommand}"
        # get class name
        class_name = args.subcommand.capitalize()
        # import module
        module = importlib.import_module(module_name)
        # get class of module
        klass = getattr(module, class_name)
        # instance class
        sub_cmd = klass()
        # now execute the subcommand
        sub_cmd.exec(context, sub_cmd.cli())


def main():
    cmd = Cli()
    cmd.exec(CliContext(), cmd.cli())


if __name__ == "__main__":
    main()
