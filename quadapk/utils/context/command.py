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

import sys
from abc import ABC, abstractmethod

from quadapk.utils.context.context import CliContext
from quadapk.utils.context.namespace import CliNameSpace

# `cargo quad-apk build` invokes us as `cargo-quad-apk quad-apk build`
CARGO_SUBCOMMAND = "quad-apk"


def strip_cargo_subcommand(argv):
    if argv and argv[0] == CARGO_SUBCOMMAND:
        return argv[1:]
    return list(argv)


# Base Class of every command
class CliCommand(ABC):
    @abstractmethod
    def description(self) -> str:
        pass

    @abstractmethod
    def cli(self) -> CliNameSpace:
        pass

    @abstractmethod
    def exec(self, context: CliContext, args: CliNameSpace):
        pass

    def command_argv(self, command_name, argv=None):
        """Arguments following the command name"""
        argv = strip_cargo_subcommand(sys.argv[1:] if argv is None else argv)
        if command_name in argv:
            argv.remove(command_name)
        return argv
