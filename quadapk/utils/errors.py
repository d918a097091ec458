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
Exceptions raised while building an APK.

Every fatal condition derives from QuadApkError so the command line layer can
report it with a single handler. MissingTransitiveLibraryError is only raised
when strict shared library resolution is requested; by default a missing
dependency is reported as a warning and the build continues.
"""


class QuadApkError(Exception):
    """Base class of all quadapk errors"""
    pass


class ToolNotFoundError(QuadApkError):
    """A required external executable could not be located"""

    def __init__(self, tool: str, searched=None, hint: str = None):
        self.tool = tool
        self.searched = [str(s) for s in (searched or [])]
        self.hint = hint
        message = f"Unable to find {tool}"
        if self.searched:
            message += f", searched: {', '.join(self.searched)}"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class ArgumentRewriteError(QuadApkError):
    """The compile hook could not find an argument it has to rewrite"""

    def __init__(self, unit_name: str, detail: str):
        self.unit_name = unit_name
        super().__init__(f"{detail} when building target '{unit_name}'")


class ScratchFileError(QuadApkError):
    """The temporary source file could not be created or removed"""

    def __init__(self, path, reason, operation="create"):
        self.path = str(path)
        self.operation = operation
        super().__init__(
            f"Unable to {operation} temporary source file `{self.path}`. "
            "Source directory must be writable. quadapk creates temporary "
            f"source files as part of the build process. {reason}."
        )


class MissingTransitiveLibraryError(QuadApkError):
    """A NEEDED shared library could not be resolved to a file"""

    def __init__(self, library: str, searched=None):
        self.library = library
        self.searched = [str(s) for s in (searched or [])]
        super().__init__(f'Shared library "{library}" not found.')


class ExternalToolError(QuadApkError):
    """An invoked tool exited with a non-zero status"""

    def __init__(self, command, returncode: int, output: str = ""):
        self.command = [str(c) for c in command]
        self.returncode = returncode
        self.output = output
        message = f"process didn't exit successfully: `{' '.join(self.command)}` (exit code: {returncode})"
        if output:
            message += f"\n--- output\n{output.rstrip()}"
        super().__init__(message)


class ConfigError(QuadApkError):
    """Configuration or auxiliary package settings failed to parse"""
    pass


class GlueTemplateError(QuadApkError):
    """Inject template markers are not balanced"""
    pass
