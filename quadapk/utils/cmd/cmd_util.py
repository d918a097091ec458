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

import subprocess
import sys
import threading
import time
from threading import Timer

from quadapk.utils.errors import ExternalToolError, ToolNotFoundError

DEFAULT_TIMEOUT_SECOND = 10
# external tools (cargo, d8, ...) may legitimately take a long time
TOOL_TIMEOUT_SECOND = 3 * 3600


def decode_bytes(input: bytes) -> str:
    """
    Decode bytes to string with fallback encoding support.

    Attempts UTF-8 decoding first, falls back to GBK for Chinese Windows systems.
    """
    try:
        return bytes.decode(input, "UTF-8")
    except UnicodeDecodeError:
        return bytes.decode(input, "GBK", errors="replace")


def format_command(command) -> str:
    return " ".join(str(c) for c in command)


def _popen(command, cwd=None, env=None, stdout=subprocess.PIPE, stderr=subprocess.PIPE):
    args = [str(c) for c in command]
    try:
        return subprocess.Popen(
            args,
            cwd=None if cwd is None else str(cwd),
            env=env,
            stdout=stdout,
            stderr=stderr,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(args[0], [e.filename or args[0]]) from e


def exec_command(command, cwd=None, env=None, stderr=subprocess.STDOUT):
    # timeout is 3 hours
    return exec_command_with_timeout_second(
        command, TOOL_TIMEOUT_SECOND, cwd=cwd, env=env, stderr=stderr
    )


def exec_command_with_timeout_second(
    command,
    timeout_second=DEFAULT_TIMEOUT_SECOND,
    stdout=subprocess.PIPE,
    stderr=subprocess.STDOUT,
    cwd=None,
    env=None,
):
    start_mills = int(time.time() * 1000)
    compile_popen = _popen(command, cwd=cwd, env=env, stdout=stdout, stderr=stderr)
    timer = Timer(timeout_second, lambda process: process.kill(), [compile_popen])
    try:
        timer.start()
        stdout, stderr = compile_popen.communicate()
    finally:
        timer.cancel()
    err_code = compile_popen.returncode
    err_msg = decode_bytes(stdout or b"")
    if err_code == -9:
        if not err_msg:
            if stderr:
                err_msg = decode_bytes(stderr)
            if not err_msg:
                use_time = int(time.time() * 1000) - start_mills
                err_msg = f"Failed for timeout({err_code}), use_time: {use_time}ms"
    return err_code, err_msg


def exec_streaming(command, on_stdout_line, on_stderr_line, cwd=None, env=None):
    """
    Run a command and hand every output line to a callback as it arrives.

    Args:
        command: Argument list
        on_stdout_line: Called with each stdout line (without line break)
        on_stderr_line: Called with each stderr line (without line break)
        cwd: Working directory
        env: Environment mapping for the child process

    Returns:
        int: exit code of the command
    """
    popen = _popen(command, cwd=cwd, env=env)

    def pump(stream, callback):
        for raw in iter(stream.readline, b""):
            callback(decode_bytes(raw).rstrip("\r\n"))
        stream.close()

    # stderr on its own thread so neither pipe can fill up and block the child
    stderr_thread = threading.Thread(target=pump, args=(popen.stderr, on_stderr_line))
    stderr_thread.daemon = True
    stderr_thread.start()
    pump(popen.stdout, on_stdout_line)
    stderr_thread.join()
    return popen.wait()


def run_tool(command, cwd=None, env=None, verbose=True):
    """
    Run an external tool and fail loudly when it exits non-zero.

    Args:
        command: Argument list, first item is the executable
        cwd: Working directory
        env: Environment mapping for the child process
        verbose: Echo the command before running it

    Returns:
        str: combined stdout/stderr of the tool

    Raises:
        ExternalToolError: the tool exited with a non-zero status
    """
    if verbose:
        print(f"build cmd: [{format_command(command)}]")
    err_code, output = exec_command(command, cwd=cwd, env=env)
    if err_code != 0:
        raise ExternalToolError(command, err_code, output)
    return output


def run_tool_with_output(command, cwd=None, env=None):
    """
    Run a query command and return its stdout only.

    stderr is captured separately and attached to the error on failure.
    """
    popen = _popen(command, cwd=cwd, env=env)
    stdout, stderr = popen.communicate()
    if popen.returncode != 0:
        raise ExternalToolError(command, popen.returncode, decode_bytes(stderr))
    return decode_bytes(stdout)


def eprint(*args):
    print(*args, file=sys.stderr)
