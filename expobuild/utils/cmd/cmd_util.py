#
# Copyright 2024 expobuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

import shutil
import subprocess
import time
from threading import Timer
from typing import Dict, List, Optional

from expobuild.errors import ExpoBuildError

# No timeout unless the caller asks for one, external builds can take hours
DEFAULT_TIMEOUT_SECOND = None

# Exit code reported for a process killed by the timeout timer
TIMEOUT_EXIT_CODE = -9


class CommandNotFound(ExpoBuildError):
    category = "CommandNotFound"

    def __init__(self, program: str):
        super().__init__(f"'{program}' was not found on PATH")
        self.program = program


class CommandFailed(ExpoBuildError):
    category = "CommandFailed"

    def __init__(self, program: str, exit_code: int, output: str = ""):
        super().__init__(f"'{program}' exited with code {exit_code}")
        self.program = program
        self.exit_code = exit_code
        self.output = output


class CommandResult:
    def __init__(self, exit_code: int, stdout: Optional[str] = None):
        self.exit_code = exit_code
        self.stdout = stdout

    def __repr__(self):
        return f"CommandResult(exit_code={self.exit_code})"


def decode_bytes(data: bytes) -> str:
    if not data:
        return ""
    try:
        return bytes.decode(data, "UTF-8")
    except UnicodeDecodeError:
        return bytes.decode(data, "GBK", errors="replace")


def format_command(program: str, args: List[str]) -> str:
    """Render a command for display, hiding `pass:` secrets"""
    shown = []
    for arg in args:
        arg = str(arg)
        if "=pass:" in arg:
            arg = arg.split("=pass:", 1)[0] + "=pass:****"
        shown.append(arg)
    return " ".join([program] + shown)


class CommandRunner:
    """
    Run external programs and report their exit status.

    The runner never retries; callers own any retry policy. Programs are
    looked up on the PATH of the environment it was created with, and the
    child process gets that same environment.
    """

    def __init__(self, env: Optional[Dict[str, str]] = None, verbose: bool = True):
        self.env = env
        self.verbose = verbose

    def which(self, program: str) -> Optional[str]:
        path = self.env.get("PATH") if self.env is not None else None
        return shutil.which(program, path=path)

    def exists(self, program: str) -> bool:
        return self.which(program) is not None

    def run(
        self,
        program: str,
        args: Optional[List[str]] = None,
        inherit_io: bool = True,
        capture_stderr: bool = True,
        cwd=None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECOND,
    ) -> CommandResult:
        """
        Run a program to completion.

        Args:
            program: Program name, resolved on PATH
            args: Program arguments
            inherit_io: Stream output to the terminal; when False stdout is
                captured and returned in the result
            capture_stderr: With inherit_io False, also capture stderr into
                the result. When False stderr stays on the terminal, so
                progress logs remain visible and stdout holds only the
                program's own output
            cwd: Working directory of the child process
            timeout: Kill the child after this many seconds, None waits forever

        Returns:
            CommandResult with exit code 0

        Raises:
            CommandNotFound: program is not on PATH
            CommandFailed: program exited with a nonzero status
        """
        args = [str(a) for a in (args or [])]
        executable = self.which(program)
        if executable is None:
            raise CommandNotFound(program)

        if self.verbose:
            print(f"Executing: {format_command(program, args)}")

        start_mills = int(time.time() * 1000)
        pipe = None if inherit_io else subprocess.PIPE
        err_pipe = subprocess.STDOUT if pipe is not None and capture_stderr else None
        popen = subprocess.Popen(
            [executable] + args,
            cwd=str(cwd) if cwd else None,
            env=self.env,
            stdout=pipe,
            stderr=err_pipe,
        )
        timer = None
        if timeout:
            timer = Timer(timeout, lambda process: process.kill(), [popen])
        try:
            if timer:
                timer.start()
            stdout, _ = popen.communicate()
        finally:
            if timer:
                timer.cancel()

        err_code = popen.returncode
        output = None if inherit_io else decode_bytes(stdout)
        if timer and err_code == TIMEOUT_EXIT_CODE and not output:
            use_time = int(time.time() * 1000) - start_mills
            output = f"Failed for timeout({err_code}), use_time: {use_time}ms"
        if err_code != 0:
            raise CommandFailed(program, err_code, output or "")
        return CommandResult(err_code, output)
