#!/usr/bin/env python3
"""
External Tool Invoker for Redox Installer

Every disk-mutating step goes through CommandRunner: the command is run to
completion, its output captured, and the result either returned or turned into
a typed InstallerError.
"""

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from redox_installer.errors import NonFatalOutcome, ToolExitError, ToolLaunchError
from redox_installer.logger import InstallerLogger, LogCategory


@dataclass(frozen=True)
class ToolResult:
    """Captured result of one external tool invocation."""
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def tool(self) -> str:
        return os.path.basename(self.argv[0]) if self.argv else ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external tools and maps their failures onto installer errors."""

    def __init__(self, logger: InstallerLogger):
        self.logger = logger

    def run(self, argv: List[str], check: bool = True,
            input_text: Optional[str] = None) -> ToolResult:
        """
        Run a command synchronously and capture its output.

        Args:
            argv: Program and arguments
            check: Raise ToolExitError on a non-zero exit status
            input_text: Optional text fed to the tool's stdin

        Returns:
            ToolResult with exit status, stdout and stderr

        Raises:
            ToolLaunchError: The program could not be started
            ToolExitError: The program exited non-zero and check is set
        """
        argv = [str(a) for a in argv]
        tool = os.path.basename(argv[0])
        self.logger.log_debug(LogCategory.SYSTEM, "command_start",
                              f"CMD {shlex.join(argv)}")

        try:
            completed = subprocess.run(argv, capture_output=True, text=True,
                                       input=input_text)
        except OSError as e:
            error = ToolLaunchError(tool, argv, e.strerror or str(e))
            self.logger.log_exception(LogCategory.SYSTEM, "command_exec", error)
            raise error from e

        result = ToolResult(argv, completed.returncode,
                            completed.stdout or "", completed.stderr or "")
        self.logger.log_command_execution(argv, result.returncode,
                                          result.stdout, result.stderr)

        if check and not result.success:
            raise ToolExitError(tool, argv, result.returncode, result.stdout, result.stderr)
        return result

    def best_effort(self, argv: List[str], step: str,
                    category: LogCategory = LogCategory.SYSTEM) -> NonFatalOutcome:
        """Run a command whose failure must not stop the installation."""
        try:
            result = self.run(argv, check=False)
        except ToolLaunchError as e:
            outcome = NonFatalOutcome(step, False, str(e))
        else:
            if result.success:
                outcome = NonFatalOutcome(step, True, shlex.join(result.argv))
            else:
                detail = (result.stderr or result.stdout).strip()
                outcome = NonFatalOutcome(
                    step, False, f"{result.tool} exited with status {result.returncode}"
                    + (f": {detail}" if detail else ""))

        self.logger.log_outcome(category, outcome)
        return outcome

    def spawn(self, argv: List[str]) -> subprocess.Popen:
        """
        Start a long-lived background process.

        The caller owns the returned handle and must terminate it.
        """
        argv = [str(a) for a in argv]
        tool = os.path.basename(argv[0])
        output_log = self.logger.log_dir / f"{self.logger.session_id}_{tool}.log"
        self.logger.log_info(LogCategory.SYSTEM, "command_spawn",
                             f"SPAWN {shlex.join(argv)}",
                             {"output_log": str(output_log)})
        # The child inherits the descriptor; a pipe would fill up and stall it
        with open(output_log, 'ab') as output:
            try:
                return subprocess.Popen(argv, stdout=output, stderr=subprocess.STDOUT)
            except OSError as e:
                error = ToolLaunchError(tool, argv, e.strerror or str(e))
                self.logger.log_exception(LogCategory.SYSTEM, "command_spawn", error)
                raise error from e
