"""Shared fixtures for the installer tests: a scripted stand-in for external tools."""

import os
import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from redox_installer.command import CommandRunner
from redox_installer.logger import InstallerLogger


class FakeTools:
    """
    Callable replacement for subprocess.run.

    Responses are keyed by tool basename; each value is a (returncode, stdout,
    stderr) tuple or a callable taking argv and returning one. Unknown tools
    succeed with no output. Every argv is recorded in self.calls.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        response = self.responses.get(os.path.basename(argv[0]), (0, "", ""))
        if callable(response):
            response = response(list(argv))
        if isinstance(response, BaseException):
            raise response
        returncode, stdout, stderr = response
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)

    def invocations(self, tool):
        return [call for call in self.calls if os.path.basename(call[0]) == tool]


class FakeClock:
    """Deterministic clock; sleeping advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_runner(log_dir):
    logger = InstallerLogger(log_dir=Path(log_dir), session_id="test_session", console=False)
    return CommandRunner(logger)


def write_file(path, content=b"x"):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content)
    else:
        path.write_bytes(content)
    return path
