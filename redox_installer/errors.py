#!/usr/bin/env python3
"""
Error Types for Redox Installer

Every failure raised by an installation stage is an InstallerError subclass
tagged with a category and carrying the structured context needed to act on it
(tool name, argv, paths, diagnostic excerpts).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class InstallerError(Exception):
    """Base class for all installer failures."""

    category = "installer"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        return self.message


class ToolLaunchError(InstallerError):
    """An external tool could not be started at all."""

    category = "tool_launch"

    def __init__(self, tool: str, argv: List[str], reason: str):
        super().__init__(f"Could not launch {tool}: {reason}",
                         tool=tool, argv=list(argv), reason=reason)
        self.tool = tool
        self.argv = list(argv)
        self.reason = reason


class ToolExitError(InstallerError):
    """An external tool ran but exited with a non-zero status."""

    category = "tool_exit"

    def __init__(self, tool: str, argv: List[str], returncode: int,
                 stdout: str = "", stderr: str = ""):
        excerpt = (stderr or stdout or "").strip()
        message = f"{tool} exited with status {returncode}"
        if excerpt:
            message += f": {excerpt[:500]}"
        super().__init__(message, tool=tool, argv=list(argv), returncode=returncode,
                         stderr=stderr)
        self.tool = tool
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ParseError(InstallerError):
    """Tool output did not have the expected shape."""

    category = "parse"

    def __init__(self, source: str, message: str, excerpt: str = ""):
        full = f"{source}: {message}"
        if excerpt:
            full += f" (output: {excerpt.strip()[:300]!r})"
        super().__init__(full, source=source, excerpt=excerpt)
        self.source = source
        self.excerpt = excerpt


class VerificationError(InstallerError):
    """A post-condition check on disk or filesystem state failed."""

    category = "verification"

    def __init__(self, subject: str, message: str, expected: Any = None,
                 actual: Any = None, hint: Optional[str] = None):
        full = f"{subject}: {message}"
        if hint:
            full += f"\n   {hint}"
        super().__init__(full, subject=subject, expected=expected, actual=actual,
                         hint=hint)
        self.subject = subject
        self.expected = expected
        self.actual = actual
        self.hint = hint


class StageTimeoutError(InstallerError):
    """A bounded wait expired before its condition became true."""

    category = "timeout"

    def __init__(self, description: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {description}",
                         description=description, timeout=timeout)
        self.description = description
        self.timeout = timeout


@dataclass(frozen=True)
class NonFatalOutcome:
    """Result of a best-effort sub-step. Logged, never raised."""
    step: str
    ok: bool
    detail: str = ""
