#!/usr/bin/env python3
"""
Logging Module for Redox Installer

Session logging for a disk installation run: a human-readable log file, an
errors-only log file, and a JSON-lines record of every operation, command and
best-effort outcome, so a failed run can be diagnosed after the fact.
"""

import logging
import json
import time
import sys
from typing import Dict, Any, Optional, List, Callable
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, asdict
from enum import Enum

from redox_installer.errors import InstallerError, NonFatalOutcome


class LogLevel(Enum):
    """Log levels for installer operations."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(Enum):
    """Categories for the installer's operations."""
    SYSTEM = "system"
    VALIDATION = "validation"
    PARTITIONING = "partitioning"
    FORMATTING = "formatting"
    MOUNTING = "mounting"
    BOOTLOADER = "bootloader"
    FILESYSTEM = "filesystem"
    KERNEL = "kernel"
    CONFIG = "config"
    USER_ACTION = "user_action"


@dataclass
class LogEntry:
    """Structured log entry for one installer event."""
    timestamp: str
    level: str
    category: str
    operation: str
    message: str
    details: Optional[Dict[str, Any]] = None
    duration_ms: Optional[int] = None
    success: Optional[bool] = None
    error_code: Optional[str] = None


_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


class InstallerLogger:
    """Session logger for one installer run."""

    def __init__(self, log_dir: Optional[Path] = None, session_id: Optional[str] = None,
                 console: bool = True):
        """
        Initialize the session logger.

        Args:
            log_dir: Directory for log files (default: ~/.redox_installer_logs)
            session_id: Unique session identifier (default: timestamp-based)
            console: Also echo WARNING and above to stderr
        """
        self.log_dir = Path(log_dir) if log_dir else Path.home() / ".redox_installer_logs"
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.session_id = session_id or f"redox_install_{int(time.time())}"
        self.session_start = time.time()

        self.main_log_file = self.log_dir / f"{self.session_id}.log"
        self.json_log_file = self.log_dir / f"{self.session_id}.json"
        self.error_log_file = self.log_dir / f"{self.session_id}_errors.log"

        self._setup_loggers(console)

        self.operations: List[LogEntry] = []
        self.current_operation: Optional[str] = None
        self.current_category: Optional[LogCategory] = None
        self.operation_start_time: Optional[float] = None

        self.log_info(LogCategory.SYSTEM, "session_start",
                      f"Installer session started: {self.session_id}")

    def _setup_loggers(self, console: bool):
        self.main_logger = logging.getLogger(f"redox_installer.{self.session_id}")
        self.main_logger.setLevel(logging.DEBUG)
        self.main_logger.propagate = False
        self.main_logger.handlers.clear()

        main_handler = logging.FileHandler(self.main_log_file)
        main_handler.setLevel(logging.DEBUG)
        main_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        self.main_logger.addHandler(main_handler)

        if console:
            # stderr keeps the rich progress display on stdout readable
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
            self.main_logger.addHandler(console_handler)

        self.error_logger = logging.getLogger(f"redox_installer.{self.session_id}.errors")
        self.error_logger.setLevel(logging.WARNING)
        self.error_logger.propagate = False
        self.error_logger.handlers.clear()

        error_handler = logging.FileHandler(self.error_log_file)
        error_handler.setLevel(logging.WARNING)
        error_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        ))
        self.error_logger.addHandler(error_handler)

    def close(self):
        """Release the file handlers held by this session."""
        for log in (self.main_logger, self.error_logger):
            for handler in list(log.handlers):
                handler.close()
                log.removeHandler(handler)

    def start_operation(self, category: LogCategory, operation: str, message: str,
                        details: Optional[Dict[str, Any]] = None):
        """
        Start tracking a new operation.

        Args:
            category: Operation category
            operation: Operation name
            message: Description of the operation
            details: Additional operation details
        """
        self.current_operation = operation
        self.current_category = category
        self.operation_start_time = time.time()

        self.log_info(category, operation, f"Started: {message}", details)

    def end_operation(self, success: bool, message: str = None,
                      error_code: str = None, details: Optional[Dict[str, Any]] = None):
        """
        End the current operation and log its result and duration.

        Args:
            success: Whether the operation succeeded
            message: Final message for the operation
            error_code: Error code if the operation failed
            details: Additional details about the result
        """
        if not self.current_operation or self.operation_start_time is None:
            self.log_warning(LogCategory.SYSTEM, "logging_error",
                             "end_operation called without active operation")
            return

        duration_ms = int((time.time() - self.operation_start_time) * 1000)

        level = LogLevel.INFO if success else LogLevel.ERROR
        final_message = message or f"{'Completed' if success else 'Failed'}: {self.current_operation}"

        self._log_entry(level, self.current_category or LogCategory.SYSTEM,
                        self.current_operation, final_message, details, duration_ms,
                        success, error_code)

        self.current_operation = None
        self.current_category = None
        self.operation_start_time = None

    def log_debug(self, category: LogCategory, operation: str, message: str,
                  details: Optional[Dict[str, Any]] = None):
        """Log debug message."""
        self._log_entry(LogLevel.DEBUG, category, operation, message, details)

    def log_info(self, category: LogCategory, operation: str, message: str,
                 details: Optional[Dict[str, Any]] = None):
        """Log info message."""
        self._log_entry(LogLevel.INFO, category, operation, message, details)

    def log_warning(self, category: LogCategory, operation: str, message: str,
                    details: Optional[Dict[str, Any]] = None):
        """Log warning message."""
        self._log_entry(LogLevel.WARNING, category, operation, message, details)

    def log_error(self, category: LogCategory, operation: str, message: str,
                  details: Optional[Dict[str, Any]] = None, error_code: str = None):
        """Log error message."""
        self._log_entry(LogLevel.ERROR, category, operation, message, details,
                        error_code=error_code)

    def log_critical(self, category: LogCategory, operation: str, message: str,
                     details: Optional[Dict[str, Any]] = None, error_code: str = None):
        """Log critical message."""
        self._log_entry(LogLevel.CRITICAL, category, operation, message, details,
                        error_code=error_code)

    def log_exception(self, category: LogCategory, operation: str, error: InstallerError):
        """Log an installer error together with its structured context."""
        self.log_error(category, operation, str(error), error.context,
                       error_code=error.category.upper())

    def _log_entry(self, level: LogLevel, category: LogCategory, operation: str,
                   message: str, details: Optional[Dict[str, Any]] = None,
                   duration_ms: Optional[int] = None, success: Optional[bool] = None,
                   error_code: Optional[str] = None):
        entry = LogEntry(
            timestamp=datetime.now().isoformat(),
            level=level.value,
            category=category.value,
            operation=operation,
            message=message,
            details=details,
            duration_ms=duration_ms,
            success=success,
            error_code=error_code
        )

        self.operations.append(entry)

        log_message = f"[{category.value}:{operation}] {message}"
        if details:
            log_message += f" | Details: {json.dumps(details, default=str)}"

        self.main_logger.log(_PY_LEVELS[level], log_message)
        if level in (LogLevel.WARNING, LogLevel.ERROR, LogLevel.CRITICAL):
            self.error_logger.log(_PY_LEVELS[level], log_message)

        self._write_json_entry(entry)

    def _write_json_entry(self, entry: LogEntry):
        try:
            with open(self.json_log_file, 'a') as f:
                json.dump(asdict(entry), f, default=str)
                f.write('\n')
        except OSError as e:
            self.main_logger.error(f"Failed to write JSON log entry: {e}")

    def log_command_execution(self, command: List[str], return_code: int,
                              stdout: str = None, stderr: str = None):
        """Log one external command and its result."""
        details = {
            "command": command,
            "return_code": return_code,
            "stdout": stdout[:1000] if stdout else None,
            "stderr": stderr[:1000] if stderr else None
        }

        if return_code == 0:
            self.log_debug(LogCategory.SYSTEM, "command_exec",
                           f"Command executed successfully: {' '.join(command)}", details)
        else:
            self.log_warning(LogCategory.SYSTEM, "command_exec",
                             f"Command failed: {' '.join(command)}", details)

    def log_outcome(self, category: LogCategory, outcome: NonFatalOutcome):
        """Record a best-effort sub-step. Failures are warnings, never errors."""
        if outcome.ok:
            self.log_debug(category, outcome.step, outcome.detail or "ok")
        else:
            self.log_warning(category, outcome.step,
                             f"Non-fatal failure: {outcome.detail}")

    def log_progress_update(self, operation: str, progress_percent: float,
                            message: str = None):
        """Log progress update for long-running operations."""
        details = {"progress_percent": progress_percent}
        if message:
            details["progress_message"] = message

        self.log_debug(LogCategory.SYSTEM, operation,
                       f"Progress: {progress_percent:.1f}%", details)

    def create_session_summary(self) -> Dict[str, Any]:
        """Create a summary of the current session."""
        session_duration = time.time() - self.session_start

        category_counts: Dict[str, int] = {}
        success_counts = {"success": 0, "failure": 0, "unknown": 0}
        error_codes: Dict[str, int] = {}

        for entry in self.operations:
            category_counts[entry.category] = category_counts.get(entry.category, 0) + 1

            if entry.success is True:
                success_counts["success"] += 1
            elif entry.success is False:
                success_counts["failure"] += 1
            else:
                success_counts["unknown"] += 1

            if entry.error_code:
                error_codes[entry.error_code] = error_codes.get(entry.error_code, 0) + 1

        return {
            "session_id": self.session_id,
            "start_time": datetime.fromtimestamp(self.session_start).isoformat(),
            "duration_seconds": int(session_duration),
            "total_operations": len(self.operations),
            "category_counts": category_counts,
            "success_counts": success_counts,
            "error_codes": error_codes,
            "log_files": {
                "main_log": str(self.main_log_file),
                "json_log": str(self.json_log_file),
                "error_log": str(self.error_log_file)
            }
        }

    def finalize_session(self, success: bool = True, final_message: str = None):
        """Log the session end and write the summary file next to the logs."""
        summary = self.create_session_summary()

        final_msg = final_message or f"Session {'completed successfully' if success else 'ended with errors'}"

        self.log_info(LogCategory.SYSTEM, "session_end", final_msg, {
            "session_summary": summary,
            "total_duration_seconds": summary["duration_seconds"]
        })

        summary_file = self.log_dir / f"{self.session_id}_summary.json"
        try:
            with open(summary_file, 'w') as f:
                json.dump(summary, f, indent=2, default=str)
        except OSError as e:
            self.main_logger.error(f"Failed to write session summary: {e}")

    def get_recent_errors(self, limit: int = 10) -> List[LogEntry]:
        """Get recent error entries."""
        errors = [entry for entry in self.operations
                  if entry.level in [LogLevel.ERROR.value, LogLevel.CRITICAL.value]]
        return errors[-limit:]


def create_progress_callback(logger: InstallerLogger, category: LogCategory,
                             operation: str) -> Callable[[str, Optional[float]], None]:
    """
    Create a progress callback that records updates in the session log.

    Args:
        logger: InstallerLogger instance
        category: Log category for progress updates
        operation: Operation name

    Returns:
        Callback accepting (message, progress_percent)
    """
    def progress_callback(message: str, progress: float = None):
        if progress is not None:
            logger.log_progress_update(operation, progress, message)
        else:
            logger.log_debug(category, operation, message)

    return progress_callback
