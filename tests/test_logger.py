#!/usr/bin/env python3
"""Unit tests for the session logger."""

import json
import sys
import unittest
import tempfile
import shutil
from pathlib import Path

# Add project root to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent))

from redox_installer.errors import NonFatalOutcome, ToolExitError
from redox_installer.logger import InstallerLogger, LogCategory, create_progress_callback


class TestInstallerLogger(unittest.TestCase):
    """Test cases for InstallerLogger."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.logger = InstallerLogger(log_dir=self.temp_dir, session_id="unit", console=False)

    def tearDown(self):
        self.logger.close()
        shutil.rmtree(self.temp_dir)

    def _json_entries(self):
        with open(self.logger.json_log_file) as f:
            return [json.loads(line) for line in f]

    def test_session_files_created(self):
        self.assertEqual(self.logger.main_log_file, self.temp_dir / "unit.log")
        self.assertTrue(self.logger.main_log_file.exists())
        self.assertEqual(self._json_entries()[0]["operation"], "session_start")

    def test_operation_records_duration_and_result(self):
        self.logger.start_operation(LogCategory.PARTITIONING, "create_partitions",
                                    "Creating partitions")
        self.logger.end_operation(True)

        last = self._json_entries()[-1]
        self.assertEqual(last["category"], "partitioning")
        self.assertEqual(last["operation"], "create_partitions")
        self.assertTrue(last["success"])
        self.assertIsNotNone(last["duration_ms"])

    def test_end_without_start_warns(self):
        self.logger.end_operation(True)
        self.assertEqual(self.logger.operations[-1].operation, "logging_error")

    def test_log_exception_carries_context(self):
        error = ToolExitError("parted", ["parted", "-s", "/dev/sdX"], 1, "", "boom")

        self.logger.log_exception(LogCategory.PARTITIONING, "create_partitions", error)

        entry = self.logger.get_recent_errors()[-1]
        self.assertEqual(entry.error_code, "TOOL_EXIT")
        self.assertEqual(entry.details["tool"], "parted")
        self.assertIn("boom", self.logger.error_log_file.read_text())

    def test_outcomes(self):
        self.logger.log_outcome(LogCategory.MOUNTING, NonFatalOutcome("sync", True))
        self.logger.log_outcome(LogCategory.MOUNTING,
                                NonFatalOutcome("umount_root", False, "umount exited with status 32"))

        ok, failed = self.logger.operations[-2:]
        self.assertEqual(ok.level, "DEBUG")
        self.assertEqual(failed.level, "WARNING")
        self.assertIn("status 32", failed.message)
        self.assertEqual(self.logger.get_recent_errors(), [])

    def test_command_output_truncated(self):
        self.logger.log_command_execution(["dd"], 1, stdout="x" * 5000, stderr="")

        entry = self.logger.operations[-1]
        self.assertEqual(entry.level, "WARNING")
        self.assertEqual(len(entry.details["stdout"]), 1000)
        self.assertIsNone(entry.details["stderr"])

    def test_session_summary_written(self):
        self.logger.log_error(LogCategory.KERNEL, "install_kernel", "no kernel",
                              error_code="VERIFICATION")

        self.logger.finalize_session(success=False)

        summary = json.loads((self.temp_dir / "unit_summary.json").read_text())
        self.assertEqual(summary["session_id"], "unit")
        self.assertEqual(summary["error_codes"], {"VERIFICATION": 1})

    def test_progress_callback(self):
        callback = create_progress_callback(self.logger, LogCategory.FILESYSTEM, "populate")

        callback("Copying", 40.0)
        callback("Still copying")

        with_percent, without = self.logger.operations[-2:]
        self.assertEqual(with_percent.details["progress_percent"], 40.0)
        self.assertEqual(without.message, "Still copying")


if __name__ == '__main__':
    unittest.main()
