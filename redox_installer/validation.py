#!/usr/bin/env python3
"""
Validation Module for Redox Installer

Pre-flight checks run before the pipeline is allowed to touch a disk: root
privileges, required host tools, Redox build artifacts, and the target disk.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import List

from redox_installer.config import InstallationConfig, FilesystemType, MIN_DISK_BYTES
from redox_installer.device_setup import DiskDetector, is_block_device
from redox_installer.logger import InstallerLogger, LogCategory


REQUIRED_TOOLS = [
    "parted",
    "mkfs.vfat",
    "lsblk",
    "mount",
    "umount",
    "sync",
    "wipefs",
    "partprobe",
    "blockdev",
]

BUILD_DIRECTORIES = [
    "build/x86_64",
    "cookbook/recipes/core/kernel",
    "cookbook/recipes/core/bootloader",
]


@dataclass
class ValidationResult:
    """Outcome of one pre-flight check."""
    check: str
    ok: bool
    issues: List[str] = field(default_factory=list)


class SystemValidator:
    """Runs the installer's pre-flight checks."""

    def __init__(self, logger: InstallerLogger = None):
        self.logger = logger

    def _record(self, result: ValidationResult) -> ValidationResult:
        if self.logger:
            if result.ok:
                self.logger.log_info(LogCategory.VALIDATION, result.check, "passed")
            else:
                self.logger.log_warning(LogCategory.VALIDATION, result.check,
                                        "; ".join(result.issues))
        return result

    def check_root(self) -> ValidationResult:
        issues = [] if os.geteuid() == 0 else ["The installer must be run as root"]
        return self._record(ValidationResult("root_privileges", not issues, issues))

    def check_required_tools(self, config: InstallationConfig = None) -> ValidationResult:
        """Every host tool the pipeline invokes must be on PATH."""
        tools = list(REQUIRED_TOOLS)
        if config and config.filesystem is FilesystemType.EXT4:
            tools.append("mkfs.ext4")

        issues = [f"Required command not found: {tool}" for tool in tools
                  if shutil.which(tool) is None]
        return self._record(ValidationResult("required_tools", not issues, issues))

    def check_build_artifacts(self, config: InstallationConfig) -> ValidationResult:
        """
        Check that Redox has been built under the configured build root.

        A failure here is advisory: the candidate search at install time
        may still find what it needs.
        """
        issues = []
        for relative in BUILD_DIRECTORIES:
            path = config.build_root / relative
            if not path.exists():
                issues.append(f"Build directory not found: {path}")

        if config.filesystem is FilesystemType.REDOXFS:
            for binary in (config.mkfs_binary, config.driver_binary):
                if not binary.exists():
                    issues.append(f"RedoxFS binary not found: {binary}. {config.redoxfs_build_hint}")

        return self._record(ValidationResult("build_artifacts", not issues, issues))

    def validate_disk(self, device: str) -> ValidationResult:
        issues = []
        if not os.path.exists(device):
            issues.append(f"{device} does not exist")
        elif not is_block_device(device):
            issues.append(f"{device} is not a block device")
        return self._record(ValidationResult("disk_device", not issues, issues))

    def check_disk_space(self, device: str) -> ValidationResult:
        """The disk must be at least 2 GB as reported by blockdev."""
        try:
            result = subprocess.run(['blockdev', '--getsize64', device],
                                    capture_output=True, text=True)
        except OSError as e:
            return self._record(ValidationResult(
                "disk_space", False, [f"Could not run blockdev: {e}"]))

        if result.returncode != 0:
            return self._record(ValidationResult(
                "disk_space", False, [f"Could not read the size of {device}: {result.stderr.strip()}"]))

        try:
            size_bytes = int(result.stdout.strip())
        except ValueError:
            return self._record(ValidationResult(
                "disk_space", False, [f"Unexpected blockdev output: {result.stdout.strip()!r}"]))

        if size_bytes < MIN_DISK_BYTES:
            return self._record(ValidationResult("disk_space", False, [
                f"Disk is too small ({DiskDetector.format_size(size_bytes)}); "
                f"at least {DiskDetector.format_size(MIN_DISK_BYTES)} is required"
            ]))
        return self._record(ValidationResult("disk_space", True))
