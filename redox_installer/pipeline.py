#!/usr/bin/env python3
"""
Pipeline Controller for Redox Installer

Runs the installation stages strictly in order. The first failing stage ends
the run; its error is returned unchanged in the PipelineResult. Nothing done
by earlier stages is undone, and on failure the partitions are left mounted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from redox_installer.command import CommandRunner
from redox_installer.config import InstallationConfig
from redox_installer.device_setup import DiskDetector, is_block_device
from redox_installer.errors import InstallerError, NonFatalOutcome, VerificationError
from redox_installer.formatter import FormatResult, PartitionFormatter
from redox_installer.logger import LogCategory, create_progress_callback
from redox_installer.mounter import MountOrchestrator, MountState
from redox_installer.partitioner import DiskPartitioner, PartitionLayout
from redox_installer.populator import FilesystemPopulator


class Stage(Enum):
    """Installation stages in execution order."""
    VERIFY_DISK = ("verify_disk", "Verifying disk", LogCategory.VALIDATION)
    UNMOUNT_EXISTING = ("unmount_existing", "Unmounting existing partitions", LogCategory.MOUNTING)
    CREATE_PARTITIONS = ("create_partitions", "Creating partitions", LogCategory.PARTITIONING)
    FORMAT_PARTITIONS = ("format_partitions", "Formatting partitions", LogCategory.FORMATTING)
    MOUNT_PARTITIONS = ("mount_partitions", "Mounting partitions", LogCategory.MOUNTING)
    INSTALL_BOOTLOADER = ("install_bootloader", "Installing bootloader", LogCategory.BOOTLOADER)
    INSTALL_FILESYSTEM = ("install_filesystem", "Installing filesystem", LogCategory.FILESYSTEM)
    INSTALL_KERNEL = ("install_kernel", "Installing kernel", LogCategory.KERNEL)
    CREATE_CONFIG_FILES = ("create_config_files", "Creating configuration files", LogCategory.CONFIG)
    UNMOUNT_PARTITIONS = ("unmount_partitions", "Unmounting partitions", LogCategory.MOUNTING)

    def __init__(self, key: str, title: str, category: LogCategory):
        self.key = key
        self.title = title
        self.category = category


@dataclass
class PipelineResult:
    """Outcome of one installation run."""
    success: bool = False
    completed_stages: List[Stage] = field(default_factory=list)
    failed_stage: Optional[Stage] = None
    error: Optional[InstallerError] = None
    layout: Optional[PartitionLayout] = None
    format_result: Optional[FormatResult] = None
    mount_state: Optional[MountState] = None
    outcomes: List[NonFatalOutcome] = field(default_factory=list)

    @property
    def warnings(self) -> List[NonFatalOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


ProgressCallback = Callable[[str, Optional[float]], None]

# Stages that leave the disk contents as they were
NON_DESTRUCTIVE_STAGES = (Stage.VERIFY_DISK, Stage.UNMOUNT_EXISTING)


class InstallationPipeline:
    """Provisions one disk with Redox OS."""

    def __init__(self, disk: str, config: InstallationConfig, runner: CommandRunner,
                 partitioner: DiskPartitioner = None, formatter: PartitionFormatter = None,
                 mounter: MountOrchestrator = None, populator: FilesystemPopulator = None,
                 detector: DiskDetector = None):
        self.disk = disk
        self.config = config
        self.runner = runner
        self.logger = runner.logger
        self.detector = detector or DiskDetector(runner.logger)
        self.partitioner = partitioner or DiskPartitioner(runner)
        self.formatter = formatter or PartitionFormatter(runner)
        self.mounter = mounter or MountOrchestrator(runner, config, self.detector)
        self.populator = populator or FilesystemPopulator(runner, config)

    def run(self, progress_callback: ProgressCallback = None) -> PipelineResult:
        """
        Execute every stage in order, stopping at the first failure.

        Args:
            progress_callback: Optional callback receiving (message, percent)

        Returns:
            PipelineResult; on failure it names the failed stage and its error
        """
        result = PipelineResult()
        stages = list(Stage)
        total = len(stages)

        self.logger.log_info(LogCategory.SYSTEM, "pipeline_start",
                             f"Installing Redox OS on {self.disk}", {
                                 "efi_size_mb": self.config.efi_size_mb,
                                 "filesystem": self.config.filesystem.value,
                                 "build_root": str(self.config.build_root),
                             })

        for index, stage in enumerate(stages):
            percent = index * 100.0 / total
            if progress_callback:
                progress_callback(f"{stage.title}...", percent)

            record = create_progress_callback(self.logger, stage.category, stage.key)

            def sub_progress(message: str, _stage=stage, _percent=percent, _record=record):
                _record(message)
                if progress_callback:
                    progress_callback(f"{_stage.title}: {message}", _percent)

            self.logger.start_operation(stage.category, stage.key, stage.title)
            try:
                try:
                    self._run_stage(stage, result, sub_progress)
                except OSError as e:
                    raise VerificationError(str(e.filename or stage.key),
                                            f"file operation failed: {e.strerror or e}") from e
            except InstallerError as e:
                self.logger.log_exception(stage.category, stage.key, e)
                self.logger.end_operation(False, f"{stage.title} failed: {e}",
                                          error_code=e.category.upper())
                if stage not in NON_DESTRUCTIVE_STAGES:
                    self.logger.log_critical(
                        LogCategory.SYSTEM, "pipeline_abort",
                        f"{self.disk} was modified and is left partially installed",
                        {"failed_stage": stage.key,
                         "completed_stages": [s.key for s in result.completed_stages]},
                        error_code=e.category.upper())
                result.failed_stage = stage
                result.error = e
                return result

            self.logger.end_operation(True)
            result.completed_stages.append(stage)

        if progress_callback:
            progress_callback("Installation complete", 100.0)
        result.success = True
        return result

    def _run_stage(self, stage: Stage, result: PipelineResult, progress):
        if stage is Stage.VERIFY_DISK:
            self.verify_disk()
        elif stage is Stage.UNMOUNT_EXISTING:
            result.outcomes.extend(self.mounter.unmount_existing(self.disk))
        elif stage is Stage.CREATE_PARTITIONS:
            result.layout = self.partitioner.create_partitions(self.disk, self.config, progress)
        elif stage is Stage.FORMAT_PARTITIONS:
            result.format_result = self.formatter.format_partitions(
                result.layout, self.config, progress)
        elif stage is Stage.MOUNT_PARTITIONS:
            result.mount_state = self.mounter.mount_all(result.layout)
        elif stage is Stage.INSTALL_BOOTLOADER:
            bootloader = self.populator.install_bootloader(result.mount_state, self.disk)
            result.outcomes.append(bootloader.boot_entry)
        elif stage is Stage.INSTALL_FILESYSTEM:
            self.populator.install_filesystem(result.mount_state, progress)
        elif stage is Stage.INSTALL_KERNEL:
            self.populator.install_kernel(result.mount_state)
        elif stage is Stage.CREATE_CONFIG_FILES:
            self.populator.create_config_files(result.mount_state, result.format_result)
        elif stage is Stage.UNMOUNT_PARTITIONS:
            result.outcomes.extend(self.mounter.unmount_all(result.mount_state))

    def verify_disk(self):
        """The target must be an existing block device."""
        if not is_block_device(self.disk):
            raise VerificationError(self.disk, "not an existing block device",
                                    expected="block device")
        if self.detector.is_disk_mounted(self.disk):
            self.logger.log_info(LogCategory.VALIDATION, "verify_disk",
                                 f"{self.disk} has mounted partitions; they will be unmounted")
