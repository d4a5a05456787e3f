#!/usr/bin/env python3
"""
Partitioner Module for Redox Installer

Lays out the target disk as GPT with two partitions: an EFI system partition
at the front and a root partition filling the rest of the disk.
"""

import os
from dataclasses import dataclass

from redox_installer.command import CommandRunner
from redox_installer.config import InstallationConfig
from redox_installer.errors import StageTimeoutError
from redox_installer.logger import LogCategory
from redox_installer.polling import wait_until


@dataclass(frozen=True)
class PartitionLayout:
    """Partition device paths derived from the disk path."""
    disk: str
    efi_partition: str
    root_partition: str
    efi_size_mb: int


def partition_device_name(disk: str, number: int) -> str:
    """
    Device path of a partition on disk.

    NVMe and MMC device names end in a digit, so their partitions take a 'p'
    separator (/dev/nvme0n1p1); SATA-style names take the number directly
    (/dev/sda1).
    """
    if "nvme" in disk or "mmcblk" in disk:
        return f"{disk}p{number}"
    return f"{disk}{number}"


def compute_layout(disk: str, config: InstallationConfig) -> PartitionLayout:
    """Pure mapping from disk path and config to the two partition paths."""
    return PartitionLayout(
        disk=disk,
        efi_partition=partition_device_name(disk, 1),
        root_partition=partition_device_name(disk, 2),
        efi_size_mb=config.efi_size_mb,
    )


class DiskPartitioner:
    """Writes the partition table and waits for the kernel to expose it."""

    def __init__(self, runner: CommandRunner, clock=None, sleep=None):
        self.runner = runner
        self.logger = runner.logger
        self._wait_kwargs = {}
        if clock is not None:
            self._wait_kwargs["clock"] = clock
        if sleep is not None:
            self._wait_kwargs["sleep"] = sleep

    def create_partitions(self, disk: str, config: InstallationConfig,
                          progress_callback=None) -> PartitionLayout:
        """
        Wipe the disk and create the EFI + root GPT layout.

        Args:
            disk: Whole-disk device path
            config: Installation settings (EFI size, timeouts)
            progress_callback: Optional callback for progress messages

        Returns:
            PartitionLayout whose device nodes are known to exist

        Raises:
            ToolExitError: parted or sync failed
            StageTimeoutError: The partition nodes never appeared
        """
        efi_end = f"{config.efi_size_mb}MiB"

        if progress_callback:
            progress_callback("Wiping existing signatures...")
        self.runner.best_effort(['wipefs', '-a', disk], "wipe_disk_signatures",
                                LogCategory.PARTITIONING)
        self.runner.run(['sync'])

        if progress_callback:
            progress_callback("Creating GPT partition table...")
        self.runner.run(['parted', '-s', disk, 'mklabel', 'gpt'])

        if progress_callback:
            progress_callback(f"Creating EFI partition ({config.efi_size_mb} MB)...")
        self.runner.run(['parted', '-s', disk, 'mkpart', 'primary', 'fat32', '1MiB', efi_end])
        self.runner.run(['parted', '-s', disk, 'set', '1', 'esp', 'on'])

        if progress_callback:
            progress_callback("Creating root partition...")
        self.runner.run(['parted', '-s', disk, 'mkpart', 'primary', efi_end, '100%'])

        if progress_callback:
            progress_callback("Re-reading partition table...")
        self.runner.run(['sync'])
        # The node check below is the real verification
        self.runner.best_effort(['partprobe', disk], "reread_partition_table",
                                LogCategory.PARTITIONING)

        layout = compute_layout(disk, config)
        self.wait_for_partitions(layout, config)

        self.logger.log_info(LogCategory.PARTITIONING, "create_partitions",
                             "Partitions created", {
                                 "efi_partition": layout.efi_partition,
                                 "root_partition": layout.root_partition,
                                 "efi_size_mb": layout.efi_size_mb,
                             })
        return layout

    def wait_for_partitions(self, layout: PartitionLayout, config: InstallationConfig):
        """Block until both partition device nodes exist."""
        nodes = (layout.efi_partition, layout.root_partition)
        try:
            wait_until(lambda: all(self._node_exists(node) for node in nodes),
                       timeout=config.settle_timeout, interval=config.poll_interval,
                       description=f"partition nodes {', '.join(nodes)} "
                                   f"(partitions not created)",
                       **self._wait_kwargs)
        except StageTimeoutError as e:
            self.logger.log_exception(LogCategory.PARTITIONING, "wait_for_partitions", e)
            raise

    def _node_exists(self, path: str) -> bool:
        return os.path.exists(path)
