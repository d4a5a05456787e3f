#!/usr/bin/env python3
"""
Formatter Module for Redox Installer

Formats the EFI partition as FAT32 and the root partition as RedoxFS or ext4.

redoxfs-mkfs reports success on stderr rather than through its exit status,
so a RedoxFS format only counts once the "created filesystem" marker has been
seen and the volume UUID has been read from the same output.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from redox_installer.command import CommandRunner
from redox_installer.config import (
    InstallationConfig, FilesystemType, EFI_VOLUME_LABEL, EXT4_VOLUME_LABEL,
)
from redox_installer.errors import ParseError, VerificationError
from redox_installer.logger import LogCategory
from redox_installer.partitioner import PartitionLayout


SUCCESS_MARKER = "created filesystem"
IDENTITY_KEYWORD = "uuid"
ZEROED_MEGABYTES = 10


@dataclass(frozen=True)
class VolumeIdentity:
    """Volume UUID reported by redoxfs-mkfs."""
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FormatResult:
    """What the format stage hands to the later stages."""
    layout: PartitionLayout
    filesystem: FilesystemType
    identity: Optional[VolumeIdentity] = None

    @property
    def root_id(self) -> str:
        """Value for root= in the boot configuration."""
        return self.identity.value if self.identity else self.layout.root_partition


def require_success_marker(stream: str, tool: str = "redoxfs-mkfs"):
    """Raise VerificationError unless the formatter printed its success marker."""
    if SUCCESS_MARKER not in stream:
        raise VerificationError(
            tool, f"success marker '{SUCCESS_MARKER}' missing from output",
            expected=SUCCESS_MARKER, actual=stream.strip()[:300])


def parse_volume_identity(stream: str, tool: str = "redoxfs-mkfs") -> VolumeIdentity:
    """
    Extract the volume UUID from formatter output.

    The identity is the last whitespace-separated token of the first line
    mentioning 'uuid'.

    Raises:
        ParseError: No such line, or the line has no token
    """
    for line in stream.splitlines():
        if IDENTITY_KEYWORD in line:
            tokens = line.split()
            if not tokens:
                break
            return VolumeIdentity(tokens[-1])

    raise ParseError(tool, "no volume UUID found in output", excerpt=stream)


class PartitionFormatter:
    """Creates filesystems on a freshly partitioned disk."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner
        self.logger = runner.logger

    def format_partitions(self, layout: PartitionLayout, config: InstallationConfig,
                          progress_callback=None) -> FormatResult:
        """
        Format both partitions.

        Args:
            layout: Partition paths from the partitioning stage
            config: Installation settings
            progress_callback: Optional callback for progress messages

        Returns:
            FormatResult carrying the volume identity for RedoxFS roots
        """
        if progress_callback:
            progress_callback("Formatting EFI partition (FAT32)...")
        self.format_efi(layout.efi_partition)

        if progress_callback:
            progress_callback(f"Formatting root partition ({config.filesystem.display_name})...")

        identity = None
        if config.filesystem is FilesystemType.REDOXFS:
            identity = self.format_redoxfs(layout.root_partition, config)
        else:
            self.format_ext4(layout.root_partition)

        return FormatResult(layout, config.filesystem, identity)

    def format_efi(self, partition: str):
        self.runner.run(['mkfs.vfat', '-F', '32', '-n', EFI_VOLUME_LABEL, partition])
        self.logger.log_info(LogCategory.FORMATTING, "format_efi",
                             f"{partition} formatted as FAT32")

    def format_ext4(self, partition: str):
        self.runner.run(['mkfs.ext4', '-F', '-L', EXT4_VOLUME_LABEL, partition])
        self.logger.log_info(LogCategory.FORMATTING, "format_root",
                             f"{partition} formatted as ext4")

    def format_redoxfs(self, partition: str, config: InstallationConfig) -> VolumeIdentity:
        """
        Format partition as RedoxFS and return the new volume identity.

        Raises:
            VerificationError: Formatter missing, empty partition, or no success marker
            ParseError: The formatter output carried no UUID
            ToolExitError: A required tool exited non-zero
        """
        mkfs = config.mkfs_binary
        if not mkfs.exists():
            raise VerificationError("redoxfs-mkfs", f"formatter not found at {mkfs}",
                                    hint=config.redoxfs_build_hint)

        self._require_nonzero_size(partition)

        # Some formatters refuse to overwrite a filesystem they recognise
        self.runner.best_effort(['wipefs', '-a', partition], "wipe_root_signatures",
                                LogCategory.FORMATTING)
        self.runner.best_effort(['dd', 'if=/dev/zero', f'of={partition}', 'bs=1M',
                                 f'count={ZEROED_MEGABYTES}', 'conv=notrunc'],
                                "zero_root_header", LogCategory.FORMATTING)
        self.runner.run(['sync'])

        result = self.runner.run([str(mkfs), partition])
        require_success_marker(result.stderr, result.tool)
        identity = parse_volume_identity(result.stderr, result.tool)

        self._write_identity_record(identity, config.identity_record)
        self.runner.run(['sync'])

        self.logger.log_info(LogCategory.FORMATTING, "format_root",
                             f"{partition} formatted as RedoxFS",
                             {"uuid": identity.value})
        return identity

    def _require_nonzero_size(self, partition: str):
        result = self.runner.run(['blockdev', '--getsize64', partition])
        try:
            size = int(result.stdout.strip())
        except ValueError:
            raise ParseError("blockdev", f"unexpected size for {partition}",
                             excerpt=result.stdout)
        if size <= 0:
            raise VerificationError(partition, "partition has zero size",
                                    expected="> 0 bytes", actual=size)
        self.logger.log_debug(LogCategory.FORMATTING, "partition_size",
                              f"{partition} is {size} bytes")

    def _write_identity_record(self, identity: VolumeIdentity, record: Optional[Path]):
        """Leave the UUID where an operator can find it after a crashed run."""
        if record is None:
            return
        try:
            Path(record).write_text(identity.value)
        except OSError as e:
            self.logger.log_warning(LogCategory.FORMATTING, "identity_record",
                                    f"Could not write {record}: {e}")
