#!/usr/bin/env python3
"""
Device Setup Module for Redox Installer

Lists whole-disk block devices that are candidate installation targets and
reports whether anything on them is currently mounted.
"""

import subprocess
import json
import os
import re
import stat
from typing import List, Optional
from dataclasses import dataclass
from pathlib import Path

import psutil

from redox_installer.logger import InstallerLogger, LogCategory


@dataclass(frozen=True)
class DiskDescriptor:
    """Snapshot of a whole disk taken at enumeration time."""
    device: str
    size: str
    model: str
    disk_type: str


def is_block_device(path: str) -> bool:
    """True if path exists and is a block special file."""
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def is_on_disk(source: str, disk: str) -> bool:
    """
    True if source is the disk itself or one of its partitions.

    Disk names ending in a digit (nvme0n1, mmcblk0) number their partitions
    after a 'p', so /dev/nvme0n12 is another namespace, not a partition of
    /dev/nvme0n1.
    """
    if source == disk:
        return True
    if not source.startswith(disk):
        return False
    suffix = r"p\d+" if disk[-1:].isdigit() else r"\d+"
    return re.fullmatch(suffix, source[len(disk):]) is not None


def classify_disk_type(name: str, sys_block: Path = Path("/sys/block")) -> str:
    """
    Classify a disk by its kernel name.

    Args:
        name: Kernel device name without /dev/ (e.g. 'sda', 'nvme0n1')
        sys_block: sysfs block directory, used to tell SSDs from HDDs

    Returns:
        Human-readable disk type
    """
    if name.startswith("nvme"):
        return "NVMe SSD"
    if name.startswith("sd"):
        try:
            rotational = (sys_block / name / "queue" / "rotational").read_text().strip()
        except OSError:
            return "SATA/SCSI"
        return "SATA SSD" if rotational == "0" else "SATA HDD"
    if name.startswith("hd"):
        return "IDE HDD"
    if name.startswith("vd"):
        return "Virtual Disk"
    if name.startswith("mmcblk"):
        return "MMC/SD Card"
    return "Unknown"


class DiskDetector:
    """Enumerates disks and inspects their mount state."""

    def __init__(self, logger: Optional[InstallerLogger] = None,
                 sys_block: Path = Path("/sys/block")):
        self.logger = logger
        self.sys_block = sys_block
        self.detected_disks: List[DiskDescriptor] = []

    def scan_disks(self) -> List[DiskDescriptor]:
        """
        Scan the system for whole disks.

        Returns:
            List of DiskDescriptor objects for accessible block devices
        """
        self.detected_disks = []

        try:
            result = subprocess.run([
                'lsblk', '-J', '-d', '-o', 'NAME,SIZE,MODEL,TYPE'
            ], capture_output=True, text=True, check=True)

            lsblk_data = json.loads(result.stdout)
        except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as e:
            if self.logger:
                self.logger.log_error(LogCategory.SYSTEM, "scan_disks",
                                      f"Error scanning disks: {e}")
            return []

        for device in lsblk_data.get('blockdevices', []):
            if device.get('type') != 'disk':
                continue
            disk = self._parse_disk(device)
            if disk and is_block_device(disk.device):
                self.detected_disks.append(disk)

        if self.logger:
            self.logger.log_info(LogCategory.SYSTEM, "scan_disks",
                                 f"Found {len(self.detected_disks)} disks",
                                 {"disks": [d.device for d in self.detected_disks]})
        return self.detected_disks

    def _parse_disk(self, device_data: dict) -> Optional[DiskDescriptor]:
        name = device_data.get('name')
        if not name:
            return None

        return DiskDescriptor(
            device=f"/dev/{name}",
            size=(device_data.get('size') or '?').strip(),
            model=(device_data.get('model') or 'Unknown').strip() or 'Unknown',
            disk_type=classify_disk_type(name, self.sys_block),
        )

    def mounted_partitions(self, device: str) -> list:
        """Active mounts (psutil sdiskpart entries) whose source is on the given disk."""
        return [part for part in psutil.disk_partitions(all=True)
                if is_on_disk(part.device, device)]

    def is_disk_mounted(self, device: str) -> bool:
        return bool(self.mounted_partitions(device))

    @staticmethod
    def format_size(bytes_size: float) -> str:
        """
        Format byte size into human-readable string.

        Args:
            bytes_size: Size in bytes

        Returns:
            Formatted size string (e.g., '1.5 GB')
        """
        for unit in ['B', 'KB', 'MB', 'GB', 'TB', 'PB']:
            if bytes_size < 1024.0:
                return f"{bytes_size:.1f} {unit}"
            bytes_size /= 1024.0
        return f"{bytes_size:.1f} EB"
