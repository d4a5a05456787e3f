#!/usr/bin/env python3
"""
Installation Settings for Redox Installer

InstallationConfig is chosen once, before any disk is touched, and stays fixed
for the whole pipeline run.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


DEFAULT_BUILD_ROOT = Path("/home/moebius/redox")
DEFAULT_EFI_SIZE_MB = 512
MIN_EFI_SIZE_MB = 100
MIN_DISK_BYTES = 2 * 1024**3

EFI_VOLUME_LABEL = "REDOX_EFI"
EXT4_VOLUME_LABEL = "REDOX_ROOT"
CONFIRMATION_PHRASE = "YES"

EFI_MOUNT_POINT = Path("/tmp/redox_install_efi")
ROOT_MOUNT_POINT = Path("/tmp/redox_install_root")
IDENTITY_RECORD = Path("/tmp/redox_install_uuid")


class FilesystemType(Enum):
    """Filesystem kinds supported for the root partition."""
    REDOXFS = "redoxfs"
    EXT4 = "ext4"

    @property
    def display_name(self) -> str:
        return "RedoxFS" if self is FilesystemType.REDOXFS else "ext4"

    @classmethod
    def parse(cls, value: str) -> "FilesystemType":
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown filesystem '{value}' (choose from: {choices})")


@dataclass(frozen=True)
class InstallationConfig:
    """Settings for one installation run."""
    efi_size_mb: int = DEFAULT_EFI_SIZE_MB
    filesystem: FilesystemType = FilesystemType.REDOXFS
    build_root: Path = DEFAULT_BUILD_ROOT
    redoxfs_mkfs: Optional[Path] = None
    redoxfs_driver: Optional[Path] = None
    efi_mount: Path = EFI_MOUNT_POINT
    root_mount: Path = ROOT_MOUNT_POINT
    identity_record: Optional[Path] = IDENTITY_RECORD
    settle_timeout: float = 15.0
    driver_timeout: float = 10.0
    poll_interval: float = 0.5

    def __post_init__(self):
        if self.efi_size_mb < MIN_EFI_SIZE_MB:
            raise ValueError(
                f"EFI partition must be at least {MIN_EFI_SIZE_MB} MB (got {self.efi_size_mb})")
        if not isinstance(self.filesystem, FilesystemType):
            object.__setattr__(self, "filesystem", FilesystemType.parse(str(self.filesystem)))
        object.__setattr__(self, "build_root", Path(self.build_root))

    @property
    def redoxfs_release_dir(self) -> Path:
        return self.build_root / "redoxfs" / "target" / "release"

    @property
    def mkfs_binary(self) -> Path:
        """Path to the RedoxFS formatter."""
        return Path(self.redoxfs_mkfs) if self.redoxfs_mkfs else self.redoxfs_release_dir / "redoxfs-mkfs"

    @property
    def driver_binary(self) -> Path:
        """Path to the RedoxFS user-space filesystem driver."""
        return Path(self.redoxfs_driver) if self.redoxfs_driver else self.redoxfs_release_dir / "redoxfs"

    @property
    def redoxfs_build_hint(self) -> str:
        return f"Build it with: cd {self.build_root / 'redoxfs'} && cargo build --release"

    @classmethod
    def from_options(cls, efi_size_mb: Optional[int] = None, filesystem: Optional[str] = None,
                     build_root: Optional[Path] = None, redoxfs_mkfs: Optional[Path] = None,
                     redoxfs_driver: Optional[Path] = None) -> "InstallationConfig":
        """Build a config from CLI options, leaving unset options at their defaults."""
        kwargs = {}
        if efi_size_mb is not None:
            kwargs["efi_size_mb"] = efi_size_mb
        if filesystem:
            kwargs["filesystem"] = FilesystemType.parse(filesystem)
        if build_root:
            kwargs["build_root"] = Path(build_root)
        if redoxfs_mkfs:
            kwargs["redoxfs_mkfs"] = Path(redoxfs_mkfs)
        if redoxfs_driver:
            kwargs["redoxfs_driver"] = Path(redoxfs_driver)
        return cls(**kwargs)
