#!/usr/bin/env python3
"""
Filesystem Populator for Redox Installer

Fills the mounted partitions: the UEFI bootloader on the EFI partition; the
directory tree, merged-usr symlinks, system configuration and staged
application payloads on the root partition; the kernel and initfs; and the
boot configuration read by the bootloader.
"""

import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from redox_installer import templates
from redox_installer.command import CommandRunner
from redox_installer.config import InstallationConfig
from redox_installer.errors import NonFatalOutcome, VerificationError
from redox_installer.formatter import FormatResult
from redox_installer.logger import LogCategory
from redox_installer.mounter import MountState


TARGET = "x86_64-unknown-redox"

BOOTLOADER_CANDIDATES = [
    f"cookbook/recipes/core/bootloader/target/{TARGET}/build/bootloader.efi",
    f"cookbook/recipes/core/bootloader/target/{TARGET}/stage/boot/bootloader.efi",
    "build/x86_64/desktop/bootloader-live.efi",
    "build/x86_64/desktop/bootloader.efi",
    "cookbook/recipes/core/bootloader/source/build/bootloader_x86_64-unknown-uefi.efi",
    "build/bootloader.efi",
]

KERNEL_CANDIDATES = [
    f"cookbook/recipes/core/kernel/target/{TARGET}/build/kernel",
    f"cookbook/recipes/core/kernel/target/{TARGET}/stage/boot/kernel",
    "build/x86_64/desktop/kernel",
    "build/x86_64/desktop/harddrive/kernel",
    f"cookbook/recipes/core/kernel/source/target/{TARGET}/release/kernel",
]

INITFS_CANDIDATES = [
    f"cookbook/recipes/core/base-initfs/target/{TARGET}/build/initfs.img",
    "build/x86_64/desktop/initfs.img",
    "build/x86_64/desktop/harddrive/initfs.img",
]

ROOT_DIRECTORIES = [
    "boot", "usr", "usr/bin", "usr/lib", "usr/libexec", "usr/share", "usr/include",
    "etc", "var", "var/log", "var/lib", "var/lib/pkg", "tmp", "home", "root",
    "proc", "sys", "dev", "mnt", "opt",
]

MERGED_USR_LINKS = [
    ("bin", "/usr/bin"),
    ("lib", "/usr/lib"),
    ("include", "/usr/include"),
    ("sbin", "/usr/sbin"),
]

# drivers-initfs ships files that drivers would otherwise clobber
APPLICATION_RECIPES = [
    "uutils", "base", "userutils", "coreutils", "drivers-initfs",
    "drivers", "ion", "extrautils", "netutils",
]

STAGE_MAPPINGS = [
    ("bin", "bin"),
    ("sbin", "sbin"),
    ("usr/bin", "usr/bin"),
    ("usr/sbin", "usr/sbin"),
    ("usr/lib", "usr/lib"),
    ("etc", "etc"),
]

EFI_BOOT_PATH = Path("EFI/BOOT/BOOTX64.EFI")
EFI_VENDOR_PATH = Path("EFI/redox/redox-bootloader.efi")
EFI_LOADER = "\\EFI\\redox\\redox-bootloader.efi"
BOOT_ENTRY_LABEL = "Redox OS"


@dataclass
class BootloaderResult:
    source: Path
    destinations: List[Path]
    boot_entry: NonFatalOutcome


@dataclass
class KernelResult:
    kernel: Path
    initfs: Optional[Path] = None


@dataclass
class PopulateReport:
    directories: int = 0
    symlinks: int = 0
    config_files: List[Path] = field(default_factory=list)
    application_files: int = 0
    recipes_installed: List[str] = field(default_factory=list)


def find_first_existing(base: Path, candidates: Sequence[str]) -> Optional[Path]:
    """Return the first candidate (relative to base) that exists, in list order."""
    for candidate in candidates:
        path = base / candidate
        if path.exists():
            return path
    return None


def copy_verified(src: Path, dst: Path) -> int:
    """
    Copy src to dst and check the copy has the same byte length.

    Returns:
        Number of bytes copied

    Raises:
        VerificationError: Destination length differs from source
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    expected = src.stat().st_size
    actual = dst.stat().st_size
    if actual != expected:
        raise VerificationError(str(dst), f"copy size mismatch ({expected} vs {actual} bytes)",
                                expected=expected, actual=actual)
    return actual


def disk_for_boot_entry(disk: str) -> str:
    """
    efibootmgr takes the whole disk; strip a partition suffix if one is present.

    Disks whose names end in a digit (nvme0n1, mmcblk0) are returned unchanged
    unless they carry a 'p<N>' partition suffix.
    """
    match = re.fullmatch(r"(.*\d)p\d+", disk)
    if match:
        return match.group(1)
    if re.search(r"(nvme\d+n\d+|mmcblk\d+)$", disk):
        return disk
    return re.sub(r"\d+$", "", disk)



class FilesystemPopulator:
    """Installs boot artifacts and the root filesystem tree."""

    def __init__(self, runner: CommandRunner, config: InstallationConfig):
        self.runner = runner
        self.logger = runner.logger
        self.config = config
        self.build_root = Path(config.build_root)

    def install_bootloader(self, state: MountState, disk: str) -> BootloaderResult:
        """
        Copy the UEFI bootloader onto the EFI partition and register a boot entry.

        Raises:
            VerificationError: No bootloader was found in the build tree
        """
        efi = state.efi.path
        for directory in ("EFI/BOOT", "EFI/redox"):
            (efi / directory).mkdir(parents=True, exist_ok=True)

        source = find_first_existing(self.build_root, BOOTLOADER_CANDIDATES)
        if source is None:
            searched = "\n".join(f"     - {self.build_root / c}" for c in BOOTLOADER_CANDIDATES)
            raise VerificationError("bootloader", f"no bootloader found. Searched:\n{searched}",
                                    hint="Build Redox first with 'make all'")

        destinations = []
        for relative in (EFI_BOOT_PATH, EFI_VENDOR_PATH):
            destination = efi / relative
            copy_verified(source, destination)
            destinations.append(destination)

        self.logger.log_info(LogCategory.BOOTLOADER, "install_bootloader",
                             f"Bootloader installed from {source}",
                             {"destinations": [str(d) for d in destinations]})

        # Firmware boot managers are unreliable under virtualization
        entry = self.runner.best_effort([
            'efibootmgr', '--create',
            '--disk', disk_for_boot_entry(disk),
            '--part', '1',
            '--label', BOOT_ENTRY_LABEL,
            '--loader', EFI_LOADER,
        ], "register_boot_entry", LogCategory.BOOTLOADER)

        return BootloaderResult(source, destinations, entry)

    def install_filesystem(self, state: MountState, progress_callback=None) -> PopulateReport:
        """Build the root tree, system configuration and application payloads."""
        root = state.root.path
        report = PopulateReport()

        if progress_callback:
            progress_callback("Creating directory tree...")
        for directory in ROOT_DIRECTORIES:
            (root / directory).mkdir(parents=True, exist_ok=True)
            report.directories += 1

        for name, target in MERGED_USR_LINKS:
            self._replace_with_symlink(root / name, target)
            report.symlinks += 1

        if progress_callback:
            progress_callback("Writing system configuration...")
        report.config_files = self.write_system_config(root)

        boot_dir = root / "boot"
        boot_dir.mkdir(parents=True, exist_ok=True)
        (boot_dir / ".redox_boot").write_text(templates.boot_marker())

        if progress_callback:
            progress_callback("Copying application payloads...")
        report.application_files, report.recipes_installed = self.install_applications(root)

        self.logger.log_info(LogCategory.FILESYSTEM, "install_filesystem",
                             "Root filesystem populated", {
                                 "directories": report.directories,
                                 "symlinks": report.symlinks,
                                 "application_files": report.application_files,
                                 "recipes": report.recipes_installed,
                             })
        return report

    def _replace_with_symlink(self, link: Path, target: str):
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            shutil.rmtree(link)
        link.symlink_to(target)

    def write_system_config(self, root: Path) -> List[Path]:
        files: List[Tuple[str, str]] = [
            ("etc/hostname", templates.hostname()),
            ("usr/lib/os-release", templates.os_release()),
            ("etc/pkg.d/50_redox", templates.package_source()),
            ("usr/lib/init.d/00_base", templates.init_base()),
            ("usr/lib/init.d/00_drivers", templates.init_drivers()),
        ]

        written = []
        for relative, content in files:
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            written.append(path)

        self._replace_with_symlink(root / "etc/os-release", "../usr/lib/os-release")
        return written

    def install_applications(self, root: Path) -> Tuple[int, List[str]]:
        """
        Copy staged recipe output into the root tree.

        Recipes without staged output are skipped.

        Returns:
            (files copied, recipes that contributed files)
        """
        total = 0
        installed = []
        for recipe in APPLICATION_RECIPES:
            stage = self.build_root / "cookbook/recipes/core" / recipe / "target" / TARGET / "stage"
            if not stage.is_dir():
                self.logger.log_debug(LogCategory.FILESYSTEM, "install_applications",
                                      f"No staged output for {recipe}")
                continue

            copied = 0
            for source_dir, dest_dir in STAGE_MAPPINGS:
                copied += self._copy_regular_files(stage / source_dir, root, dest_dir)

            if copied:
                installed.append(recipe)
            total += copied
            self.logger.log_info(LogCategory.FILESYSTEM, "install_applications",
                                 f"{recipe}: {copied} files")
        return total, installed

    def _copy_regular_files(self, source: Path, root: Path, dest_dir: str) -> int:
        if not source.is_dir():
            return 0

        # Absolute merged-usr links point at the host until resolved inside root
        destination = root / dest_dir
        if destination.is_symlink():
            target = os.readlink(destination)
            if os.path.isabs(target):
                destination = root / target.lstrip("/")
        destination.mkdir(parents=True, exist_ok=True)

        copied = 0
        for entry in sorted(source.iterdir()):
            if entry.is_file() and not entry.is_symlink():
                target_file = destination / entry.name
                if target_file.is_symlink():
                    target_file.unlink()
                shutil.copy2(entry, target_file)
                copied += 1
        return copied

    def install_kernel(self, state: MountState) -> KernelResult:
        """
        Copy the kernel and, if built, the initfs image into /boot.

        Raises:
            VerificationError: No kernel found, or a copy came out truncated
        """
        boot = state.root.path / "boot"
        boot.mkdir(parents=True, exist_ok=True)

        kernel = find_first_existing(self.build_root, KERNEL_CANDIDATES)
        if kernel is None:
            searched = "\n".join(f"     - {self.build_root / c}" for c in KERNEL_CANDIDATES)
            raise VerificationError("kernel", f"no kernel found. Searched:\n{searched}",
                                    hint="Build Redox first with 'make all'")
        size = copy_verified(kernel, boot / "kernel")
        self.logger.log_info(LogCategory.KERNEL, "install_kernel",
                             f"Kernel installed from {kernel}", {"bytes": size})

        result = KernelResult(kernel)
        initfs = find_first_existing(self.build_root, INITFS_CANDIDATES)
        if initfs is None:
            self.logger.log_warning(LogCategory.KERNEL, "install_initfs",
                                    "No initfs image found; continuing without one")
            return result

        size = copy_verified(initfs, boot / "initfs")
        result.initfs = initfs
        self.logger.log_info(LogCategory.KERNEL, "install_initfs",
                             f"initfs installed from {initfs}", {"bytes": size})
        return result

    def create_config_files(self, state: MountState, format_result: FormatResult) -> List[Path]:
        """
        Write redox.conf to its three locations plus the EFI helper files.

        The root= value is the RedoxFS volume identity when there is one,
        otherwise the raw root partition path.
        """
        efi = state.efi.path
        root = state.root.path
        (efi / "boot").mkdir(parents=True, exist_ok=True)
        (root / "boot").mkdir(parents=True, exist_ok=True)

        boot_conf = templates.boot_conf(format_result.root_id)
        written = []
        for path in (efi / "boot/redox.conf", root / "boot/redox.conf", root / "redox.conf"):
            path.write_text(boot_conf)
            written.append(path)

        for path, content in ((efi / "startup.nsh", templates.startup_nsh()),
                              (efi / "README.txt", templates.efi_readme())):
            path.write_text(content)
            written.append(path)

        self.logger.log_info(LogCategory.CONFIG, "create_config_files",
                             "Boot configuration written",
                             {"root": format_result.root_id,
                              "files": [str(p) for p in written]})
        return written
