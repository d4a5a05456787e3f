#!/usr/bin/env python3
"""
Mount Orchestrator for Redox Installer

Mounts the EFI and root partitions under temporary mount points and tears them
down again. A RedoxFS root cannot be mounted by the host kernel, so when a
direct mount fails the user-space redoxfs driver is started in the background
and polled until it serves the mount point.
"""

import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

import psutil

from redox_installer.command import CommandRunner
from redox_installer.config import InstallationConfig
from redox_installer.device_setup import DiskDetector
from redox_installer.errors import (
    InstallerError, NonFatalOutcome, ToolExitError, VerificationError,
)
from redox_installer.logger import LogCategory
from redox_installer.partitioner import PartitionLayout
from redox_installer.polling import wait_until


WRITE_PROBE_NAME = "test_mount"
DRIVER_STOP_TIMEOUT = 10.0


class MountMethod(Enum):
    UNMOUNTED = "unmounted"
    DIRECT = "mounted-direct"
    BACKGROUND_DRIVER = "mounted-via-background-driver"


@dataclass
class MountPoint:
    """One mount point and how its partition was attached to it."""
    path: Path
    device: str
    method: MountMethod = MountMethod.UNMOUNTED
    process: Optional[subprocess.Popen] = field(default=None, repr=False)

    @property
    def mounted(self) -> bool:
        return self.method is not MountMethod.UNMOUNTED


@dataclass
class MountState:
    """Mount state of the EFI and root partitions for one run."""
    efi: MountPoint
    root: MountPoint

    @property
    def driver_process(self) -> Optional[subprocess.Popen]:
        return self.root.process


def is_active_mount(path: Path) -> bool:
    """True if path shows up as a mount point in the system mount table."""
    target = os.path.realpath(str(path))
    return any(os.path.realpath(part.mountpoint) == target
               for part in psutil.disk_partitions(all=True))


class MountOrchestrator:
    """Attaches and detaches the target partitions."""

    def __init__(self, runner: CommandRunner, config: InstallationConfig,
                 detector: DiskDetector = None, clock=None, sleep=None):
        self.runner = runner
        self.logger = runner.logger
        self.config = config
        self.detector = detector or DiskDetector(runner.logger)
        self._wait_kwargs = {}
        if clock is not None:
            self._wait_kwargs["clock"] = clock
        if sleep is not None:
            self._wait_kwargs["sleep"] = sleep

    def unmount_existing(self, disk: str) -> List[NonFatalOutcome]:
        """
        Force-unmount everything currently mounted from disk.

        Individual umount failures are tolerated; the disk still has to end up
        with nothing mounted before the settle timeout, otherwise
        StageTimeoutError is raised.
        """
        outcomes = []
        mounted = self.detector.mounted_partitions(disk)
        # Deepest mount points first so nested mounts come off cleanly
        for part in sorted(mounted, key=lambda p: len(p.mountpoint), reverse=True):
            self.logger.log_info(LogCategory.MOUNTING, "unmount_existing",
                                 f"Unmounting {part.device} from {part.mountpoint}")
            outcomes.append(self.runner.best_effort(
                ['umount', '-f', part.mountpoint], f"umount_{part.device}",
                LogCategory.MOUNTING))

        if mounted:
            wait_until(lambda: not self.detector.is_disk_mounted(disk),
                       timeout=self.config.settle_timeout,
                       interval=self.config.poll_interval,
                       description=f"{disk} to be fully unmounted",
                       **self._wait_kwargs)
        return outcomes

    def mount_all(self, layout: PartitionLayout) -> MountState:
        """
        Mount the EFI and root partitions.

        Returns:
            MountState describing how each partition was mounted

        Raises:
            InstallerError: Either partition could not be mounted
        """
        state = MountState(
            efi=MountPoint(Path(self.config.efi_mount), layout.efi_partition),
            root=MountPoint(Path(self.config.root_mount), layout.root_partition),
        )

        for point in (state.efi, state.root):
            try:
                point.path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise VerificationError(str(point.path), f"cannot create mount point: {e}")

        self.runner.run(['mount', state.efi.device, str(state.efi.path)])
        state.efi.method = MountMethod.DIRECT
        self.logger.log_info(LogCategory.MOUNTING, "mount_efi",
                             f"{state.efi.device} mounted at {state.efi.path}")

        self._mount_root(state.root)
        return state

    def _mount_root(self, root: MountPoint):
        try:
            self.runner.run(['mount', '-t', 'auto', root.device, str(root.path)])
        except ToolExitError as direct_error:
            driver = self.config.driver_binary
            if not driver.exists():
                self.logger.log_error(LogCategory.MOUNTING, "mount_root",
                                      f"Direct mount failed and no driver at {driver}")
                raise

            self.logger.log_info(LogCategory.MOUNTING, "mount_root",
                                 "Direct mount failed, starting background driver",
                                 {"driver": str(driver), "mount_error": str(direct_error)})
            self._start_background_driver(root, driver)
            return

        root.method = MountMethod.DIRECT
        self.logger.log_info(LogCategory.MOUNTING, "mount_root",
                             f"{root.device} mounted at {root.path}")

    def _start_background_driver(self, root: MountPoint, driver: Path):
        process = self.runner.spawn([str(driver), root.device, str(root.path)])
        root.process = process
        root.method = MountMethod.BACKGROUND_DRIVER

        try:
            self.wait_for_driver(root)
        except InstallerError:
            self._stop_driver(root)
            root.method = MountMethod.UNMOUNTED
            raise

        self.logger.log_info(LogCategory.MOUNTING, "mount_root",
                             f"{root.device} served at {root.path} by background driver",
                             {"pid": process.pid})

    def wait_for_driver(self, root: MountPoint):
        """
        Poll until the background driver serves root.path.

        Raises:
            VerificationError: Driver exited, or the mount is not usable
            StageTimeoutError: The mount point never became active
        """
        process = root.process

        def ready() -> bool:
            if process is not None and process.poll() is not None:
                raise VerificationError(
                    root.device, f"filesystem driver exited with status {process.returncode}",
                    expected="running driver", actual=process.returncode)
            return is_active_mount(root.path)

        wait_until(ready, timeout=self.config.driver_timeout,
                   interval=self.config.poll_interval,
                   description=f"{root.path} to become an active mount",
                   **self._wait_kwargs)

        try:
            os.listdir(root.path)
        except OSError as e:
            raise VerificationError(str(root.path), f"mount point is not readable: {e}")

        probe = root.path / WRITE_PROBE_NAME
        try:
            probe.mkdir()
            probe.rmdir()
        except OSError as e:
            raise VerificationError(str(root.path), f"mount point is not writable: {e}")

    def _stop_driver(self, root: MountPoint) -> NonFatalOutcome:
        process = root.process
        if process is None or process.poll() is not None:
            return NonFatalOutcome("stop_driver", True, "driver not running")

        process.terminate()
        try:
            process.wait(timeout=DRIVER_STOP_TIMEOUT)
            outcome = NonFatalOutcome("stop_driver", True, f"driver {process.pid} stopped")
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            outcome = NonFatalOutcome("stop_driver", False,
                                      f"driver {process.pid} killed after {DRIVER_STOP_TIMEOUT}s")
        self.logger.log_outcome(LogCategory.MOUNTING, outcome)
        return outcome

    def unmount_all(self, state: MountState) -> List[NonFatalOutcome]:
        """
        Sync and detach both partitions, then remove the mount points.

        Every step is best-effort; the outcomes are returned for reporting.
        """
        outcomes = [self.runner.best_effort(['sync'], "sync", LogCategory.MOUNTING)]

        for point in (state.root, state.efi):
            if point.mounted:
                outcomes.append(self.runner.best_effort(
                    ['umount', str(point.path)], f"umount_{point.path.name}",
                    LogCategory.MOUNTING))

        # Unmounting a FUSE mount normally ends the driver on its own
        if state.root.process is not None:
            outcomes.append(self._stop_driver(state.root))

        for point in (state.root, state.efi):
            try:
                point.path.rmdir()
                outcome = NonFatalOutcome(f"rmdir_{point.path.name}", True, str(point.path))
            except OSError as e:
                outcome = NonFatalOutcome(f"rmdir_{point.path.name}", False, str(e))
            self.logger.log_outcome(LogCategory.MOUNTING, outcome)
            outcomes.append(outcome)
            point.method = MountMethod.UNMOUNTED

        return outcomes
