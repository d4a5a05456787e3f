#!/usr/bin/env python3
"""
Unit tests for the mounter module.

Covers the direct mount path, the background driver fallback and its
readiness checks, pre-flight unmounting, and final teardown.
"""

import unittest
import tempfile
import shutil
import subprocess
from collections import namedtuple
from pathlib import Path
from unittest.mock import patch, MagicMock

from helpers import FakeTools, FakeClock, make_runner, write_file

from redox_installer.config import InstallationConfig
from redox_installer.errors import (
    StageTimeoutError, ToolExitError, ToolLaunchError, VerificationError,
)
from redox_installer.mounter import MountMethod, MountOrchestrator, is_active_mount
from redox_installer.partitioner import compute_layout


Part = namedtuple("Part", "device mountpoint fstype opts")


def mount_fails_for_auto(argv):
    if '-t' in argv:
        return (32, "", "mount: /tmp/root: unknown filesystem type 'redoxfs'.")
    return (0, "", "")


class TestMountOrchestrator(unittest.TestCase):
    """Test cases for MountOrchestrator."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.runner = make_runner(self.temp_dir / "logs")
        self.driver = self.temp_dir / "bin" / "redoxfs"
        self.config = InstallationConfig(
            efi_mount=self.temp_dir / "efi",
            root_mount=self.temp_dir / "root",
            redoxfs_driver=self.driver,
            driver_timeout=2.0,
            poll_interval=0.5,
        )
        self.clock = FakeClock()
        self.mounter = MountOrchestrator(self.runner, self.config,
                                         clock=self.clock, sleep=self.clock.sleep)
        self.layout = compute_layout("/dev/sdX", self.config)

    def tearDown(self):
        self.runner.logger.close()
        shutil.rmtree(self.temp_dir)

    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_direct_mount(self, mock_run, mock_popen):
        tools = FakeTools()
        mock_run.side_effect = tools

        state = self.mounter.mount_all(self.layout)

        self.assertEqual(state.efi.method, MountMethod.DIRECT)
        self.assertEqual(state.root.method, MountMethod.DIRECT)
        self.assertIsNone(state.driver_process)
        self.assertTrue(self.config.efi_mount.is_dir())
        self.assertTrue(self.config.root_mount.is_dir())
        self.assertEqual(tools.calls, [
            ['mount', '/dev/sdX1', str(self.config.efi_mount)],
            ['mount', '-t', 'auto', '/dev/sdX2', str(self.config.root_mount)],
        ])
        mock_popen.assert_not_called()

    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_efi_mount_failure_is_fatal(self, mock_run, mock_popen):
        mock_run.side_effect = FakeTools({'mount': (32, "", "mount: wrong fs type")})
        write_file(self.driver)

        with self.assertRaises(ToolExitError):
            self.mounter.mount_all(self.layout)
        mock_popen.assert_not_called()

    @patch('redox_installer.mounter.is_active_mount', return_value=True)
    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_fallback_to_background_driver(self, mock_run, mock_popen, mock_active):
        mock_run.side_effect = FakeTools({'mount': mount_fails_for_auto})
        process = MagicMock(pid=4242)
        process.poll.return_value = None
        mock_popen.return_value = process
        write_file(self.driver)

        state = self.mounter.mount_all(self.layout)

        self.assertEqual(state.root.method, MountMethod.BACKGROUND_DRIVER)
        self.assertIs(state.driver_process, process)
        argv = mock_popen.call_args[0][0]
        self.assertEqual(argv, [str(self.driver), '/dev/sdX2', str(self.config.root_mount)])
        # write probe leaves nothing behind
        self.assertFalse((self.config.root_mount / "test_mount").exists())

    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_no_driver_surfaces_original_mount_error(self, mock_run, mock_popen):
        mock_run.side_effect = FakeTools({'mount': mount_fails_for_auto})

        with self.assertRaises(ToolExitError) as ctx:
            self.mounter.mount_all(self.layout)

        self.assertIn("unknown filesystem type", str(ctx.exception))
        mock_popen.assert_not_called()

    @patch('redox_installer.mounter.is_active_mount', return_value=False)
    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_driver_never_ready_times_out(self, mock_run, mock_popen, mock_active):
        mock_run.side_effect = FakeTools({'mount': mount_fails_for_auto})
        process = MagicMock(pid=4242)
        process.poll.return_value = None
        mock_popen.return_value = process
        write_file(self.driver)

        with self.assertRaises(StageTimeoutError) as ctx:
            self.mounter.mount_all(self.layout)

        self.assertEqual(ctx.exception.timeout, 2.0)
        self.assertEqual(self.clock.now, 2.0)
        process.terminate.assert_called_once()

    @patch('redox_installer.mounter.is_active_mount', return_value=False)
    @patch('subprocess.Popen')
    @patch('subprocess.run')
    def test_driver_exit_is_reported(self, mock_run, mock_popen, mock_active):
        mock_run.side_effect = FakeTools({'mount': mount_fails_for_auto})
        process = MagicMock(pid=4242, returncode=1)
        process.poll.return_value = 1
        mock_popen.return_value = process
        write_file(self.driver)

        with self.assertRaises(VerificationError) as ctx:
            self.mounter.mount_all(self.layout)

        self.assertIn("exited with status 1", str(ctx.exception))
        self.assertEqual(self.clock.sleeps, [])

    @patch('subprocess.Popen', side_effect=PermissionError(13, "Permission denied"))
    @patch('subprocess.run')
    def test_driver_launch_failure(self, mock_run, mock_popen):
        mock_run.side_effect = FakeTools({'mount': mount_fails_for_auto})
        write_file(self.driver)

        with self.assertRaises(ToolLaunchError):
            self.mounter.mount_all(self.layout)

    @patch('psutil.disk_partitions')
    @patch('subprocess.run')
    def test_unmount_existing(self, mock_run, mock_partitions):
        tools = FakeTools({'umount': (32, "", "umount: target is busy")})
        mock_run.side_effect = tools
        mounted = [Part("/dev/sdX1", "/media/usb", "vfat", "rw"),
                   Part("/dev/sdX2", "/media/usb/data", "ext4", "rw"),
                   Part("/dev/sdXY1", "/media/other", "ext4", "rw")]
        # still mounted on the first check, gone on the second
        mock_partitions.side_effect = [mounted, mounted, []]

        outcomes = self.mounter.unmount_existing("/dev/sdX")

        self.assertEqual(tools.calls, [
            ['umount', '-f', '/media/usb/data'],
            ['umount', '-f', '/media/usb'],
        ])
        self.assertEqual(len(outcomes), 2)
        self.assertFalse(any(outcome.ok for outcome in outcomes))

    @patch('psutil.disk_partitions')
    @patch('subprocess.run')
    def test_unmount_existing_times_out(self, mock_run, mock_partitions):
        mock_run.side_effect = FakeTools()
        mock_partitions.return_value = [Part("/dev/sdX1", "/media/usb", "vfat", "rw")]

        with self.assertRaises(StageTimeoutError):
            self.mounter.unmount_existing("/dev/sdX")

    @patch('psutil.disk_partitions', return_value=[])
    @patch('subprocess.run')
    def test_unmount_existing_with_nothing_mounted(self, mock_run, mock_partitions):
        tools = FakeTools()
        mock_run.side_effect = tools

        self.assertEqual(self.mounter.unmount_existing("/dev/sdX"), [])
        self.assertEqual(tools.calls, [])

    @patch('subprocess.run')
    def test_unmount_all_is_best_effort(self, mock_run):
        mock_run.side_effect = FakeTools()
        state = self.mounter.mount_all(self.layout)
        tools = FakeTools({'umount': (32, "", "umount: not mounted")})
        mock_run.side_effect = tools

        outcomes = self.mounter.unmount_all(state)

        self.assertEqual(tools.calls, [
            ['sync'],
            ['umount', str(self.config.root_mount)],
            ['umount', str(self.config.efi_mount)],
        ])
        self.assertEqual([o.ok for o in outcomes], [True, False, False, True, True])
        self.assertFalse(self.config.root_mount.exists())
        self.assertEqual(state.root.method, MountMethod.UNMOUNTED)

    @patch('subprocess.run')
    def test_unmount_all_stops_driver(self, mock_run):
        mock_run.side_effect = FakeTools()
        state = self.mounter.mount_all(self.layout)
        process = MagicMock(pid=4242)
        process.poll.return_value = None
        state.root.process = process
        state.root.method = MountMethod.BACKGROUND_DRIVER

        outcomes = self.mounter.unmount_all(state)

        process.terminate.assert_called_once()
        process.wait.assert_called_once_with(timeout=10.0)
        self.assertIn("stop_driver", [o.step for o in outcomes])

    @patch('subprocess.run')
    def test_unmount_all_kills_stuck_driver(self, mock_run):
        mock_run.side_effect = FakeTools()
        state = self.mounter.mount_all(self.layout)
        process = MagicMock(pid=4242)
        process.poll.return_value = None
        process.wait.side_effect = [subprocess.TimeoutExpired("redoxfs", 10.0), 0]
        state.root.process = process

        outcomes = self.mounter.unmount_all(state)

        process.kill.assert_called_once()
        stop = [o for o in outcomes if o.step == "stop_driver"][0]
        self.assertFalse(stop.ok)


class TestIsActiveMount(unittest.TestCase):

    @patch('psutil.disk_partitions')
    def test_matches_mount_table(self, mock_partitions):
        mock_partitions.return_value = [Part("/dev/sdX2", "/tmp/redox_install_root", "fuse", "rw")]
        self.assertTrue(is_active_mount(Path("/tmp/redox_install_root")))
        self.assertFalse(is_active_mount(Path("/tmp/redox_install_efi")))


if __name__ == '__main__':
    unittest.main()
