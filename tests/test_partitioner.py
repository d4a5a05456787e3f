#!/usr/bin/env python3
"""
Unit tests for the partitioner module.

Covers partition naming, layout computation, the partitioning command
sequence, and the wait for partition device nodes.
"""

import unittest
import tempfile
import shutil
from unittest.mock import patch

from helpers import FakeTools, FakeClock, make_runner

from redox_installer.config import InstallationConfig
from redox_installer.errors import StageTimeoutError, ToolExitError
from redox_installer.partitioner import (
    DiskPartitioner, PartitionLayout, compute_layout, partition_device_name,
)


class TestPartitionNaming(unittest.TestCase):
    """Test cases for partition device naming and layout."""

    def test_sata_style_names(self):
        self.assertEqual(partition_device_name("/dev/sda", 1), "/dev/sda1")
        self.assertEqual(partition_device_name("/dev/vdb", 2), "/dev/vdb2")

    def test_nvme_and_mmc_names(self):
        test_cases = [
            ("/dev/nvme0n1", 1, "/dev/nvme0n1p1"),
            ("/dev/nvme0n1", 2, "/dev/nvme0n1p2"),
            ("/dev/mmcblk0", 1, "/dev/mmcblk0p1"),
            ("/dev/mmcblk0", 2, "/dev/mmcblk0p2"),
        ]
        for disk, number, expected in test_cases:
            with self.subTest(disk=disk, number=number):
                self.assertEqual(partition_device_name(disk, number), expected)

    def test_compute_layout_is_pure(self):
        config = InstallationConfig(efi_size_mb=256)
        first = compute_layout("/dev/sdX", config)
        second = compute_layout("/dev/sdX", config)

        self.assertEqual(first, second)
        self.assertEqual(first, PartitionLayout("/dev/sdX", "/dev/sdX1", "/dev/sdX2", 256))

    def test_naming_conventions_never_collide(self):
        config = InstallationConfig()
        disks = ["/dev/sda", "/dev/sdb", "/dev/vda", "/dev/nvme0n1", "/dev/nvme1n1",
                 "/dev/mmcblk0", "/dev/mmcblk1"]

        paths = []
        for disk in disks:
            layout = compute_layout(disk, config)
            paths.extend([layout.efi_partition, layout.root_partition])
            self.assertNotEqual(layout.efi_partition, layout.root_partition)

        self.assertEqual(len(paths), len(set(paths)))


class TestDiskPartitioner(unittest.TestCase):
    """Test cases for DiskPartitioner."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.runner = make_runner(self.temp_dir)
        self.clock = FakeClock()
        self.partitioner = DiskPartitioner(self.runner, clock=self.clock, sleep=self.clock.sleep)
        self.config = InstallationConfig(efi_size_mb=512, settle_timeout=3.0, poll_interval=0.5)

    def tearDown(self):
        self.runner.logger.close()
        shutil.rmtree(self.temp_dir)

    @patch('subprocess.run')
    def test_partition_command_sequence(self, mock_run):
        tools = FakeTools()
        mock_run.side_effect = tools

        with patch.object(DiskPartitioner, '_node_exists', return_value=True):
            layout = self.partitioner.create_partitions("/dev/sdX", self.config)

        self.assertEqual(layout.efi_partition, "/dev/sdX1")
        self.assertEqual(layout.root_partition, "/dev/sdX2")
        self.assertEqual(tools.calls, [
            ['wipefs', '-a', '/dev/sdX'],
            ['sync'],
            ['parted', '-s', '/dev/sdX', 'mklabel', 'gpt'],
            ['parted', '-s', '/dev/sdX', 'mkpart', 'primary', 'fat32', '1MiB', '512MiB'],
            ['parted', '-s', '/dev/sdX', 'set', '1', 'esp', 'on'],
            ['parted', '-s', '/dev/sdX', 'mkpart', 'primary', '512MiB', '100%'],
            ['sync'],
            ['partprobe', '/dev/sdX'],
        ])

    @patch('subprocess.run')
    def test_wipe_failure_is_tolerated(self, mock_run):
        mock_run.side_effect = FakeTools({'wipefs': (1, "", "wipefs: device busy")})

        with patch.object(DiskPartitioner, '_node_exists', return_value=True):
            layout = self.partitioner.create_partitions("/dev/sdX", self.config)

        self.assertEqual(layout.root_partition, "/dev/sdX2")
        warnings = [e for e in self.runner.logger.operations if e.level == "WARNING"]
        self.assertTrue(any("wipefs" in e.message for e in warnings))

    @patch('subprocess.run')
    def test_partition_table_failure_is_fatal(self, mock_run):
        tools = FakeTools({'parted': (1, "", "Error: Could not stat device")})
        mock_run.side_effect = tools

        with self.assertRaises(ToolExitError) as ctx:
            self.partitioner.create_partitions("/dev/sdX", self.config)

        self.assertEqual(ctx.exception.tool, "parted")
        self.assertIn("Could not stat device", str(ctx.exception))
        self.assertEqual(len(tools.invocations('parted')), 1)

    @patch('subprocess.run')
    def test_waits_for_device_nodes(self, mock_run):
        mock_run.side_effect = FakeTools()
        # efi node is checked first and all() stops at the first False
        with patch.object(DiskPartitioner, '_node_exists', side_effect=[False, True, True]):
            layout = self.partitioner.create_partitions("/dev/sdX", self.config)

        self.assertEqual(layout.efi_partition, "/dev/sdX1")
        self.assertEqual(self.clock.sleeps, [0.5])

    @patch('subprocess.run')
    def test_missing_partitions_time_out(self, mock_run):
        mock_run.side_effect = FakeTools()

        with patch.object(DiskPartitioner, '_node_exists', return_value=False):
            with self.assertRaises(StageTimeoutError) as ctx:
                self.partitioner.create_partitions("/dev/nvme0n1", self.config)

        self.assertIn("partitions not created", str(ctx.exception))
        self.assertIn("/dev/nvme0n1p1", str(ctx.exception))
        self.assertEqual(ctx.exception.timeout, 3.0)


if __name__ == '__main__':
    unittest.main()
