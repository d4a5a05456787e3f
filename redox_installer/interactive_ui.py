#!/usr/bin/env python3
"""
Interactive User Interface Module for Redox Installer

Rich/questionary screens for choosing a target disk, configuring the
installation, and confirming the destructive steps before anything runs.
"""

import questionary
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.prompt import Confirm
from dataclasses import replace
from typing import List, Optional, Tuple

from redox_installer.config import (
    InstallationConfig, FilesystemType, CONFIRMATION_PHRASE,
    DEFAULT_EFI_SIZE_MB, MIN_EFI_SIZE_MB,
)
from redox_installer.device_setup import DiskDescriptor, DiskDetector
from redox_installer.pipeline import PipelineResult, Stage
from redox_installer.validation import ValidationResult


PROMPT_STYLE = questionary.Style([
    ('question', 'bold'),
    ('answer', 'fg:#ff9d00 bold'),
    ('pointer', 'fg:#ff9d00 bold'),
    ('highlighted', 'fg:#ff9d00 bold'),
    ('selected', 'fg:#cc5454'),
    ('separator', 'fg:#cc5454'),
    ('instruction', ''),
    ('text', ''),
])


def parse_efi_size(answer: Optional[str]) -> Tuple[int, bool]:
    """
    Interpret the EFI size answer.

    Returns:
        (size in MB, whether the answer was accepted as given). Blank means the
        default; unparsable or too-small values fall back to the default.
    """
    if answer is None or not answer.strip():
        return DEFAULT_EFI_SIZE_MB, True
    try:
        size = int(answer.strip())
    except ValueError:
        return DEFAULT_EFI_SIZE_MB, False
    if size < MIN_EFI_SIZE_MB:
        return DEFAULT_EFI_SIZE_MB, False
    return size, True


class InstallerUI:
    """Interactive user interface for the Redox installer."""

    def __init__(self, detector: DiskDetector = None):
        self.console = Console()
        self.detector = detector or DiskDetector()

    def show_welcome(self) -> bool:
        """Display the welcome banner and ask whether to continue."""
        welcome_text = """
[bold blue]Redox OS Disk Installer[/bold blue]

Installs a complete, bootable Redox OS system onto a local disk.

[yellow]What the installer does:[/yellow]
• Creates a GPT partition table with an EFI and a root partition
• Formats the root partition as RedoxFS or ext4
• Installs the UEFI bootloader, kernel and initfs
• Copies the Redox userland from your build tree

[red]⚠️  IMPORTANT SAFETY NOTICE ⚠️[/red]
Everything on the selected disk will be erased.
Always back up important data before proceeding.
        """

        self.console.print(Panel(
            welcome_text,
            title="🦀 Redox OS Installer",
            border_style="blue",
            padding=(1, 2)
        ))
        self.console.print()

        if not Confirm.ask("Do you want to continue?", default=True):
            self.console.print("[yellow]Installation cancelled by user.[/yellow]")
            return False
        return True

    def scan_and_display_disks(self) -> List[DiskDescriptor]:
        """Scan for disks and display them in a table."""
        self.console.print("\n[blue]Scanning for disks...[/blue]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True
        ) as progress:
            task = progress.add_task("Detecting storage devices...", total=None)
            disks = self.detector.scan_disks()
            progress.update(task, completed=100)

        if not disks:
            self.console.print("[red]No disks found.[/red]")
            return []

        table = Table(title="Available Disks", show_header=True, header_style="bold magenta")
        table.add_column("#", style="dim")
        table.add_column("Device", style="cyan", no_wrap=True)
        table.add_column("Size", style="yellow")
        table.add_column("Model", style="green")
        table.add_column("Type", style="blue")
        table.add_column("Status", style="bold")

        for index, disk in enumerate(disks, start=1):
            status = ("[yellow]⚠️  Mounted[/yellow]" if self.detector.is_disk_mounted(disk.device)
                      else "[green]Available[/green]")
            table.add_row(str(index), disk.device, disk.size, disk.model, disk.disk_type, status)

        self.console.print(table)
        return disks

    def select_disk(self, disks: List[DiskDescriptor]) -> Optional[DiskDescriptor]:
        """Let the user pick the installation target."""
        if not disks:
            return None

        choices = [{
            'name': f"{disk.device} - {disk.model} ({disk.size}) - {disk.disk_type}",
            'value': disk,
        } for disk in disks]

        self.console.print()
        return questionary.select(
            "Select the disk to install Redox OS on:",
            choices=choices,
            style=PROMPT_STYLE
        ).ask()

    def configure_installation(self, efi_size_mb: Optional[int] = None,
                               filesystem: Optional[FilesystemType] = None,
                               base: InstallationConfig = None) -> Optional[InstallationConfig]:
        """
        Ask for any settings not already given on the command line.

        Returns:
            InstallationConfig, or None if the user aborted a prompt
        """
        base = base or InstallationConfig()
        self.console.print("\n[bold]⚙️  Installation settings[/bold]")

        if efi_size_mb is None:
            answer = questionary.text(
                f"EFI partition size in MB (default: {DEFAULT_EFI_SIZE_MB}):",
                default="",
                style=PROMPT_STYLE
            ).ask()
            if answer is None:
                return None
            efi_size_mb, accepted = parse_efi_size(answer)
            if not accepted:
                self.console.print(
                    f"[yellow]⚠️  Invalid size (minimum {MIN_EFI_SIZE_MB} MB), "
                    f"using {DEFAULT_EFI_SIZE_MB} MB[/yellow]")

        if filesystem is None:
            filesystem = questionary.select(
                "Root filesystem:",
                choices=[
                    {'name': "RedoxFS (recommended) - native Redox filesystem",
                     'value': FilesystemType.REDOXFS},
                    {'name': "ext4 - standard Linux filesystem",
                     'value': FilesystemType.EXT4},
                ],
                style=PROMPT_STYLE
            ).ask()
            if filesystem is None:
                return None

        return replace(base, efi_size_mb=efi_size_mb, filesystem=filesystem)

    def show_installation_summary(self, disk: DiskDescriptor, config: InstallationConfig):
        summary_text = f"""
[bold blue]Installation Summary[/bold blue]

[bold]Target Disk:[/bold] {disk.device}
[bold]Model:[/bold] {disk.model} ({disk.disk_type})
[bold]Size:[/bold] {disk.size}
[bold]EFI Partition:[/bold] FAT32, {config.efi_size_mb} MB
[bold]Root Partition:[/bold] {config.filesystem.display_name}, remaining space
[bold]Build Tree:[/bold] {config.build_root}

[red]⚠️  DESTRUCTIVE OPERATION WARNING ⚠️[/red]

[bold]This will PERMANENTLY ERASE ALL DATA on {disk.device}[/bold]
All existing partitions will be deleted.
A failed installation is not rolled back; the disk will need to be
cleaned up by hand before retrying.
        """

        self.console.print(Panel(
            summary_text.strip(),
            title="🚨 Final Confirmation Required",
            border_style="red",
            padding=(1, 2)
        ))
        self.console.print()

    def confirm_destruction(self, disk: DiskDescriptor) -> bool:
        """Require the confirmation phrase typed exactly."""
        typed = questionary.text(
            f"Type '{CONFIRMATION_PHRASE}' in capitals to erase {disk.device}:"
        ).ask()
        if typed != CONFIRMATION_PHRASE:
            self.console.print("[red]Confirmation not given. Installation cancelled.[/red]")
            return False
        return True

    def show_progress_screen(self, title: str):
        """Create a progress tracking interface."""
        self.console.print(f"\n[bold blue]{title}[/bold blue]")
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console
        )

    def show_error(self, title: str, message: str, details: str = None):
        """Display error message with optional details."""
        error_text = f"[red]{message}[/red]"
        if details:
            error_text += f"\n\n[dim]{details}[/dim]"

        self.console.print(Panel(
            error_text,
            title=f"❌ {title}",
            border_style="red",
            padding=(1, 2)
        ))

    def show_success(self, title: str, message: str):
        """Display success message."""
        self.console.print(Panel(
            f"[green]{message}[/green]",
            title=f"✅ {title}",
            border_style="green",
            padding=(1, 2)
        ))

    def show_validation_report(self, results: List[ValidationResult]):
        table = Table(title="Pre-flight Checks", show_header=True, header_style="bold magenta")
        table.add_column("Check", style="cyan")
        table.add_column("Result", style="bold")
        table.add_column("Details")

        for result in results:
            table.add_row(
                result.check.replace('_', ' '),
                "[green]✓ Pass[/green]" if result.ok else "[red]✗ Fail[/red]",
                "\n".join(result.issues)
            )
        self.console.print(table)

    def show_failure(self, result: PipelineResult, log_file: str = None):
        """Report a failed pipeline run."""
        stage = result.failed_stage.title if result.failed_stage else "Unknown stage"
        completed = ", ".join(s.title for s in result.completed_stages) or "none"

        details = f"Completed stages: {completed}"
        if result.failed_stage and result.failed_stage not in (Stage.VERIFY_DISK,
                                                               Stage.UNMOUNT_EXISTING):
            details += ("\nThe disk may be partially written and partitions may still be "
                        "mounted. Clean it up manually before retrying.")
        if log_file:
            details += f"\nFull log: {log_file}"

        self.show_error(f"{stage} failed", str(result.error), details)
        self.console.print("[yellow]Please check the logs and try again.[/yellow]")

    def show_completion_summary(self, disk: DiskDescriptor, config: InstallationConfig,
                                result: PipelineResult):
        """Show the installation summary and next steps."""
        root_id = result.format_result.root_id if result.format_result else "?"
        warnings = "".join(f"\n• [yellow]{w.step}[/yellow]: {w.detail}" for w in result.warnings)

        completion_text = f"""
[bold green]🎉 Redox OS installation complete![/bold green]

[bold]Installed system:[/bold]
• Disk: {disk.device}
• EFI partition: FAT32, {config.efi_size_mb} MB
• Root partition: {config.filesystem.display_name} (root={root_id})
• Bootloader: UEFI (BOOTX64.EFI)

[bold yellow]Next Steps:[/bold yellow]
1. Restart your computer
2. Make sure UEFI boot is enabled in the firmware settings
3. Select {disk.device} as the boot device
        """
        if warnings:
            completion_text += f"\n[bold]Non-fatal warnings:[/bold]{warnings}"

        self.console.print(Panel(
            completion_text.strip(),
            title="Installation Complete",
            border_style="green",
            padding=(1, 2)
        ))

    def show_disk_info(self, disks: List[DiskDescriptor]):
        """One panel per disk with its mount status."""
        if not disks:
            self.console.print("[red]No disks found.[/red]")
            return

        for index, disk in enumerate(disks, start=1):
            mounted = self.detector.is_disk_mounted(disk.device)
            status = "[yellow]⚠️  MOUNTED[/yellow]" if mounted else "[green]✅ Available[/green]"
            self.console.print(Panel(
                f"[bold]Device:[/bold] {disk.device}\n"
                f"[bold]Size:[/bold]   {disk.size}\n"
                f"[bold]Model:[/bold]  {disk.model}\n"
                f"[bold]Type:[/bold]   {disk.disk_type}\n"
                f"[bold]Status:[/bold] {status}",
                title=f"Disk #{index}",
                border_style="blue"
            ))

    def show_help(self):
        help_text = f"""
[bold blue]📘 Description[/bold blue]
Installs a complete Redox OS system onto a hard disk.

[bold blue]⚙️  Requirements[/bold blue]
• A disk of at least 2 GB
• A UEFI-capable machine
• A built Redox tree (run 'make all' first)
• Root privileges

[bold red]⚠️  Warnings[/bold red]
• Installation ERASES all data on the selected disk
• Back up important data first
• Double-check the selected disk
• Do not interrupt the installation

[bold blue]📋 Installation Steps[/bold blue]
1. Verify the disk and unmount anything mounted from it
2. Create the GPT partitions (EFI + root)
3. Format the partitions
4. Mount the partitions
5. Install the UEFI bootloader
6. Install the root filesystem tree and applications
7. Install the kernel and initfs
8. Write the boot configuration
9. Unmount the partitions

[bold blue]🎯 Supported Filesystems[/bold blue]
• RedoxFS (recommended) - native Redox filesystem
• ext4 - standard Linux filesystem

[bold blue]💡 Tips[/bold blue]
• The EFI partition must be at least {MIN_EFI_SIZE_MB} MB
• Make sure UEFI is enabled in your firmware
• If the system does not boot, check the UEFI boot order
        """
        self.console.print(Panel(help_text.strip(), title="🦀 Redox OS Installer Guide",
                                 border_style="blue", padding=(1, 2)))
