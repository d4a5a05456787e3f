import typer
import os
from pathlib import Path
from typing import Optional

from redox_installer import __version__
from redox_installer.command import CommandRunner
from redox_installer.config import InstallationConfig, FilesystemType, MIN_EFI_SIZE_MB
from redox_installer.device_setup import DiskDescriptor, DiskDetector, classify_disk_type
from redox_installer.interactive_ui import InstallerUI
from redox_installer.logger import InstallerLogger, LogCategory
from redox_installer.pipeline import InstallationPipeline
from redox_installer.validation import SystemValidator

app = typer.Typer(
    name="redox-installer",
    help="Redox OS Disk Installer - Install a bootable Redox OS system onto a disk",
    add_completion=False
)


def _require_root(command: str):
    if os.geteuid() != 0:
        typer.echo("❌ This command requires root privileges for disk operations.", err=True)
        typer.echo(f"Please run it with sudo: sudo redox-installer {command}", err=True)
        raise typer.Exit(1)


def _resolve_disk(ui: InstallerUI, disk: Optional[str]) -> Optional[DiskDescriptor]:
    """Use the --disk argument if given, otherwise let the user pick one."""
    disks = ui.scan_and_display_disks()
    if disk:
        for candidate in disks:
            if candidate.device == disk:
                return candidate
        return DiskDescriptor(device=disk, size="?", model="Unknown",
                              disk_type=classify_disk_type(Path(disk).name))
    if not disks:
        return None
    return ui.select_disk(disks)


@app.command()
def install(
    disk: Optional[str] = typer.Option(None, "--disk", "-d", help="Target disk, e.g. /dev/sdb"),
    efi_size: Optional[int] = typer.Option(None, "--efi-size", min=MIN_EFI_SIZE_MB,
                                           help="EFI partition size in MB"),
    filesystem: Optional[FilesystemType] = typer.Option(None, "--filesystem", "-f",
                                                        case_sensitive=False,
                                                        help="Root filesystem"),
    build_root: Optional[Path] = typer.Option(None, "--build-root", envvar="REDOX_BUILD_ROOT",
                                              help="Root of the Redox build tree"),
    redoxfs_mkfs: Optional[Path] = typer.Option(None, "--redoxfs-mkfs", envvar="REDOXFS_MKFS",
                                                help="Path to redoxfs-mkfs"),
    redoxfs_driver: Optional[Path] = typer.Option(None, "--redoxfs-driver", envvar="REDOXFS_DRIVER",
                                                  help="Path to the redoxfs driver"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", envvar="REDOX_INSTALLER_LOG_DIR",
                                           help="Directory for session logs"),
):
    """
    Install Redox OS onto a disk.

    Everything on the selected disk is erased. The installer partitions and
    formats the disk, installs the bootloader, kernel and userland from the
    Redox build tree, and writes the boot configuration.
    """
    _require_root("install")

    ui = InstallerUI()
    logger = InstallerLogger(log_dir=log_dir, console=False)
    validator = SystemValidator(logger)
    base = InstallationConfig.from_options(
        filesystem=filesystem.value if filesystem else None,
        build_root=build_root, redoxfs_mkfs=redoxfs_mkfs, redoxfs_driver=redoxfs_driver,
    )

    try:
        if not ui.show_welcome():
            raise typer.Exit(0)

        target = _resolve_disk(ui, disk)
        if not target:
            typer.echo("No disk selected. Installation cancelled.")
            raise typer.Exit(0)

        disk_checks = [validator.validate_disk(target.device)]
        if disk_checks[0].ok:
            disk_checks.append(validator.check_disk_space(target.device))
        if not all(check.ok for check in disk_checks):
            ui.show_validation_report(disk_checks)
            raise typer.Exit(1)

        config = ui.configure_installation(efi_size, filesystem, base)
        if config is None:
            typer.echo("Installation cancelled.")
            raise typer.Exit(0)

        # The tool set depends on the filesystem chosen above
        tools = validator.check_required_tools(config)
        if not tools.ok:
            ui.show_validation_report([tools])
            ui.show_error("Validation Failed", "Required commands are missing.",
                          "Install them and run the installer again.")
            raise typer.Exit(1)

        artifacts = validator.check_build_artifacts(config)
        if not artifacts.ok:
            ui.show_validation_report([artifacts])
            ui.console.print("[yellow]Run 'make all' to build Redox OS before installing.[/yellow]")
            if not typer.confirm("Continue anyway?", default=False):
                raise typer.Exit(0)

        ui.show_installation_summary(target, config)
        if not ui.confirm_destruction(target):
            raise typer.Exit(0)

        logger.log_info(LogCategory.USER_ACTION, "confirm_install",
                        f"User confirmed installation on {target.device}")

        pipeline = InstallationPipeline(target.device, config, CommandRunner(logger))
        with ui.show_progress_screen(f"Installing Redox OS on {target.device}") as progress:
            task = progress.add_task("Starting...", total=100)
            result = pipeline.run(
                lambda message, percent=None: progress.update(
                    task, description=message,
                    **({"completed": percent} if percent is not None else {}))
            )

        logger.finalize_session(result.success)
        if not result.success:
            ui.show_failure(result, str(logger.main_log_file))
            raise typer.Exit(1)

        ui.show_completion_summary(target, config, result)

    except KeyboardInterrupt:
        logger.log_warning(LogCategory.USER_ACTION, "interrupt", "Installation interrupted")
        ui.console.print("\n[yellow]Installation interrupted by user.[/yellow]")
        raise typer.Exit(1)
    finally:
        logger.close()


@app.command()
def list_disks():
    """List the disks that can be used as installation targets."""
    ui = InstallerUI()
    disks = ui.scan_and_display_disks()
    if disks:
        ui.console.print(f"\nFound {len(disks)} disks")


@app.command()
def disk_info():
    """Show details and mount status for every disk."""
    ui = InstallerUI()
    ui.show_disk_info(DiskDetector().scan_disks())


@app.command()
def validate(
    disk: Optional[str] = typer.Option(None, "--disk", "-d", help="Also check this disk"),
    filesystem: FilesystemType = typer.Option(FilesystemType.REDOXFS, "--filesystem", "-f",
                                              case_sensitive=False),
    build_root: Optional[Path] = typer.Option(None, "--build-root", envvar="REDOX_BUILD_ROOT"),
):
    """Run the pre-flight checks without touching any disk."""
    ui = InstallerUI()
    validator = SystemValidator()
    config = InstallationConfig.from_options(filesystem=filesystem.value, build_root=build_root)

    results = [
        validator.check_root(),
        validator.check_required_tools(config),
        validator.check_build_artifacts(config),
    ]
    if disk:
        results.append(validator.validate_disk(disk))
        if results[-1].ok:
            results.append(validator.check_disk_space(disk))

    ui.show_validation_report(results)

    # Missing build artifacts only warn; install lets the user continue
    blocking = [r for r in results if not r.ok and r.check != "build_artifacts"]
    if blocking:
        raise typer.Exit(1)


@app.command()
def guide():
    """Show the installation guide."""
    InstallerUI().show_help()


@app.command()
def version():
    """Show version information."""
    ui = InstallerUI()
    ui.console.print("[bold blue]Redox OS Disk Installer[/bold blue]")
    ui.console.print(f"Version: {__version__}")
    ui.console.print("Installs a bootable Redox OS system onto a local disk")


if __name__ == "__main__":
    app()
