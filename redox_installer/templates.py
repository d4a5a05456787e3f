#!/usr/bin/env python3
"""Static text written into the installed system and onto the EFI partition."""

REDOX_VERSION = "0.9.0"
HOSTNAME = "redox"
PACKAGE_SOURCE = "https://static.redox-os.org/pkg"

KERNEL_PATH = "/boot/kernel"
INITFS_PATH = "/boot/initfs"


def hostname() -> str:
    return f"{HOSTNAME}\n"


def os_release(version: str = REDOX_VERSION) -> str:
    return (
        f'PRETTY_NAME="Redox OS {version}"\n'
        'NAME="Redox OS"\n'
        f'VERSION_ID="{version}"\n'
        f'VERSION="{version}"\n'
        'ID="redox-os"\n'
        '\n'
        'HOME_URL="https://redox-os.org/"\n'
        'DOCUMENTATION_URL="https://redox-os.org/docs/"\n'
        'SUPPORT_URL="https://redox-os.org/community/"\n'
    )


def package_source() -> str:
    return PACKAGE_SOURCE


def init_base() -> str:
    """First init stage: recreate /tmp and start the core daemons."""
    return (
        "# clear and recreate tmpdir with 0o1777 permission\n"
        "/usr/bin/rm -r /tmp\n"
        "/usr/bin/mkdir -m a=rwxt /tmp\n"
        "\n"
        "/usr/bin/ipcd\n"
        "/usr/bin/ptyd\n"
        "/usr/bin/sudo --daemon\n"
    )


def init_drivers() -> str:
    return "/usr/bin/pcid-spawner /etc/pcid.d/\n"


def boot_marker() -> str:
    return "Redox OS Boot Directory\nCreated by installer\n"


def boot_conf(root_id: str) -> str:
    """
    Boot configuration read by the Redox bootloader.

    Args:
        root_id: RedoxFS volume UUID, or the raw root partition path when the
            root filesystem has no volume identity
    """
    return (
        "# Redox OS Boot Configuration\n"
        f"kernel={KERNEL_PATH}\n"
        f"root={root_id}\n"
        f"initfs={INITFS_PATH}\n"
    )


def startup_nsh() -> str:
    """UEFI shell auto-boot script."""
    return "\\EFI\\BOOT\\BOOTX64.EFI\n"


def efi_readme() -> str:
    return (
        "Redox OS\n"
        "========\n"
        "\n"
        "This disk contains a complete Redox OS installation.\n"
        "\n"
        "Layout:\n"
        "  EFI partition:\n"
        "    /EFI/BOOT/BOOTX64.EFI            UEFI bootloader (removable media path)\n"
        "    /EFI/redox/redox-bootloader.efi  UEFI bootloader (boot entry path)\n"
        "    /boot/redox.conf                 Boot configuration\n"
        "    /startup.nsh                     UEFI shell auto-boot script\n"
        "  Root partition:\n"
        f"    {KERNEL_PATH}                     Redox kernel\n"
        f"    {INITFS_PATH}                     Initial filesystem image (if present)\n"
        "    /boot/redox.conf                 Boot configuration\n"
        "\n"
        "To boot:\n"
        "  1. Restart the computer\n"
        "  2. Make sure UEFI boot is enabled in the firmware settings\n"
        "  3. Select this disk as the boot device\n"
        "\n"
        "Documentation: https://doc.redox-os.org\n"
        "Website: https://www.redox-os.org\n"
    )
