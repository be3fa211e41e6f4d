"""Human-readable descriptions of a connected target."""

from __future__ import annotations

from serial_flasher.loader_types import SecurityInfo, TargetChip

_TARGET_NAMES = (
    "ESP8266",
    "ESP32",
    "ESP32-S2",
    "ESP32-C3",
    "ESP32-S3",
    "ESP32-C2",
    "INVALID_TARGET",
    "ESP32-H2",
    "ESP32-C6",
)

_STATE = {True: "ENABLED", False: "DISABLED"}
_REVOKED = {True: "TRUE", False: "FALSE"}


def target_name(target: TargetChip | int) -> str:
    """Display name of a chip, or INVALID_TARGET for anything unknown."""
    index = int(target)
    if not 0 <= index < len(_TARGET_NAMES):
        return "INVALID_TARGET"
    return _TARGET_NAMES[index]


def format_security_info(info: SecurityInfo) -> str:
    """Describe the security state of a target, one property per line."""
    lines = [
        "Target Security Information:",
        f"Target chip: {target_name(info.target_chip)}",
    ]
    if info.target_chip != TargetChip.ESP32S2:
        lines.append(f"Eco version number: {info.eco_version}")
    lines += [
        f"Secure boot: {_STATE[bool(info.secure_boot_enabled)]}",
        "Secure boot agressive revoke: "
        f"{_STATE[bool(info.secure_boot_aggressive_revoke_enabled)]}",
        f"Flash encryption: {_STATE[bool(info.flash_encryption_enabled)]}",
        f"Secure download mode: {_STATE[bool(info.secure_download_mode_enabled)]}",
    ]
    lines += [
        f"Secure boot key {key} revoked: {_REVOKED[bool(revoked)]}"
        for key, revoked in enumerate(info.secure_boot_revoked_keys)
    ]
    if info.jtag_hardware_disabled:
        jtag = "PERMANENTLY DISABLED"
    elif info.jtag_software_disabled:
        jtag = "DISABLED IN SOFTWARE"
    else:
        jtag = "ENABLED"
    lines += [
        f"JTAG access: {jtag}",
        f"USB access: {_STATE[not info.usb_disabled]}",
        f"Flash encryption: {_STATE[bool(info.flash_encryption_enabled)]}",
        "Data cache in UART download mode: "
        f"{_STATE[not info.dcache_in_uart_download_disabled]}",
        "Instruction cache in UART download mode: "
        f"{_STATE[not info.icache_in_uart_download_disabled]}",
    ]
    return "\n".join(lines)