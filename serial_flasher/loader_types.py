"""Core types shared by the loader: error codes, targets and image headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar


class ErrorCode(IntEnum):
    """Result codes reported by loader operations."""

    SUCCESS = 0
    FAIL = 1
    TIMEOUT = 2
    IMAGE_SIZE = 3
    INVALID_MD5 = 4
    INVALID_PARAM = 5
    INVALID_TARGET = 6
    UNSUPPORTED_CHIP = 7
    UNSUPPORTED_FUNC = 8
    INVALID_RESPONSE = 9


_ERROR_DESCRIPTIONS = {
    ErrorCode.FAIL: "unspecified error",
    ErrorCode.TIMEOUT: "timeout elapsed",
    ErrorCode.IMAGE_SIZE: "image size to flash is larger than flash size",
    ErrorCode.INVALID_MD5: "computed and received MD5 do not match",
    ErrorCode.INVALID_PARAM: "invalid parameter",
    ErrorCode.INVALID_TARGET: "connected target is invalid",
    ErrorCode.UNSUPPORTED_CHIP: "attached chip is not supported",
    ErrorCode.UNSUPPORTED_FUNC: "function is not supported on attached target",
    ErrorCode.INVALID_RESPONSE: "internal error",
}


class LoaderError(Exception):
    """Raised when a loader operation fails; carries the matching error code."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        code = ErrorCode(code)
        if code is ErrorCode.SUCCESS:
            raise ValueError("LoaderError cannot carry the SUCCESS code")
        self.code = code
        self.message = message or _ERROR_DESCRIPTIONS[code]
        super().__init__(f"{code.name}: {self.message}")


class TargetChip(IntEnum):
    """Chips the loader can talk to."""

    ESP8266 = 0
    ESP32 = 1
    ESP32S2 = 2
    ESP32C3 = 3
    ESP32S3 = 4
    ESP32C2 = 5
    ESP32_RESERVED0 = 6
    ESP32H2 = 7
    ESP32C6 = 8
    UNKNOWN = 9

    @classmethod
    def from_value(cls, value: int) -> TargetChip:
        """Return the chip for a numeric value, or UNKNOWN when it matches none."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class BinHeader:
    """Application image header found at the start of a binary."""

    magic: int
    segments: int
    flash_mode: int
    flash_size_freq: int
    entrypoint: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBBBI")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> BinHeader:
        """Parse the header from the first bytes of an image."""
        if len(data) < cls.SIZE:
            raise LoaderError(
                ErrorCode.INVALID_PARAM,
                f"image header needs {cls.SIZE} bytes, got {len(data)}",
            )
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        """Serialise the header to its little-endian wire form."""
        try:
            return self._FORMAT.pack(
                self.magic,
                self.segments,
                self.flash_mode,
                self.flash_size_freq,
                self.entrypoint,
            )
        except struct.error as exc:
            raise LoaderError(ErrorCode.INVALID_PARAM, str(exc)) from exc


@dataclass(frozen=True)
class BinSegment:
    """One loadable segment of an image: a load address and its bytes."""

    addr: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SecurityInfo:
    """Security state of a target as reported by the boot ROM."""

    target_chip: TargetChip = TargetChip.UNKNOWN
    eco_version: int = 0
    secure_boot_enabled: bool = False
    secure_boot_aggressive_revoke_enabled: bool = False
    secure_download_mode_enabled: bool = False
    secure_boot_revoked_keys: tuple[bool, bool, bool] = field(
        default=(False, False, False)
    )
    jtag_software_disabled: bool = False
    jtag_hardware_disabled: bool = False
    usb_disabled: bool = False
    flash_encryption_enabled: bool = False
    dcache_in_uart_download_disabled: bool = False
    icache_in_uart_download_disabled: bool = False

    def __post_init__(self) -> None:
        keys = tuple(bool(k) for k in self.secure_boot_revoked_keys)
        if len(keys) != 3:
            raise ValueError("secure_boot_revoked_keys must hold exactly three flags")
        object.__setattr__(self, "secure_boot_revoked_keys", keys)


@dataclass(frozen=True)
class ConnectArgs:
    """Timing parameters used when connecting to a target.

    ``sync_timeout`` is the time in milliseconds to wait for a response;
    ``trials`` is the number of connection attempts.
    """

    sync_timeout: int = 100
    trials: int = 10