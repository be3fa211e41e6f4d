"""Wire format of the serial download protocol: commands, responses and limits."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from serial_flasher.loader_types import ErrorCode, LoaderError, SecurityInfo, TargetChip

STATUS_FAILURE = 1
STATUS_SUCCESS = 0

READ_DIRECTION = 1
WRITE_DIRECTION = 0

MD5_SIZE_ROM = 32
MD5_SIZE_STUB = 16

ESP_RAM_BLOCK = 0x1800

MAX_RESP_DATA_SIZE = 64
READ_FLASH_ROM_DATA_SIZE = 64

SYNC_SEQUENCE_SIZE = 36

GET_SECURITY_INFO_SECURE_BOOT_EN = 1 << 0
GET_SECURITY_INFO_SECURE_BOOT_AGGRESSIVE_REVOKE = 1 << 1
GET_SECURITY_INFO_SECURE_DOWNLOAD_ENABLE = 1 << 2
GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE0 = 1 << 3
GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE1 = 1 << 4
GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE2 = 1 << 5
GET_SECURITY_INFO_SOFT_DIS_JTAG = 1 << 6
GET_SECURITY_INFO_HARD_DIS_JTAG = 1 << 7
GET_SECURITY_INFO_DIS_USB = 1 << 8
GET_SECURITY_INFO_DIS_DOWNLOAD_DCACHE = 1 << 9
GET_SECURITY_INFO_DIS_DOWNLOAD_ICACHE = 1 << 10

_COMMON = struct.Struct("<BBHI")
COMMON_HEADER_SIZE = _COMMON.size
_STATUS_SIZE = 2


class Command(IntEnum):
    """Command codes understood by the boot ROM and the flasher stub."""

    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    MEM_BEGIN = 0x05
    MEM_END = 0x06
    MEM_DATA = 0x07
    SYNC = 0x08
    WRITE_REG = 0x09
    READ_REG = 0x0A
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    READ_FLASH_ROM = 0x0E
    CHANGE_BAUDRATE = 0x0F
    FLASH_DEFL_BEGIN = 0x10
    FLASH_DEFL_DATA = 0x11
    FLASH_DEFL_END = 0x12
    SPI_FLASH_MD5 = 0x13
    GET_SECURITY_INFO = 0x14
    READ_FLASH_STUB = 0xD2


class ResponseError(IntEnum):
    """Error codes carried in the status of a response."""

    RESPONSE_OK = 0x00
    INVALID_COMMAND = 0x05
    COMMAND_FAILED = 0x06
    INVALID_CRC = 0x07
    FLASH_WRITE_ERR = 0x08
    FLASH_READ_ERR = 0x09
    READ_LENGTH_ERR = 0x0A
    DEFLATE_ERROR = 0x0B

    @property
    def description(self) -> str:
        return _RESPONSE_ERROR_TEXT[self]


_RESPONSE_ERROR_TEXT = {
    ResponseError.RESPONSE_OK: "no error",
    ResponseError.INVALID_COMMAND: "parameters or length field is invalid",
    ResponseError.COMMAND_FAILED: "failed to act on received message",
    ResponseError.INVALID_CRC: "invalid CRC in message",
    ResponseError.FLASH_WRITE_ERR: "data read back from flash does not match",
    ResponseError.FLASH_READ_ERR: "SPI read failed",
    ResponseError.READ_LENGTH_ERR: "SPI read request length is too long",
    ResponseError.DEFLATE_ERROR: "error in compressed upload",
}

_DATA_COMMANDS = frozenset({Command.FLASH_DATA, Command.MEM_DATA, Command.FLASH_DEFL_DATA})


def roundup(a: int, b: int) -> int:
    """Round ``a`` up to the next multiple of ``b``."""
    if b <= 0:
        raise ValueError("the rounding step must be positive")
    return (a + b - 1) // b * b


def _pack_words(*values: int) -> bytes:
    try:
        return struct.pack(f"<{len(values)}I", *values)
    except struct.error as exc:
        raise LoaderError(ErrorCode.INVALID_PARAM, str(exc)) from exc


def encode_command(command: Command | int, payload: bytes = b"", checksum: int = 0) -> bytes:
    """Prefix ``payload`` with the common command header."""
    command = Command(command)
    payload = bytes(payload)
    if len(payload) > 0xFFFF:
        raise LoaderError(ErrorCode.INVALID_PARAM, "command payload longer than 65535 bytes")
    try:
        header = _COMMON.pack(WRITE_DIRECTION, command, len(payload), checksum)
    except struct.error as exc:
        raise LoaderError(ErrorCode.INVALID_PARAM, str(exc)) from exc
    return header + payload


def flash_begin(
    erase_size: int,
    packet_count: int,
    packet_size: int,
    offset: int,
    encrypted: bool | None = None,
) -> bytes:
    """FLASH_BEGIN; ``encrypted`` is omitted from the wire when None."""
    words = [erase_size, packet_count, packet_size, offset]
    if encrypted is not None:
        words.append(int(bool(encrypted)))
    return encode_command(Command.FLASH_BEGIN, _pack_words(*words))


def data_command(
    command: Command | int, data: bytes, sequence_number: int, checksum: int = 0
) -> bytes:
    """A data block for FLASH_DATA, MEM_DATA or FLASH_DEFL_DATA."""
    command = Command(command)
    if command not in _DATA_COMMANDS:
        raise LoaderError(ErrorCode.INVALID_PARAM, f"{command.name} carries no data block")
    data = bytes(data)
    payload = _pack_words(len(data), sequence_number, 0, 0) + data
    return encode_command(command, payload, checksum)


def flash_end(stay_in_loader: bool) -> bytes:
    return encode_command(Command.FLASH_END, _pack_words(int(bool(stay_in_loader))))


def flash_read_rom(address: int, size: int = READ_FLASH_ROM_DATA_SIZE) -> bytes:
    """READ_FLASH_ROM for at most READ_FLASH_ROM_DATA_SIZE bytes."""
    if not 0 < size <= READ_FLASH_ROM_DATA_SIZE:
        raise LoaderError(
            ErrorCode.INVALID_PARAM,
            f"ROM flash reads take 1 to {READ_FLASH_ROM_DATA_SIZE} bytes, got {size}",
        )
    return encode_command(Command.READ_FLASH_ROM, _pack_words(address, size))


def flash_read_stub(
    address: int, total_size: int, packet_data_size: int, max_inflight_packets: int
) -> bytes:
    return encode_command(
        Command.READ_FLASH_STUB,
        _pack_words(address, total_size, packet_data_size, max_inflight_packets),
    )


def mem_begin(total_size: int, blocks: int, block_size: int, offset: int) -> bytes:
    return encode_command(Command.MEM_BEGIN, _pack_words(total_size, blocks, block_size, offset))


def mem_end(stay_in_loader: bool, entry_point_address: int) -> bytes:
    return encode_command(
        Command.MEM_END, _pack_words(int(bool(stay_in_loader)), entry_point_address)
    )


def sync_command(sync_sequence: bytes) -> bytes:
    sync_sequence = bytes(sync_sequence)
    if len(sync_sequence) != SYNC_SEQUENCE_SIZE:
        raise LoaderError(
            ErrorCode.INVALID_PARAM,
            f"sync sequence must be {SYNC_SEQUENCE_SIZE} bytes, got {len(sync_sequence)}",
        )
    return encode_command(Command.SYNC, sync_sequence)


def write_reg(address: int, value: int, mask: int = 0xFFFFFFFF, delay_us: int = 0) -> bytes:
    return encode_command(Command.WRITE_REG, _pack_words(address, value, mask, delay_us))


def read_reg(address: int) -> bytes:
    return encode_command(Command.READ_REG, _pack_words(address))


def spi_attach(configuration: int) -> bytes:
    return encode_command(Command.SPI_ATTACH, _pack_words(configuration, 0))


def change_baudrate(new_baudrate: int, old_baudrate: int = 0) -> bytes:
    return encode_command(Command.CHANGE_BAUDRATE, _pack_words(new_baudrate, old_baudrate))


def spi_flash_md5(address: int, size: int) -> bytes:
    return encode_command(Command.SPI_FLASH_MD5, _pack_words(address, size, 0, 0))


def get_security_info() -> bytes:
    return encode_command(Command.GET_SECURITY_INFO)


def spi_set_params(
    flash_id: int,
    total_size: int,
    block_size: int,
    sector_size: int,
    page_size: int,
    status_mask: int,
) -> bytes:
    return encode_command(
        Command.SPI_SET_PARAMS,
        _pack_words(flash_id, total_size, block_size, sector_size, page_size, status_mask),
    )


@dataclass(frozen=True)
class Response:
    """A reply from the target: header fields, response data and status."""

    command: int
    value: int
    data: bytes
    failed: int
    error: int

    @property
    def ok(self) -> bool:
        return self.failed == STATUS_SUCCESS

    @classmethod
    def unpack(cls, data: bytes) -> Response:
        """Parse a decoded response packet; the status is its last two bytes."""
        data = bytes(data)
        if len(data) < COMMON_HEADER_SIZE + _STATUS_SIZE:
            raise LoaderError(ErrorCode.INVALID_RESPONSE, "response too short")
        direction, command, size, value = _COMMON.unpack_from(data)
        if direction != READ_DIRECTION:
            raise LoaderError(ErrorCode.INVALID_RESPONSE, "response has wrong direction")
        body = data[COMMON_HEADER_SIZE:]
        if len(body) != size or size < _STATUS_SIZE:
            raise LoaderError(
                ErrorCode.INVALID_RESPONSE,
                f"response size field {size} does not match {len(body)} bytes of body",
            )
        return cls(
            command=command,
            value=value,
            data=body[:-_STATUS_SIZE],
            failed=body[-2],
            error=body[-1],
        )


_SEC_INFO_FULL = struct.Struct("<IB7sII")
_SEC_INFO_SHORT = struct.Struct("<IB7s")


@dataclass(frozen=True)
class SecurityInfoResponse:
    """Raw data of a GET_SECURITY_INFO reply; chip id and ECO are absent on ESP32-S2."""

    flags: int
    flash_crypt_cnt: int
    key_purposes: bytes
    chip_id: int | None = None
    eco_version: int | None = None

    FULL_SIZE: ClassVar[int] = _SEC_INFO_FULL.size
    SHORT_SIZE: ClassVar[int] = _SEC_INFO_SHORT.size

    @classmethod
    def unpack(cls, data: bytes) -> SecurityInfoResponse:
        data = bytes(data)
        if len(data) == cls.FULL_SIZE:
            return cls(*_SEC_INFO_FULL.unpack(data))
        if len(data) == cls.SHORT_SIZE:
            return cls(*_SEC_INFO_SHORT.unpack(data))
        raise LoaderError(
            ErrorCode.INVALID_RESPONSE,
            f"security info is {cls.SHORT_SIZE} or {cls.FULL_SIZE} bytes, got {len(data)}",
        )

    def to_security_info(self, target_chip: TargetChip) -> SecurityInfo:
        flags = self.flags
        return SecurityInfo(
            target_chip=TargetChip.from_value(target_chip),
            eco_version=self.eco_version or 0,
            secure_boot_enabled=bool(flags & GET_SECURITY_INFO_SECURE_BOOT_EN),
            secure_boot_aggressive_revoke_enabled=bool(
                flags & GET_SECURITY_INFO_SECURE_BOOT_AGGRESSIVE_REVOKE
            ),
            secure_download_mode_enabled=bool(flags & GET_SECURITY_INFO_SECURE_DOWNLOAD_ENABLE),
            secure_boot_revoked_keys=(
                bool(flags & GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE0),
                bool(flags & GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE1),
                bool(flags & GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE2),
            ),
            jtag_software_disabled=bool(flags & GET_SECURITY_INFO_SOFT_DIS_JTAG),
            jtag_hardware_disabled=bool(flags & GET_SECURITY_INFO_HARD_DIS_JTAG),
            usb_disabled=bool(flags & GET_SECURITY_INFO_DIS_USB),
            # Encryption is on while an odd number of counter bits are burnt.
            flash_encryption_enabled=bin(self.flash_crypt_cnt).count("1") % 2 == 1,
            dcache_in_uart_download_disabled=bool(flags & GET_SECURITY_INFO_DIS_DOWNLOAD_DCACHE),
            icache_in_uart_download_disabled=bool(flags & GET_SECURITY_INFO_DIS_DOWNLOAD_ICACHE),
        )


@dataclass(frozen=True)
class TargetRegisters:
    """Addresses of the SPI registers used to talk to a target's flash chip."""

    cmd: int
    usr: int
    usr1: int
    usr2: int
    w0: int
    mosi_dlen: int
    miso_dlen: int