"""Packet headers of the SIP protocol used to load code over SDIO."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from serial_flasher.loader_types import ErrorCode, LoaderError

SIP_HDR_F_SYNC = 0x4
SIP_IFIDX_MASK = 0xF0
SIP_IFIDX_S = 4
SIP_TYPE_MASK = 0x0F
SIP_TYPE_S = 0

SIP_PACKET_SIZE = 256

_HEADER = struct.Struct("<BBHII")
_TWO_WORDS = struct.Struct("<II")


class SipPacketType(IntEnum):
    CTRL = 0
    DATA = 1


class SipCmdId(IntEnum):
    GET_VER = 0
    WRITE_MEMORY = 1
    BOOTUP = 5


@dataclass(frozen=True)
class SipHeader:
    """SIP packet header; ``length`` includes the header and must be 4-aligned."""

    packet_type: SipPacketType
    length: int
    cmd_id: int = 0
    sequence_num: int = 0
    flags: int = 0
    interface_index: int = 0

    SIZE: ClassVar[int] = _HEADER.size

    def pack(self) -> bytes:
        if self.length % 4:
            raise LoaderError(
                ErrorCode.INVALID_PARAM, f"SIP packet length {self.length} is not 4-aligned"
            )
        if not 0 <= self.interface_index <= SIP_IFIDX_MASK >> SIP_IFIDX_S:
            raise LoaderError(ErrorCode.INVALID_PARAM, "SIP interface index out of range")
        fc0 = ((int(self.packet_type) << SIP_TYPE_S) & SIP_TYPE_MASK) | (
            (self.interface_index << SIP_IFIDX_S) & SIP_IFIDX_MASK
        )
        try:
            return _HEADER.pack(fc0, self.flags, self.length, self.cmd_id, self.sequence_num)
        except struct.error as exc:
            raise LoaderError(ErrorCode.INVALID_PARAM, str(exc)) from exc

    @classmethod
    def unpack(cls, data: bytes) -> SipHeader:
        if len(data) < cls.SIZE:
            raise LoaderError(
                ErrorCode.INVALID_RESPONSE, f"SIP header needs {cls.SIZE} bytes, got {len(data)}"
            )
        fc0, flags, length, cmd_id, sequence_num = _HEADER.unpack_from(data)
        raw_type = (fc0 & SIP_TYPE_MASK) >> SIP_TYPE_S
        try:
            packet_type = SipPacketType(raw_type)
        except ValueError as exc:
            raise LoaderError(
                ErrorCode.INVALID_RESPONSE, f"unknown SIP packet type {raw_type}"
            ) from exc
        return cls(
            packet_type=packet_type,
            length=length,
            cmd_id=cmd_id,
            sequence_num=sequence_num,
            flags=flags,
            interface_index=(fc0 & SIP_IFIDX_MASK) >> SIP_IFIDX_S,
        )


def _pack_two(first: int, second: int) -> bytes:
    try:
        return _TWO_WORDS.pack(first, second)
    except struct.error as exc:
        raise LoaderError(ErrorCode.INVALID_PARAM, str(exc)) from exc


def write_memory_command(addr: int, length: int) -> bytes:
    """Body of a WRITE_MEMORY control command."""
    return _pack_two(addr, length)


def bootup_command(boot_addr: int, discard_link: int) -> bytes:
    """Body of a BOOTUP control command."""
    return _pack_two(boot_addr, discard_link)