"""High-level flashing and RAM-loading sequences built on a connected loader.

The functions here drive a loader object that exposes the target operations
(``connect``, ``flash_start``, ``mem_write`` and so on). Each operation raises
:class:`LoaderError` on failure. The workflows report progress and
troubleshooting hints to a text stream and re-raise the error.
"""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass
from typing import Protocol, TextIO

from serial_flasher.loader_types import (
    BinHeader,
    BinSegment,
    ConnectArgs,
    ErrorCode,
    LoaderError,
    TargetChip,
)
from serial_flasher.port import LoaderPort
from serial_flasher.protocol import ESP_RAM_BLOCK

BIN_FIRST_SEGMENT_OFFSET = 0x18

BOOTLOADER_ADDRESS_V0 = 0x1000
BOOTLOADER_ADDRESS_V1 = 0x0
PARTITION_ADDRESS = 0x8000
APPLICATION_ADDRESS = 0x10000

FLASH_PAYLOAD_SIZE = 1024

_SEGMENT_HEADER = struct.Struct("<II")

_ERROR_STRINGS = {
    ErrorCode.SUCCESS: "NONE",
    ErrorCode.FAIL: "UNKNOWN",
    ErrorCode.TIMEOUT: "TIMEOUT",
    ErrorCode.IMAGE_SIZE: "IMAGE SIZE",
    ErrorCode.INVALID_MD5: "INVALID MD5",
    ErrorCode.INVALID_PARAM: "INVALID PARAMETER",
    ErrorCode.INVALID_TARGET: "INVALID TARGET",
    ErrorCode.UNSUPPORTED_CHIP: "UNSUPPORTED CHIP",
    ErrorCode.UNSUPPORTED_FUNC: "UNSUPPORTED FUNCTION",
    ErrorCode.INVALID_RESPONSE: "INVALID RESPONSE",
}


class _Loader(Protocol):
    def connect(self, connect_args: ConnectArgs) -> None: ...
    def connect_with_stub(self, connect_args: ConnectArgs) -> None: ...
    def get_target(self) -> TargetChip: ...
    def change_transmission_rate(self, rate: int) -> None: ...
    def change_transmission_rate_stub(self, old_rate: int, new_rate: int) -> None: ...
    def flash_start(self, offset: int, image_size: int, block_size: int) -> None: ...
    def flash_write(self, payload: bytes) -> None: ...
    def flash_verify(self) -> None: ...
    def mem_start(self, offset: int, size: int, block_size: int) -> None: ...
    def mem_write(self, payload: bytes) -> None: ...
    def mem_finish(self, entrypoint: int) -> None: ...


@dataclass(frozen=True)
class PartitionAttr:
    """An image together with the flash address it belongs at."""

    data: bytes
    addr: int

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FlashLayout:
    """Flash addresses of the bootloader, partition table and application."""

    boot: int
    part: int
    app: int

    def with_images(
        self, boot: bytes, part: bytes, app: bytes
    ) -> tuple[PartitionAttr, PartitionAttr, PartitionAttr]:
        """Pair the three images with their addresses, in flashing order."""
        return (
            PartitionAttr(bytes(boot), self.boot),
            PartitionAttr(bytes(part), self.part),
            PartitionAttr(bytes(app), self.app),
        )


_V0_TARGETS = frozenset({TargetChip.ESP8266, TargetChip.ESP32, TargetChip.ESP32S2})
_V1_TARGETS = frozenset(
    {
        TargetChip.ESP32H2,
        TargetChip.ESP32C2,
        TargetChip.ESP32C3,
        TargetChip.ESP32C6,
        TargetChip.ESP32S3,
    }
)


def error_string(code: ErrorCode | int) -> str:
    """Short upper-case name of an error code, as shown to users."""
    try:
        return _ERROR_STRINGS[ErrorCode(code)]
    except ValueError as exc:
        raise ValueError(f"unknown error code {code!r}") from exc


def flash_layout(target: TargetChip | int) -> FlashLayout:
    """Flash addresses for the standard images on ``target``."""
    chip = TargetChip.from_value(int(target))
    if chip in _V0_TARGETS:
        boot = BOOTLOADER_ADDRESS_V0
    elif chip in _V1_TARGETS:
        boot = BOOTLOADER_ADDRESS_V1
    else:
        raise LoaderError(ErrorCode.INVALID_TARGET, f"no flash layout for {chip.name}")
    return FlashLayout(boot=boot, part=PARTITION_ADDRESS, app=APPLICATION_ADDRESS)


def parse_ram_image(data: bytes) -> tuple[BinHeader, list[BinSegment]]:
    """Split a RAM-loadable image into its header and segments."""
    data = bytes(data)
    header = BinHeader.unpack(data)
    segments: list[BinSegment] = []
    pos = BIN_FIRST_SEGMENT_OFFSET
    for index in range(header.segments):
        if pos + _SEGMENT_HEADER.size > len(data):
            raise LoaderError(
                ErrorCode.INVALID_PARAM, f"image truncated in header of segment {index}"
            )
        addr, size = _SEGMENT_HEADER.unpack_from(data, pos)
        pos += _SEGMENT_HEADER.size
        if pos + size > len(data):
            raise LoaderError(
                ErrorCode.INVALID_PARAM,
                f"segment {index} needs {size} bytes, image has {len(data) - pos} left",
            )
        segments.append(BinSegment(addr=addr, data=data[pos : pos + size]))
        pos += size // 4 * 4
    return header, segments


def _stream(out: TextIO | None) -> TextIO:
    return sys.stdout if out is None else out


def _report_connect_failure(err: LoaderError, out: TextIO) -> None:
    print(f"Cannot connect to target. Error: {error_string(err.code)}", file=out)
    if err.code is ErrorCode.TIMEOUT:
        print("Check if the host and the target are properly connected.", file=out)
    elif err.code is ErrorCode.INVALID_TARGET:
        print("You could be using an unsupported chip, or chip revision.", file=out)
    elif err.code is ErrorCode.INVALID_RESPONSE:
        print(
            "Try lowering the transmission rate or using shorter wires to connect "
            "the host and the target.",
            file=out,
        )


def _switch_host_rate(port: LoaderPort, rate: int, out: TextIO) -> None:
    try:
        port.change_transmission_rate(rate)
    except LoaderError:
        print("Unable to change transmission rate.", file=out)
        raise
    print("Transmission rate changed.", file=out)


def _report_target_rate_failure(err: LoaderError, out: TextIO) -> None:
    if err.code is ErrorCode.UNSUPPORTED_FUNC:
        print("ESP8266 does not support change transmission rate command.", file=out)
    else:
        print("Unable to change transmission rate on target.", file=out)


def connect_to_target(
    loader: _Loader, port: LoaderPort, higher_rate: int = 0, out: TextIO | None = None
) -> None:
    """Connect to the target and, if ``higher_rate`` is set, switch both ends to it."""
    out = _stream(out)
    try:
        loader.connect(ConnectArgs())
    except LoaderError as err:
        _report_connect_failure(err, out)
        raise
    print("Connected to target", file=out)

    if higher_rate and loader.get_target() != TargetChip.ESP8266:
        try:
            loader.change_transmission_rate(higher_rate)
        except LoaderError as err:
            _report_target_rate_failure(err, out)
            raise
        _switch_host_rate(port, higher_rate, out)


def connect_to_target_with_stub(
    loader: _Loader,
    port: LoaderPort,
    current_rate: int,
    higher_rate: int,
    out: TextIO | None = None,
) -> None:
    """Connect with the flasher stub and move from ``current_rate`` to ``higher_rate``."""
    out = _stream(out)
    try:
        loader.connect_with_stub(ConnectArgs())
    except LoaderError as err:
        _report_connect_failure(err, out)
        raise
    print("Connected to target", file=out)

    if higher_rate != current_rate:
        try:
            loader.change_transmission_rate_stub(current_rate, higher_rate)
        except LoaderError as err:
            _report_target_rate_failure(err, out)
            raise
        _switch_host_rate(port, higher_rate, out)


def flash_binary(
    loader: _Loader,
    data: bytes,
    address: int,
    out: TextIO | None = None,
    verify: bool = True,
) -> None:
    """Erase, write and optionally MD5-verify ``data`` at flash ``address``."""
    out = _stream(out)
    data = bytes(data)
    total = len(data)

    print("Erasing flash (this may take a while)...", file=out)
    try:
        loader.flash_start(address, total, FLASH_PAYLOAD_SIZE)
    except LoaderError as err:
        print(f"Erasing flash failed with error: {error_string(err.code)}.", file=out)
        if err.code is ErrorCode.INVALID_PARAM:
            print(
                "If using Secure Download Mode, double check that the specified "
                "target flash size is correct.",
                file=out,
            )
        raise
    print("Start programming", file=out)

    written = 0
    for start in range(0, total, FLASH_PAYLOAD_SIZE):
        chunk = data[start : start + FLASH_PAYLOAD_SIZE]
        try:
            loader.flash_write(chunk)
        except LoaderError as err:
            print(f"\nPacket could not be written! Error {error_string(err.code)}.", file=out)
            raise
        written += len(chunk)
        print(f"\rProgress: {int(written / total * 100)} %", end="", file=out)

    print("\nFinished programming", file=out)

    if verify:
        try:
            loader.flash_verify()
        except LoaderError as err:
            if err.code is ErrorCode.UNSUPPORTED_FUNC:
                print("ESP8266 does not support flash verify command.", file=out)
            else:
                print(f"MD5 does not match. Error: {error_string(err.code)}", file=out)
            raise
        print("Flash verified", file=out)


def load_ram_binary(loader: _Loader, data: bytes, out: TextIO | None = None) -> None:
    """Load every segment of a RAM image into the target and jump to its entry point."""
    out = _stream(out)
    print("Start loading", file=out)
    header, segments = parse_ram_image(data)

    for segment in segments:
        print(f"Downloading {segment.size} bytes at 0x{segment.addr:08x}...", file=out)
        try:
            loader.mem_start(segment.addr, segment.size, ESP_RAM_BLOCK)
        except LoaderError as err:
            print(
                f"Loading to RAM could not be started. Error: {error_string(err.code)}.",
                file=out,
            )
            if err.code is ErrorCode.INVALID_PARAM:
                print("Check if the chip has Secure Download Mode enabled.", file=out)
            raise

        for start in range(0, segment.size, ESP_RAM_BLOCK):
            try:
                loader.mem_write(segment.data[start : start + ESP_RAM_BLOCK])
            except LoaderError as err:
                print(
                    f"\nPacket could not be written! Error: {error_string(err.code)}.",
                    file=out,
                )
                raise

    try:
        loader.mem_finish(header.entrypoint)
    except LoaderError as err:
        print(f"\nLoading to RAM finished with error: {error_string(err.code)}.", file=out)
        raise
    print("\nFinished loading", file=out)