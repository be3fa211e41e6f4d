# serial_flasher

A pure-Python library for the host side of the ESP ROM bootloader protocol
(ESP8266, ESP32, ESP32-S2/S3, ESP32-C2/C3/C6, ESP32-H2). It has no
dependencies outside the standard library.

## What is in it

- `serial_flasher.loader_types`: `ErrorCode`, `LoaderError` (an exception
  that carries an `ErrorCode`), `TargetChip` (with `TargetChip.from_value`,
  which maps unknown values to `UNKNOWN`), `BinHeader` (`unpack` / `pack`
  of the 8-byte image header), `BinSegment`, `SecurityInfo` and
  `ConnectArgs` (defaults: `sync_timeout=100`, `trials=10`).
- `serial_flasher.port`: `LoaderPort`, an abstract base class for a
  transport. Subclasses implement `write`, `read`, `enter_bootloader` and
  `reset_target`. `delay_ms`, `start_timer`, `remaining_time` and
  `debug_print` already work. `change_transmission_rate` raises
  `LoaderError(UNSUPPORTED_FUNC)` unless it is overridden.
- `serial_flasher.protocol`: the `Command` and `ResponseError` enums and
  byte-exact encoders for the commands. These are `encode_command`,
  `flash_begin`, `data_command`, `flash_end`, `flash_read_rom`,
  `flash_read_stub`, `mem_begin`, `mem_end`, `sync_command`, `write_reg`,
  `read_reg`, `spi_attach`, `change_baudrate`, `spi_flash_md5`,
  `get_security_info` and `spi_set_params`. The module also has the
  `Response` and `SecurityInfoResponse` decoders, the `TargetRegisters`
  record and the `roundup` helper.
- `serial_flasher.sip`: `SipHeader` (`pack` / `unpack`), `SipPacketType`,
  `SipCmdId`, `write_memory_command` and `bootup_command`, all for SIP
  packets sent over SDIO.
- `serial_flasher.target_info`: `target_name` and `format_security_info`,
  which turns a `SecurityInfo` into a readable report.
- `serial_flasher.workflows`:
  - `error_string`
  - `flash_layout`, which returns a `FlashLayout` of the default
    bootloader, partition-table and application addresses for a chip
  - `FlashLayout.with_images`, which pairs images with those addresses as
    `PartitionAttr` values
  - `parse_ram_image`
  - `connect_to_target` and `connect_to_target_with_stub`
  - `flash_binary`, which writes data in 1024-byte blocks, prints progress
    and can verify by MD5
  - `load_ram_binary`, which sends each segment in `0x1800`-byte blocks
    and then jumps to the entry point

## Installing

```
pip install .
```

## Example

```python
from serial_flasher.loader_types import BinHeader, TargetChip
from serial_flasher.protocol import Response, write_reg
from serial_flasher.workflows import flash_layout, parse_ram_image

header = BinHeader.unpack(image_bytes)
print(header.segments, hex(header.entrypoint))

header, segments = parse_ram_image(image_bytes)
for segment in segments:
    print(hex(segment.addr), segment.size)

layout = flash_layout(TargetChip.ESP32C3)
print(hex(layout.boot), hex(layout.part), hex(layout.app))

packet = write_reg(0x60002028, 55, 0xFFFFFFFF, 0)
reply = Response.unpack(decoded_reply_bytes)
print(reply.ok, reply.value)
```

The workflow functions take a *loader* object. It must provide `connect`,
`connect_with_stub`, `get_target`, `change_transmission_rate`,
`change_transmission_rate_stub`, `flash_start`, `flash_write`,
`flash_verify`, `mem_start`, `mem_write` and `mem_finish`, and each of
these raises `LoaderError` when it fails. The workflows print messages to
the `out` stream (standard output by default) and then re-raise the
error. `error_string` turns an `ErrorCode` into the short text used in
those messages.

## What this package does not do

- It does not include a loader object that implements the operations
  listed above on top of a `LoaderPort`. You supply that object yourself.
- It has no concrete transport: no serial port, USB, SPI or SDIO driver,
  and no control of the reset or boot pins. You subclass `LoaderPort` to
  provide these.
- It does no SLIP framing. `Response.unpack` expects a packet that has
  already been decoded.
- It has no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```