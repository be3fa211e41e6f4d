import struct

import pytest

from serial_flasher import protocol as p
from serial_flasher.loader_types import ErrorCode, LoaderError, TargetChip


def _header(frame):
    return struct.unpack_from("<BBHI", frame)


def test_roundup():
    assert p.roundup(1, 4) == 4
    assert p.roundup(8, 4) == 8
    assert p.roundup(0, p.ESP_RAM_BLOCK) == 0
    with pytest.raises(ValueError):
        p.roundup(3, 0)


def test_read_reg_wire_bytes():
    frame = p.read_reg(0x60002028)
    assert frame == bytes([0, 0x0A, 4, 0, 0, 0, 0, 0]) + (0x60002028).to_bytes(4, "little")


def test_encode_command_header_fields():
    frame = p.encode_command(p.Command.SYNC, b"abc", checksum=7)
    assert _header(frame) == (p.WRITE_DIRECTION, p.Command.SYNC, 3, 7)
    assert frame[p.COMMON_HEADER_SIZE:] == b"abc"


def test_encode_command_rejects_bad_checksum():
    with pytest.raises(LoaderError) as info:
        p.encode_command(p.Command.SYNC, b"", checksum=-1)
    assert info.value.code is ErrorCode.INVALID_PARAM


def test_flash_begin_optional_encrypted_field():
    plain = p.flash_begin(0x1000, 4, 1024, 0x10000)
    with_enc = p.flash_begin(0x1000, 4, 1024, 0x10000, encrypted=True)
    assert struct.unpack("<4I", plain[8:]) == (0x1000, 4, 1024, 0x10000)
    assert struct.unpack("<5I", with_enc[8:]) == (0x1000, 4, 1024, 0x10000, 1)
    assert _header(with_enc)[2] == len(with_enc) - p.COMMON_HEADER_SIZE


def test_data_command_layout():
    data = b"\x01\x02\x03\x04"
    frame = p.data_command(p.Command.MEM_DATA, data, 3, checksum=0x42)
    assert _header(frame) == (p.WRITE_DIRECTION, p.Command.MEM_DATA, 16 + len(data), 0x42)
    assert struct.unpack_from("<4I", frame, 8) == (len(data), 3, 0, 0)
    assert frame.endswith(data)


def test_data_command_rejects_non_data_command():
    with pytest.raises(LoaderError) as info:
        p.data_command(p.Command.FLASH_END, b"x", 0)
    assert info.value.code is ErrorCode.INVALID_PARAM


def test_flash_read_rom_limits():
    frame = p.flash_read_rom(0x2000)
    assert struct.unpack_from("<2I", frame, 8) == (0x2000, p.READ_FLASH_ROM_DATA_SIZE)
    with pytest.raises(LoaderError):
        p.flash_read_rom(0, p.READ_FLASH_ROM_DATA_SIZE + 1)


def test_sync_command_length_checked():
    frame = p.sync_command(bytes(p.SYNC_SEQUENCE_SIZE))
    assert _header(frame)[1:3] == (p.Command.SYNC, p.SYNC_SEQUENCE_SIZE)
    with pytest.raises(LoaderError):
        p.sync_command(b"\x07")


@pytest.mark.parametrize(
    "frame, command, words",
    [
        (p.flash_end(True), p.Command.FLASH_END, (1,)),
        (p.mem_begin(100, 1, p.ESP_RAM_BLOCK, 0x40080000), p.Command.MEM_BEGIN,
         (100, 1, p.ESP_RAM_BLOCK, 0x40080000)),
        (p.mem_end(False, 0x40080400), p.Command.MEM_END, (0, 0x40080400)),
        (p.write_reg(0x60002028, 55), p.Command.WRITE_REG, (0x60002028, 55, 0xFFFFFFFF, 0)),
        (p.spi_attach(0), p.Command.SPI_ATTACH, (0, 0)),
        (p.change_baudrate(230400, 115200), p.Command.CHANGE_BAUDRATE, (230400, 115200)),
        (p.spi_flash_md5(0x10000, 2048), p.Command.SPI_FLASH_MD5, (0x10000, 2048, 0, 0)),
        (p.flash_read_stub(0, 4096, 1024, 2), p.Command.READ_FLASH_STUB, (0, 4096, 1024, 2)),
        (p.spi_set_params(0, 0x400000, 0x10000, 0x1000, 0x100, 0xFFFF),
         p.Command.SPI_SET_PARAMS, (0, 0x400000, 0x10000, 0x1000, 0x100, 0xFFFF)),
    ],
)
def test_command_payloads(frame, command, words):
    direction, cmd, size, _ = _header(frame)
    assert (direction, cmd, size) == (p.WRITE_DIRECTION, command, 4 * len(words))
    assert struct.unpack(f"<{len(words)}I", frame[8:]) == words


def test_get_security_info_has_no_payload():
    frame = p.get_security_info()
    assert _header(frame) == (p.WRITE_DIRECTION, p.Command.GET_SECURITY_INFO, 0, 0)
    assert len(frame) == p.COMMON_HEADER_SIZE


def _response(command, value, data, failed=0, error=0):
    body = data + bytes([failed, error])
    return struct.pack("<BBHI", p.READ_DIRECTION, command, len(body), value) + body


def test_response_unpack():
    resp = p.Response.unpack(_response(p.Command.READ_REG, 55, b"\xaa\xbb"))
    assert resp.command == p.Command.READ_REG
    assert resp.value == 55
    assert resp.data == b"\xaa\xbb"
    assert resp.ok


def test_response_failure_status():
    resp = p.Response.unpack(
        _response(p.Command.FLASH_DATA, 0, b"", failed=p.STATUS_FAILURE,
                  error=p.ResponseError.INVALID_CRC)
    )
    assert not resp.ok
    assert p.ResponseError(resp.error) is p.ResponseError.INVALID_CRC
    assert p.ResponseError(resp.error).description == "invalid CRC in message"


@pytest.mark.parametrize(
    "raw",
    [
        b"\x01\x08",
        struct.pack("<BBHI", p.WRITE_DIRECTION, 8, 2, 0) + b"\x00\x00",
        struct.pack("<BBHI", p.READ_DIRECTION, 8, 5, 0) + b"\x00\x00",
    ],
)
def test_response_malformed(raw):
    with pytest.raises(LoaderError) as info:
        p.Response.unpack(raw)
    assert info.value.code is ErrorCode.INVALID_RESPONSE


def test_security_info_full():
    flags = (
        p.GET_SECURITY_INFO_SECURE_BOOT_EN
        | p.GET_SECURITY_INFO_SECURE_BOOT_KEY_REVOKE1
        | p.GET_SECURITY_INFO_HARD_DIS_JTAG
        | p.GET_SECURITY_INFO_DIS_DOWNLOAD_ICACHE
    )
    raw = struct.pack("<IB7sII", flags, 1, bytes(7), 9, 2)
    resp = p.SecurityInfoResponse.unpack(raw)
    assert resp.chip_id == 9 and resp.eco_version == 2
    info = resp.to_security_info(TargetChip.ESP32S3)
    assert info.target_chip is TargetChip.ESP32S3
    assert info.eco_version == 2
    assert info.secure_boot_enabled
    assert not info.secure_boot_aggressive_revoke_enabled
    assert info.secure_boot_revoked_keys == (False, True, False)
    assert info.jtag_hardware_disabled and not info.jtag_software_disabled
    assert info.icache_in_uart_download_disabled
    assert not info.dcache_in_uart_download_disabled
    assert info.flash_encryption_enabled


def test_security_info_short_form_and_even_crypt_count():
    raw = struct.pack("<IB7s", p.GET_SECURITY_INFO_DIS_USB, 3, bytes(7))
    resp = p.SecurityInfoResponse.unpack(raw)
    assert resp.chip_id is None and resp.eco_version is None
    info = resp.to_security_info(TargetChip.ESP32S2)
    assert info.usb_disabled
    assert info.eco_version == 0
    assert not info.flash_encryption_enabled


def test_security_info_bad_length():
    with pytest.raises(LoaderError) as info:
        p.SecurityInfoResponse.unpack(bytes(p.SecurityInfoResponse.SHORT_SIZE + 1))
    assert info.value.code is ErrorCode.INVALID_RESPONSE


def test_target_registers_fields():
    regs = p.TargetRegisters(1, 2, 3, 4, 5, 6, 7)
    assert (regs.cmd, regs.w0, regs.miso_dlen) == (1, 5, 7)