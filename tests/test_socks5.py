import asyncio
import ipaddress
import struct

import pytest

from ztunnel.socks5 import Socks5Error, read_request


class _Writer:
    def __init__(self):
        self.data = bytearray()

    def write(self, data):
        self.data.extend(data)

    async def drain(self):
        pass


def _reader(payload: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(payload)
    reader.feed_eof()
    return reader


GREETING = bytes([0x05, 0x01, 0x00])
SUCCESS = bytes([0x05, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00])


def _connect(atyp: int, addr: bytes, port: int) -> bytes:
    return bytes([0x05, 0x01, 0x00, atyp]) + addr + struct.pack(">H", port)


@pytest.mark.asyncio
async def test_ipv4_connect():
    ip = ipaddress.IPv4Address("192.0.2.43")
    writer = _Writer()
    result = await read_request(_reader(GREETING + _connect(0x01, ip.packed, 8080)), writer)
    assert result == (ip, 8080)
    assert bytes(writer.data) == bytes([0x05, 0x00]) + SUCCESS


@pytest.mark.asyncio
async def test_ipv6_connect():
    ip = ipaddress.IPv6Address("2001:db8:cafe::17")
    writer = _Writer()
    result = await read_request(_reader(GREETING + _connect(0x04, ip.packed, 80)), writer)
    assert result == (ip, 80)


@pytest.mark.asyncio
async def test_no_auth_among_several_methods():
    ip = ipaddress.IPv4Address("10.0.0.1")
    greeting = bytes([0x05, 0x03, 0x02, 0x01, 0x00])
    result = await read_request(_reader(greeting + _connect(0x01, ip.packed, 443)), _Writer())
    assert result == (ip, 443)


@pytest.mark.asyncio
async def test_invalid_version():
    with pytest.raises(Socks5Error, match="Invalid version"):
        await read_request(_reader(bytes([0x04, 0x01, 0x00])), _Writer())


@pytest.mark.asyncio
async def test_zero_methods():
    with pytest.raises(Socks5Error, match="Invalid auth methods"):
        await read_request(_reader(bytes([0x05, 0x00])), _Writer())


@pytest.mark.asyncio
async def test_auth_required_rejected_without_reply():
    writer = _Writer()
    with pytest.raises(Socks5Error, match="unsupported auth method"):
        await read_request(_reader(bytes([0x05, 0x01, 0x02])), writer)
    assert bytes(writer.data) == b""


@pytest.mark.asyncio
async def test_unsupported_request_version():
    payload = GREETING + bytes([0x04, 0x01, 0x00, 0x01]) + b"\x00" * 6
    with pytest.raises(Socks5Error, match="unsupported version"):
        await read_request(_reader(payload), _Writer())


@pytest.mark.asyncio
async def test_unsupported_command():
    payload = GREETING + bytes([0x05, 0x02, 0x00, 0x01]) + b"\x00" * 6
    with pytest.raises(Socks5Error, match="unsupported command"):
        await read_request(_reader(payload), _Writer())


@pytest.mark.asyncio
async def test_domain_rejected():
    domain = b"example.com"
    payload = GREETING + _connect(0x03, bytes([len(domain)]) + domain, 80)
    writer = _Writer()
    with pytest.raises(Socks5Error, match="unsupported host"):
        await read_request(_reader(payload), writer)
    assert SUCCESS not in bytes(writer.data)


@pytest.mark.asyncio
async def test_unknown_address_type():
    payload = GREETING + _connect(0x09, b"", 80)
    with pytest.raises(Socks5Error, match="unsupported host"):
        await read_request(_reader(payload), _Writer())


@pytest.mark.asyncio
async def test_truncated_stream():
    payload = GREETING + bytes([0x05, 0x01, 0x00, 0x01, 0x7F])
    with pytest.raises(Socks5Error, match="unexpected end of stream"):
        await read_request(_reader(payload), _Writer())