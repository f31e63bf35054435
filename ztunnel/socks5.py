"""Minimal SOCKS5 server handshake: no authentication, CONNECT to IPv4 or IPv6 only."""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Union

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_VERSION = 0x05
_NO_AUTH = 0x00
_CMD_CONNECT = 0x01
_ATYP_IPV4 = 0x01
_ATYP_DOMAIN = 0x03
_ATYP_IPV6 = 0x04

# The bound address in the reply is a dummy; clients generally ignore it.
_SUCCESS_REPLY = bytes(
    [_VERSION, 0x00, 0x00, _ATYP_IPV4, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
)


class Socks5Error(Exception):
    """The client sent a request this server does not accept."""


async def _read(reader: asyncio.StreamReader, n: int) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        raise Socks5Error("unexpected end of stream") from exc


async def _send(writer, data: bytes) -> None:
    writer.write(data)
    await writer.drain()


async def read_request(reader, writer) -> tuple[IpAddress, int]:
    """Run the handshake and return the requested destination as ``(ip, port)``."""
    version, nmethods = await _read(reader, 2)
    if version != _VERSION:
        raise Socks5Error("Invalid version")
    if nmethods == 0:
        raise Socks5Error("Invalid auth methods")

    methods = await _read(reader, nmethods)
    if _NO_AUTH not in methods:
        raise Socks5Error("unsupported auth method")
    await _send(writer, bytes([_VERSION, _NO_AUTH]))

    version, command = await _read(reader, 2)
    if version != _VERSION:
        raise Socks5Error("unsupported version")
    if command != _CMD_CONNECT:
        raise Socks5Error("unsupported command")

    await _read(reader, 1)  # reserved
    (atyp,) = await _read(reader, 1)

    ip: IpAddress
    if atyp == _ATYP_IPV4:
        ip = ipaddress.IPv4Address(await _read(reader, 4))
    elif atyp == _ATYP_IPV6:
        ip = ipaddress.IPv6Address(await _read(reader, 16))
    elif atyp == _ATYP_DOMAIN:
        (length,) = await _read(reader, 1)
        await _read(reader, length)
        raise Socks5Error("unsupported host")
    else:
        raise Socks5Error("unsupported host")

    port = int.from_bytes(await _read(reader, 2), "big")
    await _send(writer, _SUCCESS_REPLY)
    return ip, port