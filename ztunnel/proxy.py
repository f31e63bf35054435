"""Proxy helpers: trace context, forwarded-source parsing and byte relaying."""

from __future__ import annotations

import asyncio
import ipaddress
import re
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple, Union

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

BAGGAGE_HEADER = "baggage"
TRACEPARENT_HEADER = "traceparent"

# TLS record size max is 16k; leave room for an H2 frame header.
HBONE_BUFFER_SIZE = 16_384 - 64

_TRACEPARENT_LENGTH = 55
_HEX = re.compile(r"\+?[0-9A-Fa-f]+")

_TCHARS = r"!#$%&'*+.^_`|~0-9A-Za-z-"
_PAIR = re.compile(
    rf'[ \t]*([{_TCHARS}]+)=(?:([{_TCHARS}]+)|"((?:[^"\\]|\\.)*)")[ \t]*'
)
_ESCAPE = re.compile(r"\\(.)")

_SHUTDOWN_MESSAGES = frozenset({"Event loop is closed"})


class ProxyError(Exception):
    """A failure while proxying a connection."""


@dataclass(frozen=True, repr=False)
class TraceParent:
    """A W3C trace-context ``traceparent`` value."""

    version: int
    trace_id: int
    parent_id: int
    flags: int

    def __post_init__(self) -> None:
        for name, bits in (
            ("version", 8),
            ("trace_id", 128),
            ("parent_id", 64),
            ("flags", 8),
        ):
            value = getattr(self, name)
            if not 0 <= value < (1 << bits):
                raise ValueError(f"traceparent {name} out of range: {value}")

    def header(self) -> str:
        """Return the value to send in a ``traceparent`` header."""
        return repr(self)

    def __repr__(self) -> str:
        return (
            f"{self.version:02x}-{self.trace_id:032x}"
            f"-{self.parent_id:016x}-{self.flags:02x}"
        )

    def __str__(self) -> str:
        return f"{self.trace_id:032x}"


def _parse_hex(segment: str, bits: int) -> int:
    if not _HEX.fullmatch(segment):
        raise ValueError(f"invalid hex digits in traceparent: {segment!r}")
    value = int(segment.lstrip("+"), 16)
    if value >= 1 << bits:
        raise ValueError(f"number too large in traceparent: {segment!r}")
    return value


def parse_traceparent(value: str) -> TraceParent:
    """Parse a ``traceparent`` header value; raise ValueError if malformed."""
    if len(value) != _TRACEPARENT_LENGTH:
        raise ValueError(f"traceparent malformed length was {len(value)}")
    segments = value.split("-")
    if len(segments) < 4:
        raise ValueError("traceparent malformed: expected four segments")
    return TraceParent(
        version=_parse_hex(segments[0], 8),
        trace_id=_parse_hex(segments[1], 128),
        parent_id=_parse_hex(segments[2], 64),
        flags=_parse_hex(segments[3], 8),
    )


def new_traceparent() -> TraceParent:
    """Return a traceparent with random trace and parent ids."""
    return TraceParent(
        version=0,
        trace_id=secrets.randbits(128),
        parent_id=secrets.randbits(64),
        flags=0,
    )


def _parse_ip(value: str) -> Optional[IpAddress]:
    if "%" in value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _parse_port(value: str) -> Optional[int]:
    if not value or not value.isascii() or not value.isdigit():
        return None
    port = int(value)
    return port if port <= 0xFFFF else None


def _parse_socket_ip(value: str) -> Optional[IpAddress]:
    host, sep, port = value.rpartition(":")
    if not sep or _parse_port(port) is None:
        return None
    if host.startswith("[") and host.endswith("]"):
        ip = _parse_ip(host[1:-1])
        return ip if ip is not None and ip.version == 6 else None
    ip = _parse_ip(host)
    return ip if ip is not None and ip.version == 4 else None


def parse_socket_or_ip(value: str) -> Optional[IpAddress]:
    """Return the IP of ``ip``, ``ip:port``, ``[ipv6]`` or ``[ipv6]:port``, else None."""
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    ip = _parse_socket_ip(value)
    if ip is not None:
        return ip
    return _parse_ip(value)


def _forwarded_for(value: str) -> list[str]:
    """Return every ``for`` value of a Forwarded header, in order."""
    found: list[str] = []
    pos = 0
    end = len(value)
    if not value.strip():
        return found
    while True:
        pair = _PAIR.match(value, pos)
        if pair is None:
            raise ValueError(f"malformed forwarded header: {value!r}")
        key, token, quoted = pair.groups()
        item = token if token is not None else _ESCAPE.sub(r"\1", quoted)
        if key.lower() == "for":
            found.append(item)
        pos = pair.end()
        if pos == end:
            return found
        if value[pos] not in ";,":
            raise ValueError(f"malformed forwarded header: {value!r}")
        pos += 1


def get_original_src_from_forwarded(value: Optional[str]) -> Optional[IpAddress]:
    """Return the IP of the last ``for`` entry of a Forwarded header, if it is an IP."""
    if value is None:
        return None
    try:
        entries = _forwarded_for(value)
    except ValueError:
        return None
    if not entries:
        return None
    return parse_socket_or_ip(entries[-1])


def is_runtime_shutdown(error: BaseException) -> bool:
    """Return whether ``error`` only signals that the event loop is shutting down."""
    if isinstance(error, asyncio.CancelledError):
        return True
    return type(error) is RuntimeError and str(error) in _SHUTDOWN_MESSAGES


async def _copy(reader, writer) -> int:
    total = 0
    while True:
        chunk = await reader.read(HBONE_BUFFER_SIZE)
        if not chunk:
            break
        writer.write(chunk)
        await writer.drain()
        total += len(chunk)
    if writer.can_write_eof():
        writer.write_eof()
        await writer.drain()
    return total


async def relay(downstream, upstream) -> Tuple[int, int]:
    """Copy bytes both ways between two ``(reader, writer)`` pairs until both ends close.

    Returns ``(sent, received)``: bytes copied downstream to upstream, and back.
    """
    down_reader, down_writer = downstream
    up_reader, up_writer = upstream
    sending = asyncio.ensure_future(_copy(down_reader, up_writer))
    receiving = asyncio.ensure_future(_copy(up_reader, down_writer))
    tasks = {sending, receiving}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            error = task.exception()
            if error is not None:
                raise error
    except OSError as exc:
        raise ProxyError(f"io error: {exc}") from exc
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    return sending.result(), receiving.result()