"""Authorization policies and the connections they are checked against."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence, Tuple, TypeVar, Union

from ztunnel.matchers import RbacAction, RbacMatch, RbacScope

log = logging.getLogger(__name__)

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
SocketAddress = Tuple[IpAddress, int]

T = TypeVar("T")


@dataclass(frozen=True)
class Identity:
    """A SPIFFE workload identity."""

    trust_domain: str
    namespace: str
    service_account: str

    def __str__(self) -> str:
        return (
            f"spiffe://{self.trust_domain}/ns/{self.namespace}"
            f"/sa/{self.service_account}"
        )


def _parse_socket_address(value: object) -> SocketAddress:
    if isinstance(value, tuple):
        host, port = value
        return ipaddress.ip_address(host), int(port)
    if not isinstance(value, str):
        raise TypeError(f"cannot use {value!r} as a socket address")
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid socket address: {value!r}")
    if host.startswith("[") and host.endswith("]"):
        ip = ipaddress.ip_address(host[1:-1])
        if ip.version != 6:
            raise ValueError(f"invalid socket address: {value!r}")
    else:
        ip = ipaddress.ip_address(host)
        if ip.version != 4:
            raise ValueError(f"invalid socket address: {value!r}")
    port_number = int(port)
    if port_number > 0xFFFF:
        raise ValueError(f"invalid socket address: {value!r}")
    return ip, port_number


@dataclass(frozen=True)
class Connection:
    """The attributes of a connection that a policy can inspect."""

    src_identity: Optional[Identity]
    src_ip: IpAddress
    dst_network: str
    dst: SocketAddress

    def __post_init__(self) -> None:
        object.__setattr__(self, "src_ip", ipaddress.ip_address(self.src_ip))
        object.__setattr__(self, "dst", _parse_socket_address(self.dst))

    @property
    def dst_ip(self) -> IpAddress:
        return self.dst[0]

    @property
    def dst_port(self) -> int:
        return self.dst[1]

    def __str__(self) -> str:
        ip, port = self.dst
        dst = f"[{ip}]:{port}" if ip.version == 6 else f"{ip}:{port}"
        identity = "None" if self.src_identity is None else str(self.src_identity)
        return f"{self.src_ip}({identity})->{dst}"


def _in_network(ip: IpAddress, network) -> bool:
    return ip.version == network.version and ip in network


def _matches_kind(
    desc: str,
    positive: Sequence[T],
    negative: Sequence[T],
    predicate: Callable[[T], bool],
) -> bool:
    positive_ok = not positive or any(predicate(p) for p in positive)
    negative_ok = not negative or not any(predicate(n) for n in negative)
    log.debug(
        "match %s: positive=%s negative=%s", desc, positive_ok, negative_ok
    )
    return positive_ok and negative_ok


@dataclass(frozen=True)
class Authorization:
    """A policy: a list of rules, each a list of clauses, each a list of match groups."""

    name: str
    namespace: str
    scope: RbacScope
    action: RbacAction
    rules: Tuple[Tuple[Tuple[RbacMatch, ...], ...], ...] = field(default=())

    def __post_init__(self) -> None:
        rules: Iterable = self.rules
        object.__setattr__(
            self,
            "rules",
            tuple(tuple(tuple(clause) for clause in rule) for rule in rules),
        )

    def to_key(self) -> str:
        """Return the ``namespace/name`` key of this policy."""
        return f"{self.namespace}/{self.name}"

    def _group_matches(
        self, group: RbacMatch, conn: Connection, principal: str, namespace: str
    ) -> bool:
        return (
            _matches_kind(
                "destination_ip",
                group.destination_ips,
                group.not_destination_ips,
                lambda net: _in_network(conn.dst_ip, net),
            )
            and _matches_kind(
                "source_ips",
                group.source_ips,
                group.not_source_ips,
                lambda net: _in_network(conn.src_ip, net),
            )
            and _matches_kind(
                "destination_ports",
                group.destination_ports,
                group.not_destination_ports,
                lambda port: port == conn.dst_port,
            )
            and _matches_kind(
                "principals",
                group.principals,
                group.not_principals,
                lambda m: m.matches_principal(principal),
            )
            and _matches_kind(
                "namespaces",
                group.namespaces,
                group.not_namespaces,
                lambda m: m.matches(namespace),
            )
        )

    def _clause_matches(
        self,
        clause: Sequence[RbacMatch],
        conn: Connection,
        principal: str,
        namespace: str,
    ) -> bool:
        if not clause:
            return True
        return any(
            not group.is_empty()
            and self._group_matches(group, conn, principal, namespace)
            for group in clause
        )

    def matches(self, conn: Connection) -> bool:
        """Return whether any rule of this policy matches ``conn``."""
        identity = conn.src_identity
        principal = str(identity) if identity is not None else ""
        namespace = identity.namespace if identity is not None else ""
        if not self.rules:
            log.debug("policy %s: empty rules", self.to_key())
            return False
        for rule in self.rules:
            if all(
                self._clause_matches(clause, conn, principal, namespace)
                for clause in rule
            ):
                log.debug("policy %s: rule matched", self.to_key())
                return True
        return False