"""Building blocks of authorization policies: string matchers and match groups."""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass, field, fields
from typing import Iterable, Union

IpNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_SPIFFE_PREFIX = "spiffe://"


class MatchKind(enum.Enum):
    """How a StringMatch compares its value with a candidate string."""

    PREFIX = "prefix"
    SUFFIX = "suffix"
    EXACT = "exact"
    PRESENCE = "presence"


@dataclass(frozen=True)
class StringMatch:
    """A single string condition of a policy."""

    kind: MatchKind
    value: str = ""

    @classmethod
    def prefix(cls, value: str) -> StringMatch:
        return cls(MatchKind.PREFIX, value)

    @classmethod
    def suffix(cls, value: str) -> StringMatch:
        return cls(MatchKind.SUFFIX, value)

    @classmethod
    def exact(cls, value: str) -> StringMatch:
        return cls(MatchKind.EXACT, value)

    @classmethod
    def presence(cls) -> StringMatch:
        return cls(MatchKind.PRESENCE)

    def matches(self, check: str) -> bool:
        """Return whether ``check`` satisfies this condition."""
        if self.kind is MatchKind.PREFIX:
            return check.startswith(self.value)
        if self.kind is MatchKind.SUFFIX:
            return check.endswith(self.value)
        if self.kind is MatchKind.EXACT:
            return check == self.value
        return check != ""

    def matches_principal(self, check: str) -> bool:
        """Match a principal; the ``spiffe://`` prefix is required and stripped first."""
        if not check.startswith(_SPIFFE_PREFIX):
            return False
        return self.matches(check[len(_SPIFFE_PREFIX):])


def _to_network(value: object) -> IpNetwork:
    if isinstance(value, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return value
    return ipaddress.ip_network(value, strict=False)


_NETWORK_FIELDS = frozenset(
    {"source_ips", "not_source_ips", "destination_ips", "not_destination_ips"}
)
_PORT_FIELDS = frozenset({"destination_ports", "not_destination_ports"})


@dataclass(frozen=True)
class RbacMatch:
    """A group of conditions that must all hold; within one kind any entry may hold."""

    namespaces: tuple[StringMatch, ...] = field(default=())
    not_namespaces: tuple[StringMatch, ...] = field(default=())
    principals: tuple[StringMatch, ...] = field(default=())
    not_principals: tuple[StringMatch, ...] = field(default=())
    source_ips: tuple[IpNetwork, ...] = field(default=())
    not_source_ips: tuple[IpNetwork, ...] = field(default=())
    destination_ips: tuple[IpNetwork, ...] = field(default=())
    not_destination_ips: tuple[IpNetwork, ...] = field(default=())
    destination_ports: tuple[int, ...] = field(default=())
    not_destination_ports: tuple[int, ...] = field(default=())

    def __post_init__(self) -> None:
        for f in fields(self):
            items: Iterable = getattr(self, f.name)
            if f.name in _NETWORK_FIELDS:
                converted = tuple(_to_network(i) for i in items)
            elif f.name in _PORT_FIELDS:
                converted = tuple(int(p) & 0xFFFF for p in items)
            else:
                converted = tuple(items)
            object.__setattr__(self, f.name, converted)

    def is_empty(self) -> bool:
        """Return whether no condition at all is declared."""
        return not any(getattr(self, f.name) for f in fields(self))


class RbacScope(enum.Enum):
    """Where a policy applies."""

    GLOBAL = "Global"
    NAMESPACE = "Namespace"
    WORKLOAD_SELECTOR = "WorkloadSelector"


class RbacAction(enum.Enum):
    """What a matching policy does."""

    ALLOW = "Allow"
    DENY = "Deny"