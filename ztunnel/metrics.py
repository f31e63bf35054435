"""Traffic and control-plane counters keyed by connection labels."""

from __future__ import annotations

import enum
import threading
from collections import defaultdict
from dataclasses import dataclass, fields, replace
from typing import Any, Hashable, Optional, Union

from ztunnel.rbac import Identity

CONNECTIONS_OPENED = "tcp_connections_opened"
CONNECTIONS_CLOSED = "tcp_connections_closed"
RECEIVED_BYTES = "tcp_received_bytes"
SENT_BYTES = "tcp_sent_bytes"
CONNECTION_TERMINATIONS = "connection_terminations"

_UNKNOWN = "unknown"


class Reporter(enum.Enum):
    """Which side of a connection reports the metric."""

    SOURCE = "source"
    DESTINATION = "destination"


class RequestProtocol(enum.Enum):
    """The protocol of the proxied request."""

    TCP = "tcp"
    HTTP = "http"


class ResponseFlags(enum.Enum):
    """Response flags of a connection."""

    NONE = "-"


class SecurityPolicy(enum.Enum):
    """The security of the connection."""

    UNKNOWN = "unknown"
    MUTUAL_TLS = "mutual_tls"


class ConnectionTerminationReason(enum.Enum):
    """Why a connection to the control plane ended."""

    CONNECTION_ERROR = "ConnectionError"
    ERROR = "Error"
    RECONNECT = "Reconnect"
    COMPLETE = "Complete"


@dataclass(frozen=True)
class DerivedWorkload:
    """Source workload details learned from the connection rather than the registry."""

    workload_name: Optional[str] = None
    app: Optional[str] = None
    revision: Optional[str] = None
    namespace: Optional[str] = None
    identity: Optional[Identity] = None
    cluster_id: Optional[str] = None


@dataclass(frozen=True)
class ConnectionOpen:
    """Everything known about a connection when it is opened.

    ``source`` and ``destination`` are workloads: objects with ``workload_name``,
    ``canonical_name``, ``canonical_revision``, ``namespace``, ``cluster_id`` and
    ``identity`` (an Identity, or a method returning one).
    """

    reporter: Reporter = Reporter.SOURCE
    source: Any = None
    derived_source: Optional[DerivedWorkload] = None
    destination: Any = None
    destination_service: Optional[str] = None
    destination_service_namespace: Optional[str] = None
    destination_service_name: Optional[str] = None
    connection_security_policy: SecurityPolicy = SecurityPolicy.UNKNOWN


def _non_empty(value: Any) -> Optional[str]:
    text = str(value)
    return text if text else None


def _identity_of(workload: Any) -> Identity:
    identity = workload.identity
    return identity() if callable(identity) else identity


LabelValue = Union[None, str, Identity]


@dataclass(frozen=True)
class CommonTrafficLabels:
    """The label set shared by all traffic counters; missing values encode as ``unknown``."""

    reporter: Reporter = Reporter.SOURCE

    source_workload: LabelValue = None
    source_canonical_service: LabelValue = None
    source_canonical_revision: LabelValue = None
    source_workload_namespace: LabelValue = None
    source_principal: LabelValue = None
    source_app: LabelValue = None
    source_version: LabelValue = None
    source_cluster: LabelValue = None

    destination_service: LabelValue = None
    destination_service_namespace: LabelValue = None
    destination_service_name: LabelValue = None

    destination_workload: LabelValue = None
    destination_canonical_service: LabelValue = None
    destination_canonical_revision: LabelValue = None
    destination_workload_namespace: LabelValue = None
    destination_principal: LabelValue = None
    destination_app: LabelValue = None
    destination_version: LabelValue = None
    destination_cluster: LabelValue = None

    request_protocol: RequestProtocol = RequestProtocol.TCP
    response_flags: ResponseFlags = ResponseFlags.NONE
    connection_security_policy: SecurityPolicy = SecurityPolicy.UNKNOWN

    def with_source(self, workload: Any) -> CommonTrafficLabels:
        """Return these labels with the source taken from a registry workload."""
        if workload is None:
            return self
        return replace(
            self,
            source_workload=_non_empty(workload.workload_name),
            source_canonical_service=_non_empty(workload.canonical_name),
            source_canonical_revision=_non_empty(workload.canonical_revision),
            source_workload_namespace=_non_empty(workload.namespace),
            source_principal=_identity_of(workload),
            source_app=_non_empty(workload.canonical_name),
            source_version=_non_empty(workload.canonical_revision),
            source_cluster=_non_empty(workload.cluster_id),
        )

    def with_derived_source(
        self, derived: Optional[DerivedWorkload]
    ) -> CommonTrafficLabels:
        """Return these labels with the source taken from derived details."""
        if derived is None:
            return self
        return replace(
            self,
            source_workload=derived.workload_name,
            source_canonical_service=derived.app,
            source_canonical_revision=derived.revision,
            source_workload_namespace=derived.namespace,
            source_principal=derived.identity,
            source_app=derived.workload_name,
            source_version=derived.revision,
            source_cluster=derived.cluster_id,
        )

    def with_destination(self, workload: Any) -> CommonTrafficLabels:
        """Return these labels with the destination taken from a registry workload."""
        if workload is None:
            return self
        return replace(
            self,
            destination_workload=_non_empty(workload.workload_name),
            destination_canonical_service=_non_empty(workload.canonical_name),
            destination_canonical_revision=_non_empty(workload.canonical_revision),
            destination_workload_namespace=_non_empty(workload.namespace),
            destination_principal=_identity_of(workload),
            destination_app=_non_empty(workload.canonical_name),
            destination_version=_non_empty(workload.canonical_revision),
            destination_cluster=_non_empty(workload.cluster_id),
        )

    def as_dict(self) -> dict[str, str]:
        """Return the encoded label values, in declaration order."""
        encoded: dict[str, str] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                encoded[f.name] = _UNKNOWN
            elif isinstance(value, enum.Enum):
                encoded[f.name] = value.value
            else:
                encoded[f.name] = str(value)
        return encoded


def labels_for(conn: ConnectionOpen) -> CommonTrafficLabels:
    """Build the traffic labels of a connection."""
    base = CommonTrafficLabels(
        reporter=conn.reporter,
        request_protocol=RequestProtocol.TCP,
        response_flags=ResponseFlags.NONE,
        connection_security_policy=conn.connection_security_policy,
    )
    # Derived details first: the registry source is more reliable and wins.
    return (
        base.with_derived_source(conn.derived_source)
        .with_source(conn.source)
        .with_destination(conn.destination)
    )


class Metrics:
    """Counter families for traffic and control-plane connections."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._families: dict[str, dict[Hashable, int]] = {
            name: defaultdict(int)
            for name in (
                CONNECTIONS_OPENED,
                CONNECTIONS_CLOSED,
                RECEIVED_BYTES,
                SENT_BYTES,
                CONNECTION_TERMINATIONS,
            )
        }

    def _inc(self, name: str, labels: Hashable, count: int) -> None:
        if count < 0:
            raise ValueError(f"counter increment must not be negative: {count}")
        with self._lock:
            self._families[name][labels] += count

    def record_open(self, conn: ConnectionOpen, count: int = 1) -> None:
        """Count opened connections."""
        self._inc(CONNECTIONS_OPENED, labels_for(conn), count)

    def record_close(self, conn: ConnectionOpen, count: int = 1) -> None:
        """Count closed connections."""
        self._inc(CONNECTIONS_CLOSED, labels_for(conn), count)

    def record_bytes(self, conn: ConnectionOpen, sent: int, received: int) -> None:
        """Count transferred bytes; the source reporter records them flipped."""
        if conn.reporter is Reporter.SOURCE:
            sent, received = received, sent
        labels = labels_for(conn)
        if sent:
            self._inc(SENT_BYTES, labels, sent)
        if received:
            self._inc(RECEIVED_BYTES, labels, received)

    def record_termination(
        self, reason: ConnectionTerminationReason, count: int = 1
    ) -> None:
        """Count ended control-plane connections by reason."""
        self._inc(CONNECTION_TERMINATIONS, reason, count)

    def value(self, name: str, labels: Hashable) -> int:
        """Return a counter's value; 0 if that label set was never recorded."""
        try:
            family = self._families[name]
        except KeyError:
            raise KeyError(f"unknown metric: {name}") from None
        with self._lock:
            return family.get(labels, 0)

    def series(self, name: str) -> dict[Hashable, int]:
        """Return a copy of every label set recorded for a metric."""
        try:
            family = self._families[name]
        except KeyError:
            raise KeyError(f"unknown metric: {name}") from None
        with self._lock:
            return dict(family)