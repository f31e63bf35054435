# ztunnel

Building blocks for a node-level service-mesh proxy, as a plain Python
library with no third-party runtime dependencies.

## What is inside

- `ztunnel.matchers`: `StringMatch` (with `MatchKind` PREFIX, SUFFIX, EXACT,
  PRESENCE and the shortcuts `StringMatch.prefix`, `.suffix`, `.exact`,
  `.presence`), the match group `RbacMatch`, and the `RbacScope` and
  `RbacAction` enums. `StringMatch.matches_principal` requires a leading
  `spiffe://`, strips it, then matches the rest. `RbacMatch` converts its
  IP fields to `ipaddress` networks and its port fields to integers.
- `ztunnel.rbac`: `Authorization` policies checked against a `Connection`
  with `Authorization.matches`; `Authorization.to_key()` gives
  `namespace/name`. An `Identity` renders as
  `spiffe://<trust domain>/ns/<namespace>/sa/<service account>`.
- `ztunnel.socks5`: `read_request(reader, writer)` runs the server side of an
  unauthenticated SOCKS5 CONNECT handshake over asyncio streams, sends a
  success reply and returns the destination as `(ip, port)`. Only IPv4 and
  IPv6 destinations are accepted; anything else, including domain names,
  raises `Socks5Error`.
- `ztunnel.proxy`: W3C `traceparent` handling (`TraceParent`,
  `parse_traceparent`, `new_traceparent`), `parse_socket_or_ip`, recovery of
  the original client address from a `Forwarded` header value
  (`get_original_src_from_forwarded`, which uses the last `for=` entry),
  `is_runtime_shutdown`, and `relay`, which copies bytes both ways between two
  `(reader, writer)` pairs and returns `(sent, received)`. I/O failures during
  a relay are raised as `ProxyError`.
- `ztunnel.metrics`: in-memory counters. `Metrics.record_open`,
  `record_close` and `record_bytes` count TCP traffic under the
  `CommonTrafficLabels` built by `labels_for(conn)` from a `ConnectionOpen`;
  `record_termination` counts control-plane connection ends by
  `ConnectionTerminationReason`. Read them back with `Metrics.value(name,
  labels)` or `Metrics.series(name)`. When the reporter is
  `Reporter.SOURCE`, sent and received bytes are recorded swapped.
- `ztunnel.readiness`: `Ready` and `BlockReady` track the startup tasks that
  are still pending; a `BlockReady` is released by `close()` or by leaving its
  `with` block. `respond(ready, method, path)` builds the status and body for
  `/healthz/ready`.
- `ztunnel.shutdown`: `Shutdown.wait()` returns on SIGINT, SIGTERM or a call
  to `ShutdownTrigger.shutdown_now()` on a trigger from `Shutdown.trigger()`.
  After a SIGINT, a second SIGINT exits the process at once. Signal handlers
  are only installed where the event loop supports them.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Checking a connection against a policy:

```python
from ztunnel.matchers import RbacAction, RbacMatch, RbacScope, StringMatch
from ztunnel.rbac import Authorization, Connection, Identity

policy = Authorization(
    name="allow-ns",
    namespace="default",
    scope=RbacScope.GLOBAL,
    action=RbacAction.ALLOW,
    rules=[[[RbacMatch(namespaces=[StringMatch.exact("frontend")])]]],
)

conn = Connection(
    src_identity=Identity("cluster.local", "frontend", "web"),
    src_ip="10.0.0.5",
    dst_network="",
    dst=("10.0.0.9", 8080),
)
policy.matches(conn)   # True
policy.to_key()        # "default/allow-ns"
```

Rules are nested three deep. A policy matches when any rule matches. A rule
matches when every clause in it matches; an empty clause always matches. A
clause matches when any of its non-empty match groups matches. A policy with
no rules matches nothing.

Tracking readiness:

```python
from ztunnel.readiness import Ready, respond

ready = Ready()
with ready.register_task("proxy"):
    respond(ready, "GET", "/healthz/ready")   # (HTTPStatus.INTERNAL_SERVER_ERROR, "not ready, pending: proxy\n")
respond(ready, "GET", "/healthz/ready")       # (HTTPStatus.OK, "ready\n")
```

Trace context:

```python
from ztunnel.proxy import parse_traceparent

tp = parse_traceparent("00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01")
tp.header()   # the same 55-character string
str(tp)       # "0af7651916cd43dd8448eb211c80319c"
```

## What it does not do

This is a library of parts, not a running proxy. It has no command, opens no
listening sockets, and has no HTTP server: `respond` only computes the
readiness answer. There is no TLS or HBONE tunnelling, no connection pool, no
workload registry or control-plane client, and the counters in
`ztunnel.metrics` are kept in memory with no exposition endpoint.