"""Mesh proxy building blocks: RBAC matching, SOCKS5 handshake, trace context, counters, readiness and shutdown."""

__version__ = "0.1.0"
__all__ = ["matchers", "socks5", "rbac", "readiness", "shutdown", "proxy", "metrics"]