"""Hop-by-hop IPv4 route tracing with UDP probes and a table report."""

__version__ = "0.1.0"

__all__ = ["options", "packet", "table", "tracer", "cli"]