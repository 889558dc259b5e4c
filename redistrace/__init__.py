"""OpenTelemetry tracing for redis-py clients.

Commands sent through a
:py:class:`~redistrace.clients.redis.MonitoredRedisConnection` are wrapped in
client spans carrying the statement (obfuscated by default), the peer address
and optionally the size of the values sent and received.

"""
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

from redistrace.lib.tracing import StatementPolicy
from redistrace.lib.tracing import TracingConfig
from redistrace.lib.tracing import with_attributes


try:
    __version__ = version(__name__)
except PackageNotFoundError:
    # package is not installed
    __version__ = "unknown"


__all__ = ["StatementPolicy", "TracingConfig", "with_attributes"]
