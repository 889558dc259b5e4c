import logging

from contextlib import contextmanager
from time import perf_counter
from types import MappingProxyType
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional

import redis

from opentelemetry import trace
from opentelemetry.trace.status import Status
from opentelemetry.trace.status import StatusCode
from prometheus_client import Counter
from prometheus_client import Gauge
from prometheus_client import Histogram
from redis.client import Pipeline

from redistrace.clients import ContextFactory
from redistrace.clients.redis_utils import CommandBatch
from redistrace.clients.redis_utils import operation_name
from redistrace.clients.redis_utils import RETRIEVED_VALUE_SIZE_ATTRIBUTE
from redistrace.clients.redis_utils import retrieved_value_size
from redistrace.clients.redis_utils import sent_value_size
from redistrace.clients.redis_utils import span_attributes
from redistrace.lib import config
from redistrace.lib.prometheus_metrics import default_latency_buckets
from redistrace.lib.prometheus_metrics import default_size_buckets
from redistrace.lib.tracing import context_attributes
from redistrace.lib.tracing import MAX_STATEMENT_LENGTH
from redistrace.lib.tracing import RETRIEVED_VALUE_SIZE_COMMANDS
from redistrace.lib.tracing import SET_VALUE_SIZE_COMMANDS
from redistrace.lib.tracing import StatementPolicy
from redistrace.lib.tracing import TracingConfig


logger = logging.getLogger(__name__)

PIPELINE_SPAN_NAME = "PIPELINED"

PROM_PREFIX = "redis_client"
PROM_LABELS_PREFIX = "redis"

PROM_SHARED_LABELS = [
    f"{PROM_LABELS_PREFIX}_command",
    f"{PROM_LABELS_PREFIX}_database",
    f"{PROM_LABELS_PREFIX}_client_name",
    f"{PROM_LABELS_PREFIX}_type",
]
LATENCY_SECONDS = Histogram(
    f"{PROM_PREFIX}_latency_seconds",
    "Latency histogram for calls made by clients",
    [*PROM_SHARED_LABELS, f"{PROM_LABELS_PREFIX}_success"],
    buckets=default_latency_buckets,
)

REQUESTS_TOTAL = Counter(
    f"{PROM_PREFIX}_requests_total",
    "Total number of requests made by client",
    [*PROM_SHARED_LABELS, f"{PROM_LABELS_PREFIX}_success"],
)

ACTIVE_REQUESTS = Gauge(
    f"{PROM_PREFIX}_active_requests",
    "Number of active requests for a given client",
    PROM_SHARED_LABELS,
)

VALUE_SIZE_BYTES = Histogram(
    f"{PROM_PREFIX}_value_size_bytes",
    "Size of values sent to and retrieved from redis by tracked commands",
    [f"{PROM_LABELS_PREFIX}_command", f"{PROM_LABELS_PREFIX}_direction"],
    buckets=default_size_buckets,
)

PROM_POOL_PREFIX = f"{PROM_PREFIX}_pool"
PROM_LABELS = ["redis_pool"]

MAX_CONNECTIONS = Gauge(
    f"{PROM_POOL_PREFIX}_max_size",
    "Maximum number of connections allowed in this redis client connection pool",
    PROM_LABELS,
)
IDLE_CONNECTIONS = Gauge(
    f"{PROM_POOL_PREFIX}_idle_connections",
    "Number of idle connections in this redis client connection pool",
    PROM_LABELS,
)
OPEN_CONNECTIONS = Gauge(
    f"{PROM_POOL_PREFIX}_active_connections",
    "Number of open connections in this redis client connection pool",
    PROM_LABELS,
)


def pool_from_config(
    app_config: config.RawConfig, prefix: str = "redis.", **kwargs: Any
) -> redis.ConnectionPool:
    """Make a ConnectionPool from a configuration dictionary.

    The keys useful to :py:func:`pool_from_config` should be prefixed, e.g.
    ``redis.url``, ``redis.max_connections``, etc. The ``prefix`` argument
    specifies the prefix used to filter keys.  Each key is mapped to a
    corresponding keyword argument on the :py:class:`redis.ConnectionPool`
    constructor.

    Supported keys:

    * ``url`` (required): a URL like ``redis://localhost/0``.
    * ``max_connections``: an integer maximum number of connections in the pool
    * ``socket_connect_timeout``: how long to wait for sockets to connect. e.g.
        ``200 milliseconds`` (:py:func:`~redistrace.lib.config.Timespan`)
    * ``socket_timeout``: how long to wait for socket operations, e.g.
        ``200 milliseconds`` (:py:func:`~redistrace.lib.config.Timespan`)

    """
    assert prefix.endswith(".")
    parser = config.SpecParser(
        {
            "url": config.String,
            "max_connections": config.Optional(config.Integer, default=None),
            "socket_connect_timeout": config.Optional(config.Timespan, default=None),
            "socket_timeout": config.Optional(config.Timespan, default=None),
        }
    )
    options = parser.parse(prefix[:-1], app_config)

    if options.max_connections is not None:
        kwargs.setdefault("max_connections", options.max_connections)
    if options.socket_connect_timeout is not None:
        kwargs.setdefault("socket_connect_timeout", options.socket_connect_timeout.total_seconds())
    if options.socket_timeout is not None:
        kwargs.setdefault("socket_timeout", options.socket_timeout.total_seconds())

    return redis.BlockingConnectionPool.from_url(options.url, **kwargs)


def tracing_config_from_config(
    app_config: config.RawConfig, prefix: str = "redis.tracing."
) -> TracingConfig:
    """Make a :py:class:`~redistrace.lib.tracing.TracingConfig` from a configuration dictionary.

    Supported keys, all optional:

    * ``db_statement``: one of ``omit``, ``obfuscate`` (the default) or ``raw``.
    * ``record_value_size``: ``true`` to record the size of values set and
      retrieved.
    * ``peer_service``: the ``peer.service`` attribute for every span.
    * ``trace_root_spans``: ``false`` to only trace commands issued while
      another span is active.
    * ``set_value_size_commands``: comma-delimited commands whose last argument
      is measured, ``set`` by default.
    * ``retrieved_value_size_commands``: comma-delimited commands whose reply
      is measured, ``get, mget`` by default.
    * ``max_statement_length``: the length ``db.statement`` is cut to, 500 by
      default.
    * ``attributes.*``: extra attributes for every span, e.g.
      ``redis.tracing.attributes.app.team = storage``.

    """
    assert prefix.endswith(".")
    policies = {policy.value: policy for policy in StatementPolicy}
    parser = config.SpecParser(
        {
            "db_statement": config.Optional(
                config.OneOf(**policies), default=StatementPolicy.OBFUSCATE
            ),
            "record_value_size": config.Optional(config.Boolean, default=False),
            "peer_service": config.Optional(config.String),
            "trace_root_spans": config.Optional(config.Boolean, default=True),
            "set_value_size_commands": config.Optional(
                config.CommandSet, default=SET_VALUE_SIZE_COMMANDS
            ),
            "retrieved_value_size_commands": config.Optional(
                config.CommandSet, default=RETRIEVED_VALUE_SIZE_COMMANDS
            ),
            "max_statement_length": config.Optional(config.Integer, default=MAX_STATEMENT_LENGTH),
        }
    )
    options = parser.parse(prefix[:-1], app_config)

    # attribute names are usually dotted themselves, so take everything after
    # the prefix as the name
    attributes_prefix = f"{prefix}attributes."
    attributes = {
        key[len(attributes_prefix) :]: value
        for key, value in app_config.items()
        if key.startswith(attributes_prefix) and len(key) > len(attributes_prefix)
    }

    return TracingConfig(
        db_statement=options.db_statement,
        record_value_size=options.record_value_size,
        peer_service=options.peer_service,
        trace_root_spans=options.trace_root_spans,
        attributes=MappingProxyType(attributes),
        set_value_size_commands=options.set_value_size_commands,
        retrieved_value_size_commands=options.retrieved_value_size_commands,
        max_statement_length=options.max_statement_length,
    )


class RedisClient(config.Parser):
    """Configure a Redis client.

    See :py:func:`pool_from_config` and :py:func:`tracing_config_from_config`
    for available configuration settings. Tracing settings live under
    ``{key_path}.tracing.``.

    :param tracer: The tracer spans are created with. Defaults to the tracer
        for this module from the global tracer provider.

    """

    def __init__(self, tracer: Optional[trace.Tracer] = None, **kwargs: Any):
        self.tracer = tracer
        self.kwargs = kwargs

    def parse(self, key_path: str, raw_config: config.RawConfig) -> "RedisContextFactory":
        connection_pool = pool_from_config(raw_config, f"{key_path}.", **self.kwargs)
        tracing_config = tracing_config_from_config(raw_config, f"{key_path}.tracing.")
        return RedisContextFactory(connection_pool, key_path, tracing_config, self.tracer)


class RedisContextFactory(ContextFactory):
    """Redis client context factory.

    This factory makes
    :py:class:`~redistrace.clients.redis.MonitoredRedisConnection` objects.
    When Redis commands are executed via these objects, they will use
    connections from the provided :py:class:`redis.ConnectionPool` and
    automatically record spans and metrics.

    :param connection_pool: A connection pool.
    :param name: The name used to label metrics about the pool.
    :param tracing_config: What to record on spans.
    :param tracer: The tracer spans are created with.

    """

    def __init__(
        self,
        connection_pool: redis.ConnectionPool,
        name: str = "redis",
        tracing_config: Optional[TracingConfig] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.connection_pool = connection_pool
        self.name = name
        self.tracing_config = tracing_config or TracingConfig()
        self.tracer = tracer

    def report_runtime_metrics(self) -> None:
        if not isinstance(self.connection_pool, redis.BlockingConnectionPool):
            return

        size = self.connection_pool.max_connections
        open_connections_num = len(self.connection_pool._connections)  # type: ignore
        available = self.connection_pool.pool.qsize()

        MAX_CONNECTIONS.labels(self.name).set(size)
        IDLE_CONNECTIONS.labels(self.name).set(available)
        OPEN_CONNECTIONS.labels(self.name).set(open_connections_num)

    def make_object_for_context(self, name: str) -> "MonitoredRedisConnection":
        return MonitoredRedisConnection(
            name, self.connection_pool, self.tracing_config, tracer=self.tracer
        )


@contextmanager
def _client_span(
    tracer: trace.Tracer,
    tracing_config: TracingConfig,
    name: str,
    batch: CommandBatch,
    conn_kwargs: Dict[str, Any],
) -> Iterator[trace.Span]:
    has_parent = trace.get_current_span().get_span_context().is_valid
    if not (has_parent or tracing_config.trace_root_spans):
        logger.debug("Not tracing redis %s: no active span and root spans are disabled", name)
        yield trace.INVALID_SPAN
        return

    attributes = span_attributes(batch, conn_kwargs, tracing_config, context_attributes())
    with tracer.start_as_current_span(
        name, kind=trace.SpanKind.CLIENT, attributes=attributes
    ) as span:
        yield span


def _record_value_sizes(
    span: trace.Span,
    tracing_config: TracingConfig,
    command_label: str,
    reply: Any,
    batch: CommandBatch,
) -> None:
    retrieved = retrieved_value_size(reply, batch, tracing_config.retrieved_value_size_commands)
    span.set_attribute(RETRIEVED_VALUE_SIZE_ATTRIBUTE, retrieved)
    VALUE_SIZE_BYTES.labels(command_label, "retrieved").observe(retrieved)

    # the sent size is already on the span, from span_attributes
    sent = sent_value_size(batch, tracing_config.set_value_size_commands)
    VALUE_SIZE_BYTES.labels(command_label, "sent").observe(sent)


# pylint: disable=too-many-public-methods
class MonitoredRedisConnection(redis.StrictRedis):
    """Redis connection that collects diagnostic information.

    This connection acts like :py:class:`redis.StrictRedis` except that all
    operations are automatically wrapped in a client span whose attributes
    describe the command (see
    :py:func:`~redistrace.clients.redis_utils.span_attributes`), and counted
    in prometheus metrics.

    :param context_name: Used as the client name in metrics when the
        connection pool doesn't set one.
    :param connection_pool: The pool to take connections from.
    :param tracing_config: What to record on spans.
    :param tracer: The tracer spans are created with.

    """

    def __init__(
        self,
        context_name: str,
        connection_pool: redis.ConnectionPool,
        tracing_config: Optional[TracingConfig] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.context_name = context_name
        self.tracing_config = tracing_config or TracingConfig()
        self.tracer = tracer or trace.get_tracer(__name__)

        super().__init__(connection_pool=connection_pool)

    def _labels(self, command: str) -> Dict[str, Any]:
        conn_kwargs = self.connection_pool.connection_kwargs
        return {
            f"{PROM_LABELS_PREFIX}_command": command,
            f"{PROM_LABELS_PREFIX}_client_name": conn_kwargs.get("client_name")
            or self.context_name,
            f"{PROM_LABELS_PREFIX}_database": conn_kwargs.get("db", ""),
            f"{PROM_LABELS_PREFIX}_type": "standalone",
        }

    def execute_command(self, *args: Any, **kwargs: Any) -> Any:
        batch = [args]
        command = operation_name(args)
        labels = self._labels(command)

        with _client_span(
            self.tracer,
            self.tracing_config,
            command,
            batch,
            self.connection_pool.connection_kwargs,
        ) as span, ACTIVE_REQUESTS.labels(**labels).track_inprogress():
            start_time = perf_counter()
            success = "true"

            try:
                res = super().execute_command(*args, **kwargs)
                if isinstance(res, redis.RedisError):
                    success = "false"
                    span.record_exception(res)
                    span.set_status(Status(StatusCode.ERROR, str(res)))
                if self.tracing_config.record_value_size:
                    _record_value_sizes(span, self.tracing_config, command, res, batch)
                return res
            except BaseException:
                success = "false"
                raise
            finally:
                result_labels = {**labels, f"{PROM_LABELS_PREFIX}_success": success}
                REQUESTS_TOTAL.labels(**result_labels).inc()
                LATENCY_SECONDS.labels(**result_labels).observe(perf_counter() - start_time)

    def pipeline(  # type: ignore
        self, transaction: bool = True, shard_hint: Optional[str] = None
    ) -> "MonitoredRedisPipeline":
        """Create a pipeline.

        This returns an object on which you can call the standard Redis
        commands. Execution will be deferred until ``execute`` is called,
        which sends every command at once and records a single
        ``PIPELINED`` span.

        :param transaction: Whether or not the commands in the pipeline
            are wrapped with a transaction and executed atomically.

        """
        return MonitoredRedisPipeline(
            self.context_name,
            self.connection_pool,
            self.response_callbacks,
            tracing_config=self.tracing_config,
            tracer=self.tracer,
            transaction=transaction,
            shard_hint=shard_hint,
        )


class MonitoredRedisPipeline(Pipeline):
    def __init__(
        self,
        context_name: str,
        connection_pool: redis.ConnectionPool,
        response_callbacks: Dict,
        tracing_config: Optional[TracingConfig] = None,
        tracer: Optional[trace.Tracer] = None,
        **kwargs: Any,
    ):
        self.context_name = context_name
        self.tracing_config = tracing_config or TracingConfig()
        self.tracer = tracer or trace.get_tracer(__name__)
        super().__init__(connection_pool, response_callbacks, **kwargs)

    def command_batch(self) -> List[Any]:
        """Return the queued commands.

        Transactions return each command wrapped in a batch of its own,
        matching how they are queued on the server between ``MULTI`` and
        ``EXEC``.

        """
        commands = [args for args, _options in self.command_stack]
        if self.transaction:
            return [[command] for command in commands]
        return commands

    def execute(self, raise_on_error: bool = True) -> Any:
        if not self.command_stack:
            return super().execute(raise_on_error=raise_on_error)

        batch = self.command_batch()
        conn_kwargs = self.connection_pool.connection_kwargs
        labels = {
            f"{PROM_LABELS_PREFIX}_command": "pipeline",
            f"{PROM_LABELS_PREFIX}_client_name": conn_kwargs.get("client_name")
            or self.context_name,
            f"{PROM_LABELS_PREFIX}_database": conn_kwargs.get("db", ""),
            f"{PROM_LABELS_PREFIX}_type": "standalone",
        }

        with _client_span(
            self.tracer, self.tracing_config, PIPELINE_SPAN_NAME, batch, conn_kwargs
        ) as span:
            success = "true"
            start_time = perf_counter()
            ACTIVE_REQUESTS.labels(**labels).inc()

            try:
                replies = super().execute(raise_on_error=raise_on_error)
                if self.tracing_config.record_value_size:
                    _record_value_sizes(span, self.tracing_config, "pipeline", replies, batch)
                return replies
            except BaseException:
                success = "false"
                raise
            finally:
                ACTIVE_REQUESTS.labels(**labels).dec()
                result_labels = {
                    **labels,
                    f"{PROM_LABELS_PREFIX}_success": success,
                }
                REQUESTS_TOTAL.labels(**result_labels).inc()
                LATENCY_SECONDS.labels(**result_labels).observe(perf_counter() - start_time)
