"""Turn redis commands into span attributes.

Commands reach the instrumentation in one of three shapes, told apart only by
how deeply they are nested::

    [("SET", "K", "x")]                                       # a single command
    [("SET", "v1", "0"), ("INCR", "v1"), ("GET", "v1")]       # a pipeline
    [[("SET", "v1", "0")], [("INCR", "v1")], [("GET", "v1")]] # a transaction

Everything here is a pure function of its arguments.

"""
import enum

from typing import Any
from typing import Collection
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Union

from opentelemetry.semconv.trace import DbSystemValues
from opentelemetry.semconv.trace import NetTransportValues
from opentelemetry.semconv.trace import SpanAttributes
from redis.exceptions import RedisError

from redistrace.lib.strings import truncate
from redistrace.lib.strings import utf8_encode
from redistrace.lib.tracing import StatementPolicy
from redistrace.lib.tracing import TracingConfig


AUTH_COMMAND = "AUTH"
REDACTED_AUTH_STATEMENT = "AUTH ?"
VALUE_PLACEHOLDER = "?"

SET_VALUE_SIZE_ATTRIBUTE = "db.set_value_size_bytes"
RETRIEVED_VALUE_SIZE_ATTRIBUTE = "db.retrieved_value_size_bytes"

Command = Sequence[Any]
CommandBatch = Sequence[Any]
Attributes = Dict[str, Union[str, int]]


class BatchShape(enum.Enum):
    SINGLETON = "singleton"
    PIPELINED = "pipelined"
    QUEUED = "queued"


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_queued(entry: Any) -> bool:
    return _is_sequence(entry) and len(entry) > 0 and _is_sequence(entry[0])


def normalize_command(entry: Any) -> Command:
    """Return the bare command held by a batch entry.

    Transactions queue each command as a batch of its own, which adds a level
    of nesting. That level is stripped so that ``entry[0]`` is always the
    command name.

    """
    if _is_queued(entry):
        return entry[0]
    return entry


def batch_shape(batch: CommandBatch) -> BatchShape:
    if len(batch) == 1:
        return BatchShape.SINGLETON
    if batch and all(_is_queued(entry) for entry in batch):
        return BatchShape.QUEUED
    return BatchShape.PIPELINED


def operation_name(command: Command) -> str:
    """Return the upper-cased name of ``command``."""
    if not command:
        return ""
    name = command[0]
    if isinstance(name, (bytes, bytearray)):
        name = bytes(name).decode("utf-8", errors="replace")
    return str(name).upper()


def _contains_auth(commands: Sequence[Command]) -> bool:
    return any(operation_name(command) == AUTH_COMMAND for command in commands)


def _format_arg(arg: Any) -> str:
    if isinstance(arg, (bytes, bytearray, memoryview)):
        return bytes(arg).decode("utf-8", errors="surrogateescape")
    return str(arg)


def _format_command(command: Command, policy: StatementPolicy) -> str:
    args = command[1:]
    if policy is StatementPolicy.OBFUSCATE:
        out = [VALUE_PLACEHOLDER] * len(args)
    else:
        out = [_format_arg(arg) for arg in args]
    return " ".join([operation_name(command), *out])


def format_statement(batch: CommandBatch, policy: StatementPolicy) -> str:
    """Render ``batch`` as one line per command.

    With :py:attr:`~StatementPolicy.OBFUSCATE` every argument becomes a
    ``?``. If any command in the batch is an ``AUTH`` the whole statement is
    replaced by ``AUTH ?`` so credentials never leave the process.

    The result is not truncated.

    """
    commands = [normalize_command(entry) for entry in batch]
    if _contains_auth(commands):
        return REDACTED_AUTH_STATEMENT
    return "\n".join(_format_command(command, policy) for command in commands)


def calculate_bytesize(value: Any) -> int:
    """Return the size of ``value`` as it would be sent over the wire.

    Numbers are measured by their text representation rather than by how
    redis stores them. Errors are not measured.

    """
    if value is None or isinstance(value, RedisError):
        return 0
    if isinstance(value, (bytes, bytearray, memoryview)):
        return len(bytes(value))
    if isinstance(value, str):
        return len(value.encode("utf-8", errors="surrogatepass"))
    if isinstance(value, bool):
        return len(str(int(value)))
    if isinstance(value, int):
        return len(str(abs(value)))
    if isinstance(value, (list, tuple, set, frozenset)):
        return sum(calculate_bytesize(item) for item in value)
    if isinstance(value, Mapping):
        return sum(calculate_bytesize(k) + calculate_bytesize(v) for k, v in value.items())
    # floats and anything else a response callback may have produced
    return len(str(value).encode("utf-8"))


def sent_value_size(batch: CommandBatch, commands_to_record: Collection[str]) -> int:
    """Return the size in bytes of the values set by ``commands_to_record``.

    The value being set is taken to be the last argument of the command,
    which holds for ``SET`` but not for every write command. Batches that
    authenticate are never measured.

    """
    commands = [normalize_command(entry) for entry in batch]
    if _contains_auth(commands):
        return 0

    value_size = 0
    for command in commands:
        if len(command) < 2 or operation_name(command) not in commands_to_record:
            continue
        value_size += calculate_bytesize(command[-1])
    return value_size


def retrieved_value_size(
    reply: Any, batch: CommandBatch, commands_to_record: Collection[str]
) -> int:
    """Return the size in bytes of the values returned to ``commands_to_record``.

    :param reply: The reply to ``batch``. For a single command this is the
        value itself, otherwise a list with one value per command.
    :param batch: The commands that produced ``reply``, in any of the
        supported shapes.

    """
    if batch_shape(batch) is BatchShape.SINGLETON:
        command = normalize_command(batch[0])
        if operation_name(command) in commands_to_record:
            return calculate_bytesize(reply)
        return 0

    replies = list(reply or [])
    value_size = 0
    for i, entry in enumerate(batch):
        item = replies[i] if i < len(replies) else None
        value_size += retrieved_value_size(item, [normalize_command(entry)], commands_to_record)
    return value_size


def _extract_conn_attributes(conn_kwargs: Mapping[str, Any]) -> Attributes:
    """Transform redis conn info into span attributes"""
    attributes: Attributes = {
        SpanAttributes.DB_SYSTEM: DbSystemValues.REDIS.value,
    }
    if "path" in conn_kwargs:
        attributes[SpanAttributes.NET_PEER_NAME] = conn_kwargs["path"]
        attributes[SpanAttributes.NET_TRANSPORT] = NetTransportValues.OTHER.value
    else:
        attributes[SpanAttributes.NET_PEER_NAME] = conn_kwargs.get("host") or "localhost"
        attributes[SpanAttributes.NET_PEER_PORT] = int(conn_kwargs.get("port") or 6379)

    # database 0 is the default and isn't worth recording
    db = int(conn_kwargs.get("db") or 0)
    if db != 0:
        attributes[SpanAttributes.DB_REDIS_DATABASE_INDEX] = db
    return attributes


def span_attributes(
    batch: CommandBatch,
    conn_kwargs: Mapping[str, Any],
    tracing_config: TracingConfig,
    context_attributes: Optional[Mapping[str, Any]] = None,
) -> Attributes:
    """Build the attributes for a span covering ``batch``.

    :param batch: The commands about to be sent.
    :param conn_kwargs: The ``connection_kwargs`` of the connection pool the
        commands will be sent through.
    :param tracing_config: What to record.
    :param context_attributes: Attributes set with
        :py:func:`~redistrace.lib.tracing.with_attributes`. These override
        the static attributes in ``tracing_config``.

    """
    attributes = _extract_conn_attributes(conn_kwargs)

    if tracing_config.peer_service:
        attributes[SpanAttributes.PEER_SERVICE] = tracing_config.peer_service

    attributes.update(tracing_config.attributes)
    attributes.update(context_attributes or {})

    if tracing_config.db_statement is not StatementPolicy.OMIT:
        statement = format_statement(batch, tracing_config.db_statement)
        statement = truncate(statement, tracing_config.max_statement_length)
        attributes[SpanAttributes.DB_STATEMENT] = utf8_encode(statement)

    if tracing_config.record_value_size:
        attributes[SET_VALUE_SIZE_ATTRIBUTE] = sent_value_size(
            batch, tracing_config.set_value_size_commands
        )

    return attributes
