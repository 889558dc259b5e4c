import enum

from contextlib import contextmanager
from types import MappingProxyType
from typing import Any
from typing import Dict
from typing import FrozenSet
from typing import Iterator
from typing import Mapping
from typing import NamedTuple
from typing import Optional

from opentelemetry import context


MAX_STATEMENT_LENGTH = 500

SET_VALUE_SIZE_COMMANDS = frozenset(["SET"])
RETRIEVED_VALUE_SIZE_COMMANDS = frozenset(["GET", "MGET"])


class StatementPolicy(enum.Enum):
    """How much of a command makes it into the ``db.statement`` attribute."""

    #: Don't record a statement at all.
    OMIT = "omit"

    #: Record the command names, with a ``?`` in place of every argument.
    OBFUSCATE = "obfuscate"

    #: Record the command names and their arguments as sent.
    RAW = "raw"


class TracingConfig(NamedTuple):
    """Options controlling which attributes end up on redis spans.

    The configuration is read-only; build a new one with ``_replace`` to
    change it.

    """

    db_statement: StatementPolicy = StatementPolicy.OBFUSCATE

    #: Record the size in bytes of values sent by ``set_value_size_commands``
    #: and received from ``retrieved_value_size_commands``.
    record_value_size: bool = False

    #: Value of the ``peer.service`` attribute, if any.
    peer_service: Optional[str] = None

    #: Create spans even when there is no active parent span.
    trace_root_spans: bool = True

    #: Extra attributes added to every span.
    attributes: Mapping[str, Any] = MappingProxyType({})

    set_value_size_commands: FrozenSet[str] = SET_VALUE_SIZE_COMMANDS
    retrieved_value_size_commands: FrozenSet[str] = RETRIEVED_VALUE_SIZE_COMMANDS
    max_statement_length: int = MAX_STATEMENT_LENGTH


_ATTRIBUTES_KEY = context.create_key("redistrace-attributes")


def context_attributes() -> Dict[str, Any]:
    """Return the attributes set by the enclosing :py:func:`with_attributes` blocks."""
    return dict(context.get_value(_ATTRIBUTES_KEY) or {})


@contextmanager
def with_attributes(attributes: Mapping[str, Any]) -> Iterator[None]:
    """Add ``attributes`` to every redis span started inside the block.

    Blocks can be nested, in which case the attributes are merged and the
    innermost value for a key wins. The attributes are stored in the
    OpenTelemetry context so they follow the current thread or task.

    .. code-block:: python

        with with_attributes({"app.feature": "checkout"}):
            context.redis.get("cart:1234")

    """
    merged = {**context_attributes(), **attributes}
    token = context.attach(context.set_value(_ATTRIBUTES_KEY, merged))
    try:
        yield
    finally:
        context.detach(token)
