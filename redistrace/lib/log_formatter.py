import logging
import sys

from opentelemetry import trace
from pythonjsonlogger import jsonlogger


JSON_LOG_FORMAT = "%(levelname)s %(message)s %(funcName)s %(lineno)d %(module)s %(name)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that ties each log line to the span it was logged in."""

    def process_log_record(self, log_record: dict) -> dict:
        log_record["level"] = log_record.pop("levelname", None)
        try:
            span = trace.get_current_span()
            if span.is_recording():
                span_context = span.get_span_context()
                log_record["traceID"] = trace.format_trace_id(span_context.trace_id)
                log_record["spanID"] = trace.format_span_id(span_context.span_id)
        except (KeyError, ValueError, TypeError):
            pass
        return super().process_log_record(log_record)


def configure_logging(debug: bool = False) -> logging.Handler:
    """Send log records to stderr, as JSON unless attached to a terminal.

    :param debug: Log at DEBUG instead of INFO. This includes a line for
        every redis command that was executed without a span.
    :return: The handler installed on the root logger.

    """
    formatter: logging.Formatter
    if not sys.stderr.isatty():
        formatter = CustomJsonFormatter(JSON_LOG_FORMAT)
    else:
        formatter = logging.Formatter("%(levelname)-8s %(name)s %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.addHandler(handler)
    return handler
