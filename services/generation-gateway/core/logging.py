import logging
from typing import Optional

import structlog
from opentelemetry import trace


def add_trace_context(logger, method_name, event_dict):
    """Injects current OTel Trace ID into the log JSON."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def bind_generation(generation_id: str, operation: Optional[str] = None):
    """
    Tags every log line emitted while a generation runs (adapter calls, polls, fallbacks)
    with its id. Returns the tokens for structlog.contextvars.reset_contextvars.
    """
    if operation is None:
        return structlog.contextvars.bind_contextvars(generation_id=generation_id)
    return structlog.contextvars.bind_contextvars(generation_id=generation_id, operation=operation)


def configure_logging(json_logs: bool = False, log_level: str = "INFO"):
    """JSON lines in production, the console renderer everywhere else."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(log_level.upper())),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # provider_request already records every upstream call
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").handlers = []
    logging.getLogger("uvicorn.error").handlers = []
