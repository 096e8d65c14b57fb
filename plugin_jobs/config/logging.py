import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from .settings import Settings, settings as default_settings

JOB_CONTEXT_KEYS = ("worker_id", "job_id", "plugin_id", "job_type")


def add_service_context(settings: Settings) -> Processor:
    """Stamp every event with the service name and environment."""

    def processor(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog for the job service.

    Job context bound with ``job_context`` is merged into every event, so
    logs from handlers and the locking layer carry the worker and job ids.
    """
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service_context(settings),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
    ]
    if settings.debug:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def job_context(**context: Any) -> Iterator[None]:
    """Bind worker/job identifiers for the duration of a block."""
    unknown = set(context) - set(JOB_CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"Unknown job context keys: {sorted(unknown)}")

    with structlog.contextvars.bound_contextvars(
        **{key: str(value) for key, value in context.items()}
    ):
        yield


def add_request_context(request_id: str, **context: Any) -> None:
    """Start a fresh log context for an HTTP request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)
