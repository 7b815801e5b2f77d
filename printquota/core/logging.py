import logging
import sys

import structlog

# one record per command or request at DEBUG
NOISY_LOGGERS = ("pymongo", "motor", "httpx", "httpcore")


def _service_fields(service: str, env: str):
    def add_service_fields(_, __, event_dict):
        event_dict.setdefault("service", service)
        event_dict.setdefault("env", env)
        return event_dict

    return add_service_fields


def configure_logging(debug: bool = False, service: str = "printquota", env: str = "development") -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _service_fields(service, env),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    """Start a fresh log context for a request; nothing from the previous one carries over."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_student(student_id: str) -> None:
    structlog.contextvars.bind_contextvars(student_id=student_id)
