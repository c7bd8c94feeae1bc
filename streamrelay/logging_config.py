"""Structured JSON logging.

Every record carries the service name and, while a transfer is running,
the id of the job it belongs to.
"""

import logging
from contextvars import ContextVar, Token

from pythonjsonlogger.json import JsonFormatter

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

LOG_FIELDS = ("asctime", "levelname", "name", "message", "service", "job_id")

FIELD_RENAME_MAP = {
    "levelname": "level",
    "name": "logger",
}

_current_job_id: ContextVar[str] = ContextVar("job_id", default="")


def set_job_id(job_id: str) -> Token:
    return _current_job_id.set(job_id)


def reset_job_id(token: Token) -> None:
    _current_job_id.reset(token)


def get_job_id() -> str:
    return _current_job_id.get()


class JobContextFilter(logging.Filter):
    """Injects `service` and `job_id` into every record.

    A `job_id` passed explicitly through `extra` wins over the context value.
    """

    def __init__(self, service_name: str):
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        existing = getattr(record, "job_id", None)
        record.job_id = existing if existing else get_job_id()
        record.service = self._service_name
        return True


def configure_logging(level: str = "INFO", service_name: str = "stream-relay") -> None:
    """Install a single JSON handler on the root logger.

    Raises:
        ValueError: if `level` is not a standard logging level name.
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level}'. "
            f"Valid: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )

    formatter = JsonFormatter(
        " ".join(f"%({field})s" for field in LOG_FIELDS),
        rename_fields=FIELD_RENAME_MAP,
    )

    handler = logging.StreamHandler()
    handler.setLevel(level_upper)
    handler.setFormatter(formatter)
    handler.addFilter(JobContextFilter(service_name))

    root = logging.getLogger()
    root.setLevel(level_upper)
    # Replace existing handlers to avoid duplicate output
    root.handlers = [handler]

