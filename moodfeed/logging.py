"""Single-line structured logging, tagged with the active curation run."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, TextIO

# Id of the curation run the current task belongs to, if any
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


class RunIdFilter(logging.Filter):
    """Copies the active run id onto every record as ``run_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = current_run_id.get()
        return True


class StructuredFormatter(logging.Formatter):
    """``timestamp | LEVEL | logger | message [| run=<id>]``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        parts = [
            stamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            record.levelname.ljust(8),
            record.name,
            record.getMessage(),
        ]

        run_id = getattr(record, "run_id", None)
        if run_id:
            parts.append(f"run={run_id}")

        line = " | ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Install the structured handler on the root logger.

    Replaces any handlers already attached, so calling it twice is safe.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream, stdout by default
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(RunIdFilter())
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)


@contextmanager
def bind_run_id(run_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``run_id``."""
    token = current_run_id.set(run_id)
    try:
        yield
    finally:
        current_run_id.reset(token)
