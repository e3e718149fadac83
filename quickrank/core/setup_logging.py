# quickrank/core/setup_logging.py
"""
Logging for the quick-rank pipeline client.

Every record may carry the context of the pipeline run it belongs to
(``run_id``, ``phase``, ``task_id``) and of the component that emitted it.
The text format prints that context as a bracketed prefix; the JSON format
emits it as top-level fields. Records go to the console and to a rotating
file under ``LOG_DIRECTORY``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional, Tuple, Union

from quickrank.core.config import config

CONTEXT_FIELDS = ("run_id", "phase", "task_id", "component")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields set on a record, in display order."""
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class ContextFormatter(logging.Formatter):
    """Text formatter prefixing each line with ``[run_id=... phase=...]``."""

    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        record.context = (
            "[" + " ".join(f"{key}={value}" for key, value in context.items()) + "] "
            if context
            else ""
        )
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the run context as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter attaching context fields to every record it emits.

    Callable values are resolved when the record is emitted, so a field such
    as the current phase follows the run. ``extra`` passed at the call site
    takes precedence.
    """

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any]):
        super().__init__(logger, dict(context))

    def bind(self, **fields: Any) -> "ContextAdapter":
        """New adapter with additional context fields."""
        context = dict(self.extra or {})
        context.update(fields)
        return ContextAdapter(self.logger, context)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = {
            key: value() if callable(value) else value
            for key, value in (self.extra or {}).items()
        }
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    name: str,
    log_file: Optional[str] = None,
    json_format: bool = False,
    log_level: Union[int, str] = logging.INFO,
    max_file_size: int = 10485760,  # 10MB
    backup_count: int = 10,
) -> logging.Logger:
    """
    Configure a logger with a console handler and a rotating file handler.

    Reconfiguring an existing logger replaces its handlers.

    Raises:
        OSError: If the log directory cannot be created
    """
    log_dir = config.LOG_DIRECTORY
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create log directory {log_dir}: {e}")

    if log_file is None:
        log_file = f'{name.lower().replace(" ", "_")}.log'

    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(log_level)

    formatter: logging.Formatter = JSONFormatter() if json_format else ContextFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, log_file),
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


class LogContext:
    """
    Context manager stamping fields on every record created inside it.

    Fields must not overlap with the ones a ContextAdapter passes as ``extra``.

    Example:
        with LogContext(logger, component="launcher"):
            await orchestrator.run_pipeline(inputs)
    """

    def __init__(self, logger: logging.Logger, **context_fields: Any):
        self.logger = logger
        self.context_fields = context_fields
        self.old_factory: Optional[Callable[..., logging.LogRecord]] = None

    def __enter__(self) -> "LogContext":
        old_factory = logging.getLogRecordFactory()
        self.old_factory = old_factory

        def factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            for key, value in self.context_fields.items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.old_factory is not None:
            logging.setLogRecordFactory(self.old_factory)


def setup_default_logging(
    json_format: bool = False, log_level: Union[int, str] = config.LOG_LEVEL
) -> logging.Logger:
    """Configure and return the ``quickrank`` logger."""
    return setup_logging(name="quickrank", json_format=json_format, log_level=log_level)
