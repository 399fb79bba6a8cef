"""
Logging for the archiver.

Console output always goes to stderr. When a log file is configured, a
rotating file log and a separate ``errors.log`` are written next to it.
Records carry structured fields (``reference``, ``local_path``, ``stat_name``,
...) that the JSON formatter emits as top-level keys.
"""

import asyncio
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .config import LoggingConfig


# Loggers that are only useful when debugging the transport itself
NOISY_LOGGERS = ('aiohttp.access', 'aiohttp.client', 'aiohttp.internal', 'asyncio')

MAIN_LOG_MAX_BYTES = 50 * 1024 * 1024
ERROR_LOG_MAX_BYTES = 10 * 1024 * 1024


def _current_task_name() -> Optional[str]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


class JSONFormatter(logging.Formatter):
    """One JSON object per record, structured fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'line': record.lineno,
        }

        task_name = getattr(record, 'task_name', None)
        if task_name:
            entry['task'] = task_name

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        entry.update(getattr(record, 'fields', {}))
        return json.dumps(entry, ensure_ascii=False, default=str)


class ArchiveLogAdapter(logging.LoggerAdapter):
    """
    Logger adapter carrying archive context.

    Adapter context and per-call ``extra`` are merged into a single
    ``fields`` mapping on the record, together with the name of the
    asyncio task that emitted it (``worker-3``, ...).
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = dict(self.extra)
        fields.update(kwargs.pop('extra', None) or {})
        kwargs['extra'] = {'fields': fields, 'task_name': _current_task_name()}
        return msg, kwargs

    def bind(self, **context) -> 'ArchiveLogAdapter':
        """A child adapter with additional context."""
        merged = dict(self.extra)
        merged.update(context)
        return ArchiveLogAdapter(self.logger, merged)

    def log_reference_event(self, level: int, reference: str, message: str, **kwargs):
        """Log something that happened to one origin reference."""
        extra = dict(kwargs.pop('extra', None) or {})
        extra.update(reference=reference, event_type='reference')
        self.log(level, message, extra=extra, **kwargs)

    def log_document_written(self, reference: str, local_path: str, size: int, depth: int):
        self.debug(
            f"Wrote {local_path} ({size} bytes, depth {depth})",
            extra={
                'reference': reference,
                'local_path': local_path,
                'bytes': size,
                'depth': depth,
                'event_type': 'document_written',
            }
        )

    def log_crawl_stat(self, stat_name: str, value: Any):
        self.info(
            f"Stat: {stat_name} = {value}",
            extra={'stat_name': stat_name, 'stat_value': value, 'event_type': 'crawl_stat'}
        )


class TransportNoiseFilter(logging.Filter):
    """Drop records from transport-level loggers below WARNING."""

    def __init__(self, noisy_loggers: Iterable[str] = NOISY_LOGGERS):
        super().__init__()
        self.noisy_loggers = tuple(noisy_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not any(
            record.name == name or record.name.startswith(name + '.')
            for name in self.noisy_loggers
        )


def _rotating_handler(path: Path, max_bytes: int, backup_count: int,
                      level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, filter_transport_noise: bool = True) -> logging.Logger:
    """
    Configure the root logger for an archive run.

    Args:
        config: Logging configuration
        filter_transport_noise: Drop low-level aiohttp/asyncio records

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)
    noise_filter = TransportNoiseFilter() if filter_transport_noise else None

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(root_logger.level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(
            _rotating_handler(log_file, MAIN_LOG_MAX_BYTES, 5, logging.DEBUG, formatter)
        )
        root_logger.addHandler(
            _rotating_handler(log_file.parent / 'errors.log', ERROR_LOG_MAX_BYTES, 3,
                              logging.ERROR, formatter)
        )

    if noise_filter is not None:
        for handler in root_logger.handlers:
            handler.addFilter(noise_filter)

    for logger_name in ('aiohttp', 'asyncio', 'charset_normalizer'):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.debug(
        f"Logging initialized: level={config.level}, json={config.json}, file={config.file}"
    )
    return root_logger


def get_archive_logger(name: str, **context) -> ArchiveLogAdapter:
    """Logger for ``name`` whose records always carry ``context``."""
    return ArchiveLogAdapter(logging.getLogger(name), context)
