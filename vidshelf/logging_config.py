from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from vidshelf.config import AppSettings

LOG_FILE_NAME = "vidshelf.log"
TELEMETRY_LOG_FILE_NAME = "vidshelf-telemetry.log"


def configure_logging(settings: AppSettings) -> Path:
    """Route `vidshelf.*` records to the console and a JSON file, telemetry to its own file.

    Playback and admission bind ``session_id``/``record_id`` as structlog context
    variables; both renderers merge them into every record logged inside that scope.
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    telemetry_log_file = log_dir / TELEMETRY_LOG_FILE_NAME

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_stream = sys.stderr
    app_logger = _isolated_logger("vidshelf", level=logging.DEBUG)
    app_logger.addHandler(
        _handler(
            logging.StreamHandler(stream=console_stream),
            level=_resolve_log_level(settings.log_level),
            renderer=structlog.dev.ConsoleRenderer(
                colors=_stream_supports_color(console_stream)
            ),
        )
    )
    app_logger.addHandler(_json_file_handler(log_file, level=logging.DEBUG))

    telemetry_logger = _isolated_logger("vidshelf.telemetry", level=logging.INFO)
    telemetry_logger.addHandler(_json_file_handler(telemetry_log_file, level=logging.INFO))

    app_logger.info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        log_file,
        telemetry_log_file,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    resolved = getattr(logging, raw_level.strip().upper(), None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _isolated_logger(name: str, *, level: int) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    return logger


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    return _handler(
        logging.FileHandler(path, encoding="utf-8"),
        level=level,
        renderer=structlog.processors.JSONRenderer(sort_keys=True),
        extra=(_add_call_site, structlog.processors.format_exc_info),
    )


def _handler(
    handler: logging.Handler,
    *,
    level: int,
    renderer: Processor,
    extra: tuple[Processor, ...] = (),
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            ],
            processors=[
                *extra,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def _add_call_site(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["lineno"] = record.lineno
        event_dict["func_name"] = record.funcName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except Exception:
            return False
    return False
