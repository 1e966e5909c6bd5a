import logging
import os
from typing import Optional

from pythonjsonlogger.json import JsonFormatter


class _DefaultFields(logging.Filter):
    """Ensures optional structured fields exist so the formatter never raises KeyError."""
    _fields = ("domain", "error_kind", "signature")

    def filter(self, record: logging.LogRecord) -> bool:
        for attr in self._fields:
            if not hasattr(record, attr):
                setattr(record, attr, "")
        return True


def _make_formatter() -> logging.Formatter:
    """JSON when LOG_FORMAT=json, otherwise key=value."""
    timefmt = os.getenv("LOG_TIMEFMT", "%Y-%m-%dT%H:%M:%S%z")
    if os.getenv("LOG_FORMAT", "structured").lower() == "json":
        return JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(domain)s %(error_kind)s %(signature)s",
            datefmt=timefmt,
        )
    return logging.Formatter(
        fmt=("time=%(asctime)s level=%(levelname)s logger=%(name)s "
             "msg=%(message)s domain=%(domain)s error_kind=%(error_kind)s signature=%(signature)s"),
        datefmt=timefmt,
    )


_LOGGERS: dict[Optional[str], logging.Logger] = {}


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if name in _LOGGERS:
        return _LOGGERS[name]
    logger = logging.getLogger(name or "resilience")
    if not logger.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
        handler = logging.StreamHandler()
        handler.addFilter(_DefaultFields())
        handler.setFormatter(_make_formatter())
        logger.addHandler(handler)
        logger.propagate = False
    _LOGGERS[name] = logger
    return logger


def configure_root_logging(level: str | None = None) -> logging.Logger:
    """Attach the structured handler to the package root logger so module loggers inherit it."""
    root = get_logger("resilience")
    if level:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return root
