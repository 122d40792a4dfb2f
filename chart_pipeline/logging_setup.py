"""
Chart Pipeline - Logging setup.

Logs go to stderr; stdout carries the rendered tables of app.py.

    text:  2024-01-01 12:00:00,000 | INFO     | chart_pipeline.aggregation | run-1 | message
    json:  {"timestamp": ..., "level": ..., "logger": ..., "message": ..., "correlation_id": ...}
"""

import json
import logging
import sys
from typing import Optional


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(correlation_id)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; the message is escaped by json.dumps."""

    def __init__(self, correlation_id: Optional[str] = None) -> None:
        super().__init__()
        self.correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self.correlation_id,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class CorrelationFilter(logging.Filter):
    """Stamp every record with the run's correlation id."""

    def __init__(self, correlation_id: Optional[str] = None) -> None:
        super().__init__()
        self.correlation_id = correlation_id or ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = self.correlation_id
        return True


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Route all pipeline logging to a single stderr handler.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_format: "json" or "text"
        correlation_id: Tag added to every record

    Returns:
        The chart_pipeline package logger
    """
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter(correlation_id))
    else:
        handler.addFilter(CorrelationFilter(correlation_id))
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = [handler]

    return logging.getLogger("chart_pipeline")
