"""JSON logging configuration for the clinic inbox service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = record.context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure JSON logging for the application."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(f"inbox.{name}")


class StageLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with the pipeline stage and delivery context.

    Usage:
        log = StageLogger(get_logger("ingest"), {"clinic": "audicare"})
        log.bind(phone="11988887777").info("Contact reconciled", stage="contact")
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        stage = kwargs.pop("stage", None)
        combined_context = {**self.extra, **(context or {})}
        if stage:
            combined_context["stage"] = stage
        if combined_context:
            kwargs["extra"] = {"context": combined_context}
        return msg, kwargs

    def bind(self, **fields: Any) -> "StageLogger":
        return StageLogger(self.logger, {**self.extra, **{k: v for k, v in fields.items() if v is not None}})
