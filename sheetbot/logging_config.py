"""JSON logging configuration for the sheetbot service.

Records carry an optional ``context`` dict (``extra={"context": {...}}``).
A ``user_id`` inside it is lifted to the top level so log queries can
filter per WhatsApp user without parsing the context.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Client and access loggers that flood INFO with one line per request.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            if "user_id" in context:
                log_data["user_id"] = context["user_id"]
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Install the JSON handler on the root logger.

    With ``debug`` on, the noisy client loggers keep the root level.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if debug else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a component logger under the sheetbot namespace."""
    return logging.getLogger(f"sheetbot.{name}")
