"""
Review Synthesis Logging
========================

One setup call shared by the API, the scheduler daemon and the CLI.

Two output formats:
    - text: one line per record, for terminals and local runs
    - json: one JSON object per line, for log aggregation

Call sites add synthesis context through `extra=`:

    logger.info("Source reddit: 12 reviews", extra={"subject_id": 550, "source": "reddit"})

The JSON formatter copies those fields to the top level of the entry.

Usage:
    from src.orchestrator.logging_config import setup_logging

    setup_logging(json_output=True, log_file="logs/synthesis.log")
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Optional

# Context fields copied into JSON entries when a call site passes them
EXTRA_FIELDS = ("subject_id", "step", "source", "duration", "outcome")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Chatty at INFO; kept at WARNING so pipeline lines stay readable
NOISY_LOGGERS = ("urllib3", "httpx", "apscheduler", "anthropic")


class JSONFormatter(logging.Formatter):
    """
    JSON-lines formatter.

        {"ts": "...", "level": "INFO", "logger": "src.reviews.collector",
         "msg": "...", "subject_id": 550, "source": "reddit"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _file_handler(path: str, max_bytes: int, backup_count: int) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
):
    """
    Configure the root logger. Replaces any handlers already installed.

    Args:
        level: Root log level name
        json_output: JSON lines instead of text
        log_file: Also write to this file, rotated at max_bytes
    """
    formatter = JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(_file_handler(log_file, max_bytes, backup_count))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured: level={level} json={json_output} file={log_file or 'none'}"
    )
