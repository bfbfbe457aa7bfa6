"""
Logging setup for the pipeline processes.

Workers log one JSON object per job outcome through plain ``logging``
loggers. In json mode those event lines are merged into the log record
instead of being nested as an escaped string.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

# Attributes callers may pass through ``extra=`` to tag a record with its job
JOB_FIELDS = ("stage", "job_id", "message_id", "prescription_id", "attempt", "status")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with job event fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "process": record.process,
        }

        message = record.getMessage()
        event = _parse_event(message)
        if event is None:
            log_obj["message"] = message
        else:
            # Record metadata wins over a clashing event key
            for key, value in event.items():
                log_obj.setdefault(key, value)

        for field in JOB_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if record.levelno >= logging.WARNING:
            log_obj["location"] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def _parse_event(message: str):
    if not message.startswith("{"):
        return None
    try:
        parsed = json.loads(message)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def configure_logging(settings: Any = None) -> None:
    """Install a single stdout handler on the root logger.

    ``settings`` is a ``LoggingSettings``; when omitted, INFO with JSON output.
    Azure SDK HTTP logging is capped at WARNING since it logs every poll.
    """
    level = getattr(settings, "level", "INFO")
    fmt = getattr(settings, "format", "json")

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
    logging.getLogger("azure.storage.queue").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
