"""
Root logger setup for the portfolio API.

LOG_LEVEL picks the level (default INFO); LOG_JSON=1 switches to one JSON
object per line for log shippers. Messages carry ids and symbols only, never
tokens or emails.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from config.settings import get_settings

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "hpack", "sqlalchemy.engine")

# attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _default(obj: Any) -> str:
    iso = getattr(obj, "isoformat", None)
    return iso() if callable(iso) else str(obj)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        doc: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_") and value is not None:
                doc.setdefault(key, value)
        if record.exc_info and record.exc_info[0] is not None:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, default=_default)


def configure_logging() -> None:
    """Install a single stdout handler on the root logger; safe to call again."""
    settings = get_settings()
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if settings.log_json else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
