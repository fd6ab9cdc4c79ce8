"""
Logging setup for the API process.

    development / testing  → ReadableFormatter (colored, one line per record)
    production             → JSONFormatter (one JSON object per record)

LOG_LEVEL picks the level and LOG_FORMAT ("json" | "readable") overrides the
format. Provider credentials travel in request bodies, so every handler gets
a SecretRedactingFilter that masks key/token-looking values before output.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

# Context attributes set via ``extra=`` on log calls
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "project_id",
    "story_id",
    "provider",
    "purpose",
)

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "openai", "httpx", "httpcore")

_SECRET_PATTERNS = (
    # key=value / "key": "value" pairs for the credential fields we accept
    re.compile(
        r"""(?i)(["']?(?:api[_-]?key|apiKey|api[_-]?token|apiToken|personal[_-]?access[_-]?token|"""
        r"""personalAccessToken|authorization|password)["']?\s*[:=]\s*["']?(?:Bearer\s+|Basic\s+)?)"""
        r"""([^\s"',}]+)"""
    ),
    # OpenAI-style secret keys anywhere in the text
    re.compile(r"(sk-)[A-Za-z0-9_\-]{8,}"),
)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + "***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Masks credentials in the rendered message; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record, context fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        tags = [f"{key}={getattr(record, key)}" for key in ("provider", "purpose")
                if getattr(record, key, None)]
        if tags:
            line += f" ({', '.join(tags)})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Handlers are replaced rather than appended, so creating several apps in
    one process (the test suite does) does not duplicate output.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(SecretRedactingFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
