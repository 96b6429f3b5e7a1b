"""Logging helpers for certvault.

The store persists credentials and private keys, so every handler installed
by :func:`setup_logging` carries a :class:`SensitiveDataFilter` that scrubs
secret-looking values before a record is emitted.
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from certvault.core.config import LogConfig

_LOG_RECORD_RESERVED_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime"}
_REDACTED_VALUE = "[REDACTED]"
_SENSITIVE_PARTS = {"password", "passwd", "secret", "token", "apikey", "authorization", "passphrase"}
_SENSITIVE_SUFFIXES = (("private", "key"), ("api", "key"), ("account", "key"))
_SENSITIVE_KEY_REGEX = (
    r"private[_-]?key|api[_-]?key|account[_-]?key|client[_-]?secret|"
    r"access[_-]?token|password|passphrase|secret|token"
)
_KEY_VALUE_PATTERN = re.compile(
    rf"""(?ix)
    (?P<key>["']?(?<![A-Za-z0-9_])(?:{_SENSITIVE_KEY_REGEX})(?![A-Za-z0-9_])["']?)
    (?P<separator>\s*[:=]\s*)
    (?P<value>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|[^,\s;}}\]]+)
    """
)
_PEM_BLOCK_PATTERN = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]*PRIVATE KEY)-----.*?-----END (?P=label)-----",
    re.DOTALL,
)
_BEARER_PATTERN = re.compile(r"(?i)\b(bearer)\s+([A-Za-z0-9._~+/=-]+)")


def _is_sensitive_field(name: str) -> bool:
    parts = [part for part in re.split(r"[^a-z0-9]+", name.lower()) if part]
    if not parts:
        return False
    if any(part in _SENSITIVE_PARTS for part in parts):
        return True
    return any(tuple(parts[-2:]) == suffix for suffix in _SENSITIVE_SUFFIXES)


def _redact_captured_value(value: str) -> str:
    if len(value) >= 2 and value[0] in {"'", '"'} and value[-1] == value[0]:
        return f"{value[0]}{_REDACTED_VALUE}{value[0]}"
    return _REDACTED_VALUE


def redact_message(message: str) -> str:
    """Replace secret-looking values in a free-form message."""
    redacted = _PEM_BLOCK_PATTERN.sub(lambda m: f"-----BEGIN {m.group('label')}----- {_REDACTED_VALUE}", message)
    redacted = _KEY_VALUE_PATTERN.sub(
        lambda m: f"{m.group('key')}{m.group('separator')}{_redact_captured_value(m.group('value'))}",
        redacted,
    )
    return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} {_REDACTED_VALUE}", redacted)


def _safe_record_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except Exception:
        return f"{record.msg!s} [log-message-format-error]"


def _record_extras(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _LOG_RECORD_RESERVED_FIELDS and not key.startswith("_")
    }


class SensitiveDataFilter(logging.Filter):
    """Best-effort redaction for sensitive values in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "_certvault_redacted", False):
            return True
        record.msg = redact_message(_safe_record_message(record))
        record.args = ()
        for key, value in _record_extras(record).items():
            if _is_sensitive_field(key):
                record.__dict__[key] = _REDACTED_VALUE
            elif isinstance(value, str):
                record.__dict__[key] = redact_message(value)
        record._certvault_redacted = True
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging output.

    Each log record is a single JSON object on one line. Fields passed via
    ``extra=`` (for example ``lock_key``) are merged into the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _safe_record_message(record),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
            "thread_name": record.threadName,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key, value in _record_extras(record).items():
            log_entry.setdefault(key, value)
        return json.dumps(log_entry, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges contextual fields into record extras."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        merged_extra = dict(self.extra)
        extra = kwargs.get("extra")
        if isinstance(extra, dict):
            merged_extra.update(extra)
        kwargs["extra"] = merged_extra
        return msg, kwargs


def with_log_context(
    logger: logging.Logger | logging.LoggerAdapter, **context: object
) -> logging.Logger | logging.LoggerAdapter:
    """Return a logger enriched with persistent contextual fields."""
    if not isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        # Preserve test doubles that do not implement the logging interface.
        return logger
    fields = {k: v for k, v in context.items() if v is not None}
    base = logger
    if isinstance(logger, logging.LoggerAdapter):
        fields = {**dict(logger.extra or {}), **fields}
        base = logger.logger
    return ContextLoggerAdapter(base, fields)


def setup_logging(config: LogConfig | None = None, quiet: bool = False) -> logging.Logger:
    """Configure root logging to the console and, optionally, a rotating file.

    Args:
        config: Logging configuration; defaults to ``LogConfig()``
        quiet: Only emit errors on the console

    Returns:
        The ``certvault`` package logger
    """
    config = config or LogConfig()
    config.validate()
    numeric_level = getattr(logging, config.level.upper(), logging.INFO)

    for handler in logging.root.handlers[:]:
        handler.close()
        logging.root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.ERROR if quiet else numeric_level)
    handlers: list[logging.Handler] = [console]
    if config.file:
        log_path = Path(config.file).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path, maxBytes=config.file_max_bytes, backupCount=config.file_backup_count
            )
        except OSError as e:
            print(f"Warning: Cannot open log file {log_path}: {e}. Logging to console only.", file=sys.stderr)
        else:
            file_handler.setLevel(numeric_level)
            handlers.append(file_handler)

    if config.format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SensitiveDataFilter())
        logging.root.addHandler(handler)
    logging.root.setLevel(numeric_level)

    logger = logging.getLogger("certvault")
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    return logger


def flush_logging_handlers() -> None:
    """Flush root handlers, ignoring handlers whose streams are already closed."""
    for handler in logging.root.handlers:
        with contextlib.suppress(Exception):
            handler.flush()
