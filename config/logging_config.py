"""
Logging configuration for the signal evaluation pipeline.

Every pipeline message opens with a ``LogCategory`` prefix. The JSON
formatter lifts that prefix into a ``category`` field, so a replay log can
be filtered to gate vetoes or store faults with a plain ``jq`` select.

Usage:
    >>> import logging
    >>> from config.logging_config import LogCategory, setup_logging
    >>> setup_logging(level="INFO", script_name="replay")
    >>> logger = logging.getLogger(__name__)
    >>> logger.warning(f"{LogCategory.GATE} writer ratio 1.8 below minimum")
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional


class LogCategory:
    """Message prefixes used across the pipeline."""

    PIPELINE = "[PIPELINE]"  # Stage sequencing and decisions
    GATE = "[GATE]"  # Writer-ratio veto
    RISK = "[RISK]"  # Risk regime and portfolio limits
    PERSIST = "[PERSIST]"  # Signal store writes
    CONFIG = "[CONFIG]"
    DATA = "[DATA]"  # Input snapshot problems


_CATEGORY_RE = re.compile(r"^\[([A-Z]+)\]\s*")

MASKED = "***"
MASKED_FIELDS = frozenset({"token", "api_key", "secret", "password", "user_id", "organization_id"})
_MASK_RE = re.compile(
    r'(?P<key>"(?:%s)"\s*:\s*)"[^"]*"' % "|".join(sorted(MASKED_FIELDS)),
    re.IGNORECASE,
)

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class TokenSanitizer(logging.Filter):
    """
    Masks credentials and tenant ids.

    Covers quoted JSON values inside the message and attributes passed via
    ``extra=``. Requests carry ``organization_id`` and ``user_id``, and
    replay logs leave the owning tenant.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _MASK_RE.sub(rf'\g<key>"{MASKED}"', record.msg)
        for key in MASKED_FIELDS & record.__dict__.keys():
            setattr(record, key, MASKED)
        return True


def split_category(message: str) -> tuple[Optional[str], str]:
    """``"[GATE] veto"`` -> ``("GATE", "veto")``; unprefixed messages give ``None``."""
    match = _CATEGORY_RE.match(message)
    if not match:
        return None, message
    return match.group(1), message[match.end():]


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, e.g.

        {"timestamp": "...", "level": "WARNING", "logger": "execution.orchestrator",
         "category": "GATE", "message": "[GATE] NIFTY ...", "symbol": "NIFTY"}

    ``extra=`` attributes are merged in. The message keeps its prefix.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        category, _ = split_category(message)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "category": category,
            "message": message,
        }
        payload.update((k, v) for k, v in record.__dict__.items() if k not in _RECORD_ATTRS)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ColorFormatter(logging.Formatter):
    """Colours the level name; gate vetoes are highlighted whatever their level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[92m",
        logging.WARNING: "\033[93m",
        logging.ERROR: "\033[91m",
        logging.CRITICAL: "\033[1;91m",
    }
    GATE_COLOR = "\033[1;95m"
    RESET = "\033[0m"

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        # Copy; the file handler formats the same record
        record = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelno, "")
        record.levelname = f"{color}{record.levelname:<8}{self.RESET}"
        text = super().format(record)
        if LogCategory.GATE in text:
            text = text.replace(LogCategory.GATE, f"{self.GATE_COLOR}{LogCategory.GATE}{self.RESET}", 1)
        return text


def _resolve_log_file(
    log_file: Path | str | None,
    script_name: Optional[str],
    log_dir: Path | str | None,
) -> Optional[Path]:
    if log_file:
        path = Path(log_file)
    elif script_name:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = Path(log_dir or Path.cwd() / "logs") / f"{script_name}_{stamp}.log"
    else:
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | str | None = None,
    script_name: Optional[str] = None,
    log_dir: Path | str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> Optional[Path]:
    """
    Replace the root handlers with a stderr handler and an optional JSON file.

    Args:
        level: Level name, case-insensitive
        json_format: JSON lines on stderr instead of coloured text
        log_file: Explicit file; wins over ``script_name``
        script_name: Write ``{script_name}_YYYYmmdd_HHMMSS.log`` into ``log_dir``
        log_dir: Directory for generated files (default ``./logs``)
        max_bytes: Rotation size
        backup_count: Rotated files kept

    Returns:
        The log file path, or None when logging only to stderr.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers = []
    sanitizer = TokenSanitizer()

    # stdout carries command output
    console = logging.StreamHandler(sys.stderr)
    console.addFilter(sanitizer)
    console.setFormatter(JsonFormatter() if json_format else ColorFormatter())
    root.addHandler(console)

    path = _resolve_log_file(log_file, script_name, log_dir)
    if path is None:
        return None

    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    file_handler.addFilter(sanitizer)
    file_handler.setFormatter(JsonFormatter())
    root.addHandler(file_handler)
    root.info(f"{LogCategory.CONFIG} Logging initialized. Writing to {path}")
    return path
