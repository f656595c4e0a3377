"""
Standardized logging configuration for the staged execution system.

Provides:
- JSON-formatted logs for unattended operation (machine-readable)
- Colored console logs for interactive use
- Category tags for filtering trade, safety and backtest output
- Rotating log files and retention cleanup
- Redaction of wallet keys and API secrets

Usage:
    >>> from config.logging_config import setup_logging, get_logger
    >>> log_file = setup_logging(script_name="backtest", level="INFO")
    >>> logger = get_logger(__name__)
    >>> logger.info("Fill recorded", extra={"market_id": "0xabc", "size": 25.0})
"""

import json
import logging
import re
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


class LogCategory:
    """Prefixes used in log messages so operators can grep by concern."""

    TRADE = "[TRADE]"  # Order lifecycle
    SAFETY = "[SAFETY]"  # Kill switch, circuit breaker, mode downgrades
    RISK = "[RISK]"  # Risk gates and runtime risk state
    NETWORK = "[NETWORK]"  # Venue calls
    BACKTEST = "[BACKTEST]"  # Offline replay
    CALIBRATION = "[CALIBRATION]"  # Probability calibration
    DATA = "[DATA]"  # Historical data loading


SENSITIVE_KEYS = frozenset([
    "private_key", "wallet_private_key", "api_key", "api_secret",
    "passphrase", "secret", "password", "token", "auth_token",
])

# 32-byte hex strings look like signing keys
_HEX_KEY_PATTERN = re.compile(r"\b0x[0-9a-fA-F]{64}\b")


class TokenSanitizer(logging.Filter):
    """
    Redacts credentials from log records.

    Handles JSON-like ``"key": "value"`` pairs, raw hex signing keys inside
    the message, and sensitive names passed via ``extra``.
    """

    _PATTERNS = [
        re.compile(rf'("{key}"\s*:\s*)"[^"]*"', re.IGNORECASE)
        for key in SENSITIVE_KEYS
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            msg = _HEX_KEY_PATTERN.sub("0x***", record.msg)
            for pattern in self._PATTERNS:
                msg = pattern.sub(r'\1"***"', msg)
            record.msg = msg

        for key in list(record.__dict__.keys()):
            if key.lower() in SENSITIVE_KEYS:
                record.__dict__[key] = "***"

        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fields passed through ``extra=`` are emitted alongside the standard
    timestamp/level/logger/message keys.

    Example output:
        {"timestamp": "2024-01-01T12:00:00+00:00", "level": "INFO",
         "logger": "execution.controller", "message": "[TRADE] filled",
         "execution_id": "5f1c...", "fill_size": 25.0}
    """

    _RESERVED = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {k: v for k, v in record.__dict__.items() if k not in self._RESERVED}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ColorFormatter(logging.Formatter):
    """Console formatter that colors the level name with ANSI codes."""

    COLORS = {
        "DEBUG": "\033[90m",
        "INFO": "\033[92m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        color = self.COLORS.get(original, self.RESET)
        record.levelname = f"{color}{original:8}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _project_root() -> Path:
    """Walk upwards from this file until a project marker is found."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if any((candidate / marker).exists() for marker in ("pyproject.toml", ".git", ".env")):
            return candidate
    return Path.cwd()


def _resolve_log_file(
    log_file: Path | str | None,
    script_name: str | None,
    log_dir: Path | str | None,
) -> Path | None:
    if log_file:
        path = Path(log_file)
    elif script_name:
        directory = Path(log_dir) if log_dir else _project_root() / "logs"
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        path = directory / f"{script_name}_{stamp}.log"
    else:
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | str | None = None,
    script_name: str | None = None,
    log_dir: Path | str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> Path | None:
    """
    Configure root logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON on the console instead of colored text
        log_file: Explicit log file path (takes precedence over script_name)
        script_name: Create a timestamped ``<script_name>_<ts>.log`` file
        log_dir: Directory for generated log files (default: <root>/logs)
        max_bytes: Rotation size
        backup_count: Rotated files to keep

    Returns:
        Path to the log file, or None when only console logging is active
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers = []

    sanitizer = TokenSanitizer()

    console = logging.StreamHandler(sys.stdout)
    console.addFilter(sanitizer)
    console.setFormatter(
        JsonFormatter()
        if json_format
        else ColorFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(console)

    path = _resolve_log_file(log_file, script_name, log_dir)
    if path is not None:
        file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.addFilter(sanitizer)
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)
        root.info(f"Logging initialized. Writing to {path}")

    return path


def get_logger(name: str) -> logging.Logger:
    """Return a module logger (thin alias kept for call-site symmetry)."""
    return logging.getLogger(name)


def cleanup_logs(log_dir: Path | str, retention_days: int = 7) -> int:
    """
    Delete log files (including rotated ones) older than the retention period.

    Returns:
        Number of files deleted
    """
    directory = Path(log_dir)
    if not directory.exists():
        return 0

    cutoff = time.time() - retention_days * 86400
    deleted = 0
    for candidate in directory.glob("*.log*"):
        try:
            if candidate.is_file() and candidate.stat().st_mtime < cutoff:
                candidate.unlink()
                deleted += 1
        except OSError as e:
            print(f"Failed to delete old log {candidate}: {e}", file=sys.stderr)
    return deleted
