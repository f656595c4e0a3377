"""
Tests for logging setup, JSON formatting and credential redaction.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path

from config.logging_config import (
    JsonFormatter,
    LogCategory,
    TokenSanitizer,
    cleanup_logs,
    setup_logging,
)


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("execution.controller", logging.INFO, __file__, 1, msg, None, None)
    record.__dict__.update(extra)
    return record


class TestTokenSanitizer:
    def test_hex_key_redacted(self):
        record = _record(f"signing with 0x{'ab' * 32}")
        TokenSanitizer().filter(record)
        assert record.msg == "signing with 0x***"

    def test_json_secret_redacted(self):
        record = _record('payload {"api_secret": "hunter2", "market_id": "m1"}')
        TokenSanitizer().filter(record)
        assert "hunter2" not in record.msg
        assert '"market_id": "m1"' in record.msg

    def test_extra_fields_redacted(self):
        record = _record("connect", passphrase="s3cret", market_id="m1")
        assert TokenSanitizer().filter(record)
        assert record.passphrase == "***"
        assert record.market_id == "m1"

    def test_short_hex_untouched(self):
        record = _record("order 0xdeadbeef")
        TokenSanitizer().filter(record)
        assert record.msg == "order 0xdeadbeef"


class TestJsonFormatter:
    def test_extra_fields_included(self):
        record = _record(f"{LogCategory.TRADE} filled", fill_size=25.0)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "execution.controller"
        assert payload["message"] == "[TRADE] filled"
        assert payload["fill_size"] == 25.0
        assert "lineno" not in payload


class TestSetupLogging:
    def test_console_only(self, restore_root_logging):
        assert setup_logging(level="warning") is None
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_script_log_file(self, restore_root_logging):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = setup_logging(level="INFO", script_name="backtest", log_dir=tmpdir)
            logging.getLogger("tests").info("hello", extra={"market_id": "m1"})
            for handler in logging.getLogger().handlers:
                handler.flush()

            assert path.parent == Path(tmpdir)
            assert path.name.startswith("backtest_")
            lines = [json.loads(line) for line in path.read_text().splitlines()]
            assert any(line["message"] == "hello" and line["market_id"] == "m1" for line in lines)

            for handler in logging.getLogger().handlers:
                handler.close()


class TestCleanupLogs:
    def test_old_files_removed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            old = Path(tmpdir) / "old.log"
            rotated = Path(tmpdir) / "old.log.1"
            fresh = Path(tmpdir) / "fresh.log"
            for path in (old, rotated, fresh):
                path.write_text("x")
            stale = time.time() - 10 * 86400
            os.utime(old, (stale, stale))
            os.utime(rotated, (stale, stale))

            assert cleanup_logs(tmpdir, retention_days=7) == 2
            assert fresh.exists()
            assert not old.exists()

    def test_missing_directory(self):
        assert cleanup_logs("/nonexistent/logs") == 0
