"""Tests for logging helpers."""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

import pytest

from ternity_auth.config import LogSettings
from ternity_auth.log import configure, enable_debug, get_logger, redact_sensitive_data, set_level


if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def restore_logger() -> Iterator[None]:
    """Drop any file handler added by a test."""
    yield
    configure(LogSettings(to_file=False))
    set_level(logging.WARNING)


class TestRedaction:
    """Tests for redact_sensitive_data."""

    def test_token_fields(self) -> None:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": "rt-secret",
            "code": "abc",
            "code_verifier": "v",
            "client_id": "public",
        }
        redacted = redact_sensitive_data(data)
        assert redacted == {
            "grant_type": "refresh_token",
            "refresh_token": "[REDACTED]",
            "code": "[REDACTED]",
            "code_verifier": "[REDACTED]",
            "client_id": "public",
        }
        assert data["refresh_token"] == "rt-secret"

    def test_nested(self) -> None:
        redacted = redact_sensitive_data({"outer": [{"access_token": "x", "ok": 1}]})
        assert redacted == {"outer": [{"access_token": "[REDACTED]", "ok": 1}]}

    def test_passthrough(self) -> None:
        assert redact_sensitive_data(None) is None
        assert redact_sensitive_data("plain") == "plain"


class TestConfigure:
    """Tests for logger configuration."""

    def test_level(self) -> None:
        logger = configure(LogSettings(level="ERROR", to_file=False))
        assert logger is get_logger()
        assert logger.level == logging.ERROR

    def test_enable_debug(self) -> None:
        enable_debug()
        assert get_logger().level == logging.DEBUG

    def test_file_handler(self, tmp_path: Path) -> None:
        """Records from module loggers reach the rotating log file."""
        configure(LogSettings(level="INFO"), tmp_path / "logs")
        logging.getLogger("ternity.auth").info("hello from the auth core")
        for handler in get_logger().handlers:
            handler.flush()

        log_file = tmp_path / "logs" / "app.log"
        assert log_file.exists()
        assert "hello from the auth core" in log_file.read_text(encoding="utf-8")

    def test_reconfigure_replaces_file_handler(self, tmp_path: Path) -> None:
        configure(LogSettings(), tmp_path / "a")
        configure(LogSettings(), tmp_path / "b")
        files = [h for h in get_logger().handlers if isinstance(h, logging.FileHandler)]
        assert len(files) == 1
        assert files[0].baseFilename == str(tmp_path / "b" / "app.log")
