"""
Tests for logging setup, correlation ids and log sanitization.
"""
import io
import logging

import pytest

from utils.log_sanitizer import DataSanitizer, SanitizationRule, mask_secret, sanitize_for_logging
from utils.logging_config import (
    ColoredFormatter,
    CorrelationFilter,
    clear_turn_ids,
    get_correlation_ids,
    setup_logging,
    start_new_turn,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_turn_ids()


def test_mask_secret():
    assert mask_secret(None) == "NOT SET"
    assert mask_secret("") == "NOT SET"
    assert mask_secret("abcdefgh") == "abcd*** (length: 8)"


def test_bearer_tokens_and_jwts_are_masked():
    text = "Authorization: Bearer abc.def-123 payload eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl"

    sanitized = sanitize_for_logging(text)

    assert "abc.def-123" not in sanitized
    assert "Bearer [TOKEN:***]" in sanitized
    assert "c2lnbmF0dXJl" not in sanitized


def test_password_assignments_are_masked():
    assert sanitize_for_logging("password=hunter2") == "password=[PASSWORD:***]"


def test_sensitive_dict_keys_are_masked_recursively():
    data = {"state": "123456", "nested": {"token": "sso-token-value"}, "items": [{"secret": "s3cr3t!"}]}

    sanitized = sanitize_for_logging(data)

    assert sanitized["state"] == "123456"
    assert sanitized["nested"]["token"] == "sso-*** (length: 15)"
    assert sanitized["items"][0]["secret"] == "s3cr*** (length: 7)"
    assert data["nested"]["token"] == "sso-token-value"


def test_custom_rule():
    sanitizer = DataSanitizer()
    sanitizer.add_custom_rule(SanitizationRule(pattern=r"tenant-[0-9]+", replacement="tenant-***"))

    assert sanitizer.sanitize_data("tenant-42 signed in") == "tenant-*** signed in"


def test_correlation_ids_follow_the_turn():
    turn = start_new_turn("u1", "c1")

    assert get_correlation_ids() == {"turn_id": turn, "session_id": "c1", "user_id": "u1"}
    clear_turn_ids()
    assert get_correlation_ids() == {"turn_id": None, "session_id": None, "user_id": None}


def test_correlation_filter_and_formatter_add_turn_prefix():
    turn = start_new_turn("u1", "c1")
    record = logging.LogRecord("bot_core.dialog_bot", logging.INFO, __file__, 1, "routed", None, None)

    assert CorrelationFilter().filter(record) is True
    line = ColoredFormatter(use_colors=False).format(record)

    assert f"[turn:{turn[:8]}]" in line
    assert line.endswith("routed")
    clear_turn_ids()


def test_formatter_without_filter_has_no_turn_prefix():
    record = logging.LogRecord("app", logging.WARNING, __file__, 1, "plain", None, None)

    line = ColoredFormatter(use_colors=False).format(record)

    assert "[turn:" not in line
    assert "WARNING - plain" in line


def test_setup_logging_replaces_its_handler(restore_root_logger):
    stream = io.StringIO()

    setup_logging("INFO", use_colors=False, stream=stream)
    setup_logging("DEBUG", use_colors=False, stream=stream)

    root = restore_root_logger
    named = [h for h in root.handlers if h.get_name() == "gateway-console"]
    assert len(named) == 1
    assert root.level == logging.DEBUG
    assert logging.getLogger("aiohttp.access").level == logging.WARNING

    logging.getLogger("tests.logging").info("hello from the gateway")
    assert "hello from the gateway" in stream.getvalue()
