from __future__ import annotations

import json
import logging

from blockcache.utils.logging import ConsoleFormatter, JsonFormatter, _json_formatter, configure_logging

SLOT = 374_563_500
RESPONSE_TIME_MS = 42


def _record(msg: str = "resolved") -> logging.LogRecord:
    return logging.LogRecord(
        name="blockcache.resolver",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_extra_fields() -> None:
    record = _record()
    record.slot = SLOT
    record.cache_hit = True

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "blockcache.resolver"
    assert payload["message"] == "resolved"
    assert payload["slot"] == SLOT
    assert payload["cache_hit"] is True
    assert "pathname" not in payload
    assert "lineno" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"response_time_ms": RESPONSE_TIME_MS}

    payload = json.loads(_json_formatter(record))

    assert payload["response_time_ms"] == RESPONSE_TIME_MS
    assert "extra" not in payload


def test_json_formatter_stringifies_unserializable_values() -> None:
    record = _record()
    record.window = range(3)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["window"] == "range(0, 3)"


def test_configure_logging_quiets_http_client() -> None:
    configure_logging(level="DEBUG", json_logs=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert any(isinstance(h.formatter, JsonFormatter) for h in logging.getLogger().handlers)


def test_console_formatter_appends_context_fields() -> None:
    record = _record()
    record.slot = SLOT
    record.cache_hit = False

    line = ConsoleFormatter().format(record)

    assert " | WARNING | blockcache.resolver | resolved | " in line
    assert line.endswith(f"slot={SLOT} cache_hit=False")


def test_console_formatter_without_context_is_a_plain_line() -> None:
    line = ConsoleFormatter().format(_record("started"))

    assert line.endswith("| WARNING | blockcache.resolver | started")


def test_configure_logging_defaults_to_console_lines() -> None:
    configure_logging(level="INFO", json_logs=False)

    assert any(isinstance(h.formatter, ConsoleFormatter) for h in logging.getLogger().handlers)
