"""Tests for structured logging"""
import json
import logging

from approval_engine.utils.logger import (
    JsonFormatter, correlation_scope, get_context_logger, get_correlation_id,
    set_correlation_id
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("approval_engine.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_known_extras():
    payload = json.loads(JsonFormatter().format(make_record(instance_id="WFI-1", node_id="a", unrelated="x")))

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["instance_id"] == "WFI-1"
    assert payload["node_id"] == "a"
    assert "unrelated" not in payload


def test_correlation_id_is_attached():
    set_correlation_id("COR-test")
    try:
        payload = json.loads(JsonFormatter().format(make_record()))
        assert payload["correlation_id"] == "COR-test"
        assert get_correlation_id() == "COR-test"
    finally:
        set_correlation_id(None)


def test_context_logger_merges_extra(caplog):
    adapter = get_context_logger("approval_engine.test", instance_id="WFI-2")
    with caplog.at_level(logging.INFO, logger="approval_engine.test"):
        adapter.info("acted", extra={"user_id": "u-1"})

    record = caplog.records[-1]
    assert record.instance_id == "WFI-2"
    assert record.user_id == "u-1"


def test_correlation_scope_sets_and_restores():
    assert get_correlation_id() is None

    with correlation_scope() as correlation_id:
        assert correlation_id.startswith("COR-")
        assert get_correlation_id() == correlation_id

        with correlation_scope() as inner:
            assert inner == correlation_id

    assert get_correlation_id() is None


def test_correlation_scope_uses_given_id():
    with correlation_scope("COR-given") as correlation_id:
        assert correlation_id == "COR-given"
    assert get_correlation_id() is None
