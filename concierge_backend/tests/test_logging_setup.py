"""Tests for the JSON log line format."""

import json
import logging
import sys

import pytest

from concierge_backend.app.core.logging_setup import JSONFormatter


@pytest.fixture
def formatter():
    return JSONFormatter(environment="test")


def make_record(msg, args=(), exc_info=None):
    return logging.LogRecord(
        name="concierge.test",
        level=logging.ERROR,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def test_quotes_and_newlines_stay_valid_json(formatter):
    record = make_record('Payment gateway said "declined"\nretry later')

    data = json.loads(formatter.format(record))

    assert data["message"] == 'Payment gateway said "declined"\nretry later'
    assert data["level"] == "ERROR"
    assert data["environment"] == "test"
    assert data["service_name"] == "concierge-backend"


def test_exception_text_is_included(formatter):
    try:
        raise ValueError('bad "value"')
    except ValueError:
        record = make_record("Tick process for trip %s failed", (7,), sys.exc_info())

    data = json.loads(formatter.format(record))

    assert data["message"] == "Tick process for trip 7 failed"
    assert 'ValueError: bad "value"' in data["exception"]


def test_request_context_fields_copied(formatter):
    record = make_record("Request served")
    record.correlation_id = "corr-1"
    record.status_code = 200
    record.duration_ms = 1.25

    data = json.loads(formatter.format(record))

    assert data["correlation_id"] == "corr-1"
    assert data["status_code"] == 200
    assert data["duration_ms"] == 1.25
