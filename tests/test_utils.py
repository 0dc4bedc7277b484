import asyncio
import json
import logging

import pytest

from jukegame.errors import AuthenticationError
from jukegame.utils.auth import parse_bearer_token, require_bearer_token
from jukegame.utils.batch import BatchProcessor
from jukegame.utils.deadline import Deadline
from jukegame.utils.logging_config import JSONFormatter
from jukegame.utils.retry import retry_with_backoff

from conftest import FakeClock


@pytest.mark.parametrize("header,token", [
    ("Bearer abc123", "abc123"),
    ("bearer   abc123  ", "abc123"),
    ("Basic abc123", None),
    ("Bearer", None),
    ("", None),
    (None, None),
])
def test_parse_bearer_token(header, token):
    assert parse_bearer_token(header) == token


def test_require_bearer_token():
    assert require_bearer_token("Bearer t") == "t"
    with pytest.raises(AuthenticationError):
        require_bearer_token("Token t")


def test_deadline_tracks_budget():
    clock = FakeClock(start=0.0)
    deadline = Deadline(4500, clock)

    clock.advance(3.5)
    assert not deadline.expired()
    assert deadline.remaining_ms() == 1000.0
    assert deadline.has_at_least(900)
    assert not deadline.has_at_least(1000)

    clock.advance(1.25)
    assert deadline.expired()
    assert deadline.remaining_ms() == 0.0


def test_retry_until_success(monkeypatch):
    monkeypatch.setattr("jukegame.utils.retry.time.sleep", lambda _: None)
    calls = []

    @retry_with_backoff(max_retries=2, exceptions=(ConnectionError,))
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_retry_respects_predicate(monkeypatch):
    monkeypatch.setattr("jukegame.utils.retry.time.sleep", lambda _: None)
    calls = []

    @retry_with_backoff(max_retries=3, retry_if=lambda e: "transient" in str(e))
    def fails():
        calls.append(1)
        raise RuntimeError("permanent")

    with pytest.raises(RuntimeError):
        fails()
    assert len(calls) == 1


def test_batch_processor_captures_failures():
    async def double(n):
        if n == 3:
            raise ValueError("three")
        await asyncio.sleep(0)
        return n * 2

    processor = BatchProcessor(concurrency=2)
    results = asyncio.run(processor.process_keyed([1, 2, 3], double))

    assert results[1] == 2 and results[2] == 4
    assert isinstance(results[3], ValueError)
    assert (processor.processed, processor.failed) == (2, 1)


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("jukegame.test", logging.INFO, __file__, 1, "tick %s", ("done",), None)
    record.operation = "tick"

    data = json.loads(JSONFormatter().format(record))
    assert data["message"] == "tick done"
    assert data["operation"] == "tick"
    assert data["level"] == "INFO"
