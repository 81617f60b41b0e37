"""Tests for the retry decorator."""
from unittest.mock import patch

import pytest

from dockyard.core.retry import retry


@patch('dockyard.core.retry.time.sleep')
def test_succeeds_after_failures(mock_sleep):
    calls = []

    @retry(max_attempts=3, delay=1.0, backoff=2.0, exceptions=(ConnectionError,))
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("down")
        return "ok"

    assert flaky() == "ok"
    assert [c[0][0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@patch('dockyard.core.retry.time.sleep')
def test_reraises_after_last_attempt(mock_sleep):
    @retry(max_attempts=2, delay=0.5, exceptions=(ConnectionError,))
    def always_down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        always_down()
    assert mock_sleep.call_count == 1


@patch('dockyard.core.retry.time.sleep')
def test_other_exceptions_are_not_retried(mock_sleep):
    @retry(max_attempts=3, exceptions=(ConnectionError,))
    def broken():
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    mock_sleep.assert_not_called()


@patch('dockyard.core.retry.time.sleep')
def test_log_lines_name_the_action(mock_sleep, caplog):
    @retry(exceptions=(ConnectionError,), max_attempts=2, delay=3.0, action="Email API request")
    def send():
        raise ConnectionError("connection reset")

    with pytest.raises(ConnectionError):
        send()

    assert "Email API request failed (attempt 1/2), retrying in 3.0s: connection reset" in caplog.text
    assert "Email API request failed after 2 attempts" in caplog.text


def test_exceptions_must_be_named():
    with pytest.raises(TypeError):
        retry(max_attempts=3)
