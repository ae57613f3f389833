"""Tests for retry, cancellation and logging helpers."""

import logging
import signal
from unittest.mock import Mock

import pytest

from comfy_provision.domain.exceptions import ProvisioningCancelled
from comfy_provision.shared.cancellation import CancellationToken, install_signal_handlers
from comfy_provision.shared.logging import ROOT_LOGGER, add_file_handler, get_logger, setup_logger
from comfy_provision.shared.retry import compute_backoff, retry_with_backoff


class TestRetry:
    """Test retry_with_backoff."""

    def test_succeeds_after_transient_errors(self):
        sleep = Mock()
        calls = {"n": 0}

        @retry_with_backoff(max_attempts=3, backoff_seconds=1, jitter=False, exceptions=(ConnectionError,), sleep=sleep)
        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise ConnectionError("reset")
            return "ok"

        assert flaky() == "ok"
        assert [c[0][0] for c in sleep.call_args_list] == [1, 2]

    def test_reraises_after_last_attempt(self):
        sleep = Mock()

        @retry_with_backoff(max_attempts=2, exceptions=(ConnectionError,), sleep=sleep)
        def always_down():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            always_down()
        assert sleep.call_count == 1

    def test_other_exceptions_not_retried(self):
        sleep = Mock()

        @retry_with_backoff(max_attempts=5, exceptions=(ConnectionError,), sleep=sleep)
        def broken():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            broken()
        sleep.assert_not_called()

    def test_compute_backoff(self):
        assert compute_backoff(3, 2, exponential=True, jitter=False) == 8
        assert compute_backoff(3, 2, exponential=False, jitter=False) == 6
        assert compute_backoff(10, 30, jitter=False) == 60
        assert 1 <= compute_backoff(1, 2, jitter=True) <= 3


class TestCancellationToken:
    """Test CancellationToken."""

    def test_cancel_once(self):
        token = CancellationToken()
        token.raise_if_cancelled()

        token.cancel("received SIGTERM")
        token.cancel("second reason")

        assert token.cancelled
        assert token.reason == "received SIGTERM"
        with pytest.raises(ProvisioningCancelled, match="SIGTERM"):
            token.raise_if_cancelled()

    def test_signal_handler_cancels(self):
        token = CancellationToken()
        previous = signal.getsignal(signal.SIGUSR1)
        try:
            install_signal_handlers(token, signals=(signal.SIGUSR1,))
            signal.raise_signal(signal.SIGUSR1)
        finally:
            signal.signal(signal.SIGUSR1, previous)

        assert token.cancelled
        assert token.reason == "received SIGUSR1"


class TestLogging:
    """Test logging setup."""

    def test_get_logger_nests_under_package(self):
        assert get_logger("tests.something").name == f"{ROOT_LOGGER}.tests.something"
        assert get_logger(f"{ROOT_LOGGER}.application").name == f"{ROOT_LOGGER}.application"

    def test_file_handler_receives_records(self, tmp_path):
        logger = setup_logger("comfy_provision_test", level=logging.DEBUG)
        log_file = tmp_path / "logs" / "sanity.log"
        handler = add_file_handler(logger, log_file)
        try:
            logger.info("-> nodeA  (https://x/nodeA.git)")
            handler.flush()
        finally:
            logger.removeHandler(handler)
            handler.close()

        text = log_file.read_text()
        assert "[comfy_provision_test] [INFO] -> nodeA" in text

    def test_setup_logger_replaces_handlers(self):
        logger = setup_logger("comfy_provision_test2")
        setup_logger("comfy_provision_test2")

        assert len(logger.handlers) == 1
