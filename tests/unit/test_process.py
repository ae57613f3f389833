"""Tests for child process execution."""

import sys
import threading

from comfy_provision.infrastructure.process import format_command, run_capture, run_logged
from comfy_provision.shared.cancellation import CancellationToken


def test_format_command_quotes():
    assert format_command(["git", "clone", "a b"]) == "git clone 'a b'"


def test_run_logged_success(tmp_path):
    log = tmp_path / "logs" / "ok.log"

    result = run_logged([sys.executable, "-c", "print('hello from child')"], log)

    assert result.success
    assert result.returncode == 0
    text = log.read_text()
    assert text.startswith("$ ")
    assert "hello from child" in text
    assert "# exit code 0" in text


def test_run_logged_captures_stderr_and_failure(tmp_path):
    log = tmp_path / "fail.log"

    result = run_logged(
        [sys.executable, "-c", "import sys; sys.stderr.write('boom\\n'); sys.exit(3)"], log
    )

    assert not result.success
    assert result.returncode == 3
    assert result.describe() == "exit code 3"
    assert "boom" in log.read_text()


def test_run_logged_env_and_cwd(tmp_path):
    log = tmp_path / "env.log"

    run_logged(
        [sys.executable, "-c", "import os; print(os.environ['PROBE_VALUE'], os.getcwd())"],
        log,
        cwd=tmp_path,
        env={"PROBE_VALUE": "xyz"},
    )

    assert f"xyz {tmp_path}" in log.read_text()


def test_run_logged_append(tmp_path):
    log = tmp_path / "append.log"
    log.write_text("earlier\n")

    run_logged([sys.executable, "-c", "pass"], log, append=True)

    assert log.read_text().startswith("earlier\n")


def test_run_logged_timeout(tmp_path):
    log = tmp_path / "slow.log"

    result = run_logged([sys.executable, "-c", "import time; time.sleep(30)"], log, timeout=0.5)

    assert result.timed_out
    assert not result.success
    assert result.duration_seconds < 20
    assert "exceeded timeout" in log.read_text()


def test_run_logged_missing_executable(tmp_path):
    log = tmp_path / "missing.log"

    result = run_logged(["definitely-not-a-real-binary-xyz"], log)

    assert result.returncode == 127
    assert not result.success
    assert "failed to start" in log.read_text()


def test_run_logged_already_cancelled(tmp_path):
    token = CancellationToken()
    token.cancel()

    result = run_logged([sys.executable, "-c", "pass"], tmp_path / "c.log", cancel=token)

    assert result.cancelled
    assert result.returncode is None


def test_run_logged_cancel_terminates_child(tmp_path):
    token = CancellationToken()
    timer = threading.Timer(0.5, token.cancel, args=("received SIGTERM",))
    timer.start()
    try:
        result = run_logged(
            [sys.executable, "-c", "import time; time.sleep(30)"], tmp_path / "c.log", cancel=token
        )
    finally:
        timer.cancel()

    assert result.cancelled
    assert result.describe() == "cancelled"
    assert "run cancelled" in (tmp_path / "c.log").read_text()


def test_run_capture(tmp_path):
    assert run_capture([sys.executable, "-c", "print('  abc  ')"]) == "abc"
    assert run_capture([sys.executable, "-c", "import sys; sys.exit(1)"]) is None
    assert run_capture(["definitely-not-a-real-binary-xyz"]) is None
