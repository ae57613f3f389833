"""Child process execution with per-command logs, deadlines and cancellation."""

import os
import shlex
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from comfy_provision.domain.models import CommandResult
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

POLL_INTERVAL = 0.2
TERMINATE_GRACE = 10.0


def format_command(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in cmd)


def _stop(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def run_logged(
    cmd: Sequence[str],
    log_path: Path,
    timeout: Optional[float] = None,
    cancel: Optional[CancellationToken] = None,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    append: bool = False,
) -> CommandResult:
    """
    Run ``cmd`` with stdout and stderr written to ``log_path``.

    The child is polled so a deadline or a cancellation can stop it. A missing
    executable is reported like any other failure (returncode 127) rather
    than raised, so callers only need to inspect the result.

    Args:
        cmd: Command and arguments
        log_path: File receiving the combined output
        timeout: Seconds before the child is terminated (None = no limit)
        cancel: Token that terminates the child when triggered
        cwd: Working directory
        env: Extra environment variables layered over os.environ
        append: Append to ``log_path`` instead of truncating it

    Returns:
        CommandResult describing how the child ended
    """
    cmd = [str(part) for part in cmd]
    log_path.parent.mkdir(parents=True, exist_ok=True)
    child_env = dict(os.environ)
    if env:
        child_env.update(env)

    started = time.monotonic()
    with open(log_path, "a" if append else "w", encoding="utf-8") as log:
        log.write(f"$ {format_command(cmd)}\n")
        log.write(f"# started {datetime.now().isoformat(timespec='seconds')}\n")
        log.flush()

        if cancel is not None and cancel.cancelled:
            log.write("# not started: run cancelled\n")
            return CommandResult(returncode=None, cancelled=True)

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=log,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(cwd) if cwd else None,
                env=child_env,
            )
        except OSError as e:
            log.write(f"# failed to start: {e}\n")
            logger.debug(f"Failed to start {cmd[0]}: {e}")
            return CommandResult(returncode=127, duration_seconds=time.monotonic() - started)

        timed_out = False
        cancelled = False
        while True:
            try:
                proc.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.cancelled:
                cancelled = True
                _stop(proc)
                break
            if timeout is not None and time.monotonic() - started > timeout:
                timed_out = True
                _stop(proc)
                break

        duration = time.monotonic() - started
        if timed_out:
            log.write(f"\n# terminated: exceeded timeout of {timeout}s\n")
        elif cancelled:
            log.write("\n# terminated: run cancelled\n")
        log.write(f"# exit code {proc.returncode} after {duration:.1f}s\n")

    return CommandResult(
        returncode=proc.returncode,
        duration_seconds=duration,
        timed_out=timed_out,
        cancelled=cancelled,
    )


def run_capture(cmd: List[str], cwd: Optional[Path] = None, timeout: Optional[float] = 30) -> Optional[str]:
    """Run a short query command and return its stripped stdout, or None on failure."""
    try:
        completed = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            cwd=str(cwd) if cwd else None,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip()
