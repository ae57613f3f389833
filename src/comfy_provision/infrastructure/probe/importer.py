"""Import-time reachability checks for custom node packages."""

import json
import sys
from pathlib import Path
from typing import List, Optional

from comfy_provision.domain.models import ProbeResult
from comfy_provision.infrastructure.process import run_logged
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

MAX_CANDIDATES = 50
CUSTOM_NODES_PACKAGE = "custom_nodes"
CORE_MODULE = "nodes"
# Plugin logs are import_<dir>.log; the core probe must not share that namespace
CORE_PROBE_LOG = "host_import_nodes.log"
RESULT_MARKER = "@@import-probe@@"

# Runs in a fresh interpreter: argv = [app_root, module, module, ...].
# Stops at the first module that imports and reports one marker line.
PROBE_SCRIPT = """
import json, sys, traceback
root = sys.argv[1]
sys.path.insert(0, root)
result = {"ok": False, "module": None, "error": None, "tried": 0}
for mod in sys.argv[2:]:
    result["tried"] += 1
    try:
        __import__(mod)
    except (Exception, SystemExit) as e:
        traceback.print_exc()
        result["error"] = "%s: %s" % (type(e).__name__, e)
        continue
    result["ok"] = True
    result["module"] = mod
    result["error"] = None
    break
sys.stdout.flush()
print("\\n" + MARKER + " " + json.dumps(result))
sys.stdout.flush()
""".replace("MARKER", repr(RESULT_MARKER))


def import_candidates(plugin_dir: Path, limit: int = MAX_CANDIDATES) -> List[str]:
    """
    Module names to try for one plugin directory, in order.

    A package initializer wins; otherwise every top-level script, sorted by
    file name. The list is capped at ``limit``.
    """
    package = f"{CUSTOM_NODES_PACKAGE}.{plugin_dir.name}"
    if (plugin_dir / "__init__.py").is_file():
        return [package]
    scripts = sorted(p for p in plugin_dir.glob("*.py") if p.is_file())
    return [f"{package}.{p.stem}" for p in scripts[:limit]]


def parse_probe_output(text: str) -> Optional[dict]:
    """Last result marker printed by the probe child, if any."""
    for line in reversed(text.splitlines()):
        if line.startswith(RESULT_MARKER):
            try:
                return json.loads(line[len(RESULT_MARKER):].strip())
            except ValueError:
                return None
    return None


class SubprocessImportProber:
    """
    Imports each plugin in its own interpreter so a crashing or hanging
    plugin cannot take the run down with it.
    Implements IImportProber protocol.
    """

    def __init__(
        self,
        log_dir: Path,
        python: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
        max_candidates: int = MAX_CANDIDATES,
    ):
        self.log_dir = log_dir
        self.python = python or sys.executable
        self.timeout = timeout
        self.cancel = cancel
        self.max_candidates = max_candidates
        self._logger = get_logger(__name__)

    def probe_core(self, app_root: Path) -> ProbeResult:
        return self._run(app_root, "ComfyUI", [CORE_MODULE], self.log_dir / CORE_PROBE_LOG)

    def probe(self, app_root: Path, plugin_dir: Path) -> ProbeResult:
        candidates = import_candidates(plugin_dir, self.max_candidates)
        if not candidates:
            return ProbeResult(name=plugin_dir.name, ok=False, error="no importable python files")
        return self._run(app_root, plugin_dir.name, candidates, self.log_dir / f"import_{plugin_dir.name}.log")

    def _run(self, app_root: Path, name: str, modules: List[str], log_path: Path) -> ProbeResult:
        result = run_logged(
            [self.python, "-c", PROBE_SCRIPT, str(app_root)] + modules,
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
            cwd=app_root,
        )

        if result.timed_out or result.cancelled:
            return ProbeResult(name=name, ok=False, error=f"probe {result.describe()}")

        report = parse_probe_output(log_path.read_text(encoding="utf-8", errors="replace"))
        if report is None:
            return ProbeResult(name=name, ok=False, error=f"probe produced no result ({result.describe()})")

        return ProbeResult(
            name=name,
            ok=bool(report.get("ok")),
            module=report.get("module"),
            error=report.get("error"),
            candidates_tried=int(report.get("tried", 0)),
        )
