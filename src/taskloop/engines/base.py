"""Coding-CLI engines: the processes that edit the repository for one phase.

An engine gets an :class:`EngineRequest` (which task, which phase, what to
tell the model), runs its CLI once, and returns an :class:`EngineResult`.
It never judges the work; the agent runs the test command afterwards.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskloop.io_utils import open_text
from taskloop.tasks.model import Phase


@dataclass
class EngineRequest:
    task: str
    phase: Phase
    prompt: str


@dataclass
class EngineResult:
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    error: str = ""
    return_code: int = 0

    @property
    def ok(self) -> bool:
        return self.return_code == 0 and not self.error


def json_lines(raw: str) -> Iterator[dict[str, Any]]:
    """JSON objects printed one per line; anything else is skipped."""
    for line in raw.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def structured_error(raw: str) -> str:
    """First error event in JSON output, or ``""``. Plain text never counts."""
    for obj in json_lines(raw):
        err = obj.get("error")
        if isinstance(err, dict):
            msg = str(err.get("message") or err.get("type") or err.get("code") or "").strip()
            if msg:
                return msg
        elif isinstance(err, str) and err.strip():
            return err.strip()
        if obj.get("type") == "error":
            return str(obj.get("message") or obj.get("text") or "unknown error").strip()
    return ""


class EngineBase(ABC):
    """One coding CLI. Subclasses name the executable and read its output format."""

    name: str = "base"
    executable: str = ""
    install_hint: str = ""
    default_model: str = ""

    def __init__(self, model: str = "") -> None:
        self.model = model or self.default_model

    @abstractmethod
    def build_cmd(self, prompt: str) -> list[str]:
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> EngineResult:
        ...

    def resolved_executable(self) -> str:
        # The child may see a different PATH (pipx shims), so pass the full path.
        return shutil.which(self.executable) or self.executable

    def check_available(self) -> str | None:
        if shutil.which(self.executable):
            return None
        return f"{self.executable} not found in PATH. {self.install_hint}".strip()

    def env(self) -> dict[str, str] | None:
        """Environment for the engine process; ``None`` inherits ours."""
        return None

    def run(
        self,
        request: EngineRequest,
        *,
        cwd: Path | None = None,
        log_file: Path | None = None,
        timeout: int | None = None,
    ) -> EngineResult:
        """Run the CLI once for *request*.

        Launch failures and timeouts come back as ``EngineResult.error``.
        On Ctrl-C the child is killed and ``KeyboardInterrupt`` propagates.
        """
        start = time.monotonic()
        try:
            proc = subprocess.run(
                self.build_cmd(request.prompt),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=self.env(),
                timeout=timeout,
            )
        except FileNotFoundError:
            result = EngineResult(error=f"{self.executable} not found", return_code=-1)
            stderr = ""
        except OSError as e:
            result = EngineResult(error=f"{self.executable}: {e.strerror or e}", return_code=-1)
            stderr = ""
        except subprocess.TimeoutExpired:
            result = EngineResult(error=f"timeout after {timeout}s", return_code=-1)
            stderr = ""
        else:
            result = self._read_result(proc)
            stderr = proc.stderr or ""

        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - start) * 1000)
        if log_file:
            self._append_log(log_file, request, result, stderr)
        return result

    def _read_result(self, proc: subprocess.CompletedProcess[str]) -> EngineResult:
        stdout = proc.stdout or ""
        result = self.parse_output(stdout)
        result.return_code = proc.returncode
        if not result.error:
            result.error = structured_error(stdout)
        if proc.returncode != 0 and not result.error:
            # Argument and auth problems often show up only on stderr.
            lines = (proc.stderr or "").strip().splitlines()
            result.error = lines[0] if lines else f"exit code {proc.returncode}"
        return result

    def _append_log(self, log_file: Path, request: EngineRequest, result: EngineResult, stderr: str) -> None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open_text(log_file, "a") as f:
            f.write(
                f"=== {self.name} task {request.task} -> {request.phase.value}: "
                f"exit {result.return_code}, {result.duration_ms} ms, "
                f"tokens {result.input_tokens}/{result.output_tokens}\n"
            )
            if stderr:
                f.write(stderr if stderr.endswith("\n") else stderr + "\n")
            if result.error:
                f.write(f"error: {result.error}\n")
