"""Claude Code adapter (``claude -p ... --output-format json``)."""

from __future__ import annotations

from taskloop.engines.base import EngineBase, EngineResult, as_int, json_lines


class ClaudeEngine(EngineBase):
    name = "claude"
    executable = "claude"
    install_hint = "Install from https://github.com/anthropics/claude-code"

    def build_cmd(self, prompt: str) -> list[str]:
        cmd = [
            self.resolved_executable(),
            "-p",
            prompt,
            "--output-format",
            "json",
            "--dangerously-skip-permissions",
        ]
        if self.model:
            cmd += ["--model", self.model]
        return cmd

    def parse_output(self, raw: str) -> EngineResult:
        # One result object: {"type": "result", "is_error": ..., "result": ..., "usage": {...}}
        result = EngineResult()
        for obj in json_lines(raw):
            if obj.get("type") != "result":
                continue
            usage = obj.get("usage") or {}
            result.text = str(obj.get("result") or "")
            result.input_tokens = as_int(usage.get("input_tokens"))
            result.output_tokens = as_int(usage.get("output_tokens"))
            result.duration_ms = as_int(obj.get("duration_ms"))
            if obj.get("is_error"):
                result.error = result.text or str(obj.get("subtype") or "error")
        return result
