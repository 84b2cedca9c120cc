"""OpenCode adapter (``opencode run --format json``, one event per line)."""

from __future__ import annotations

import os

from taskloop.engines.base import EngineBase, EngineResult, as_int, json_lines


class OpenCodeEngine(EngineBase):
    name = "opencode"
    executable = "opencode"
    install_hint = "Install from https://opencode.ai/docs/"
    default_model = "opencode/minimax-m2.1-free"

    def build_cmd(self, prompt: str) -> list[str]:
        cmd = [self.resolved_executable(), "run", "--format", "json"]
        if self.model:
            cmd += ["--model", self.model]
        cmd.append(prompt)
        return cmd

    def env(self) -> dict[str, str] | None:
        # Non-interactive: every tool call is pre-approved.
        env = os.environ.copy()
        env["OPENCODE_PERMISSION"] = '{"*":"allow"}'
        return env

    def parse_output(self, raw: str) -> EngineResult:
        result = EngineResult()
        parts: list[str] = []
        for obj in json_lines(raw):
            part = obj.get("part") or {}
            if obj.get("type") == "step_finish":
                tokens = part.get("tokens") or {}
                result.input_tokens += as_int(tokens.get("input"))
                result.output_tokens += as_int(tokens.get("output"))
            elif obj.get("type") == "text" and part.get("text"):
                parts.append(str(part["text"]))
        result.text = "".join(parts)
        return result
