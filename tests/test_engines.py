"""Tests for engine adapters and registry."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from taskloop.engines.base import EngineRequest, EngineResult, structured_error
from taskloop.engines.claude import ClaudeEngine
from taskloop.engines.opencode import OpenCodeEngine
from taskloop.engines.registry import ENGINE_NAMES, get_engine
from taskloop.tasks.model import Phase

REQUEST = EngineRequest("1.2", Phase.TESTS_WRITTEN, "write the tests")


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["engine"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestEngineRegistry:
    @pytest.mark.parametrize(
        ("name", "expected_cls"),
        [
            ("claude", ClaudeEngine),
            ("opencode", OpenCodeEngine),
        ],
    )
    def test_get_engine_returns_expected_adapter(self, name: str, expected_cls: type) -> None:
        assert isinstance(get_engine(name), expected_cls)

    def test_engine_names(self) -> None:
        assert set(ENGINE_NAMES) == {"claude", "opencode"}

    def test_model_override(self) -> None:
        assert get_engine("opencode", model="opencode/other").model == "opencode/other"
        assert get_engine("claude", model="sonnet").model == "sonnet"

    def test_default_models(self) -> None:
        assert get_engine("opencode").model == "opencode/minimax-m2.1-free"
        assert get_engine("claude").model == ""

    def test_unknown_engine_raises(self) -> None:
        with pytest.raises(ValueError, match="claude, opencode"):
            get_engine("unknown-provider")


class TestStructuredError:
    def test_error_object(self) -> None:
        raw = '{"type":"step"}\n{"error":{"type":"rate_limit_error","message":"429 Too Many Requests"}}'
        assert structured_error(raw) == "429 Too Many Requests"

    def test_error_event(self) -> None:
        assert structured_error('{"type":"error","text":"model overloaded"}') == "model overloaded"

    def test_plain_text_mentioning_error_is_ignored(self) -> None:
        assert structured_error("fixed the error in login.py\n{not json") == ""


class TestClaudeEngine:
    def test_build_cmd(self) -> None:
        with patch("taskloop.engines.base.shutil.which", return_value="/usr/bin/claude"):
            cmd = ClaudeEngine(model="sonnet").build_cmd("hello")

        assert cmd[0] == "/usr/bin/claude"
        assert cmd[cmd.index("-p") + 1] == "hello"
        assert cmd[cmd.index("--output-format") + 1] == "json"
        assert cmd[cmd.index("--model") + 1] == "sonnet"

    def test_build_cmd_without_model(self) -> None:
        assert "--model" not in ClaudeEngine().build_cmd("hello")

    def test_parse_output_extracts_result_and_usage(self) -> None:
        raw = (
            '{"type":"result","subtype":"success","is_error":false,"result":"done",'
            '"duration_ms":1500,"usage":{"input_tokens":12,"output_tokens":7}}'
        )
        result = ClaudeEngine().parse_output(raw)

        assert result.text == "done"
        assert (result.input_tokens, result.output_tokens) == (12, 7)
        assert result.duration_ms == 1500
        assert result.error == ""

    def test_parse_output_error_result(self) -> None:
        raw = '{"type":"result","subtype":"error_max_turns","is_error":true,"usage":{}}'
        assert ClaudeEngine().parse_output(raw).error == "error_max_turns"

    def test_run_surfaces_first_stderr_line_when_process_fails(self) -> None:
        completed = _completed(stderr="Invalid API key\nmore details", returncode=2)
        with patch("taskloop.engines.base.subprocess.run", return_value=completed):
            result = ClaudeEngine().run(REQUEST)

        assert result.return_code == 2
        assert result.error == "Invalid API key"

    def test_run_detects_structured_error(self) -> None:
        completed = _completed(stdout='{"type":"error","message":"429 Too Many Requests"}')
        with patch("taskloop.engines.base.subprocess.run", return_value=completed):
            result = ClaudeEngine().run(REQUEST)

        assert result.error == "429 Too Many Requests"
        assert not result.ok

    def test_run_logs_phase_header_and_stderr(self, tmp_path: Path) -> None:
        completed = _completed(
            stdout='{"type":"result","result":"ok","usage":{"input_tokens":3,"output_tokens":1}}',
            stderr="warning: slow\n",
        )
        log_file = tmp_path / "logs" / "agent.log"

        with patch("taskloop.engines.base.subprocess.run", return_value=completed):
            result = ClaudeEngine().run(REQUEST, log_file=log_file)

        assert result.ok
        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert lines[0].startswith("=== claude task 1.2 -> tests-written: exit 0,")
        assert lines[0].endswith("tokens 3/1")
        assert lines[1] == "warning: slow"

    def test_run_missing_binary(self) -> None:
        with patch("taskloop.engines.base.subprocess.run", side_effect=FileNotFoundError):
            result = ClaudeEngine().run(REQUEST)
        assert result.return_code == -1
        assert result.error == "claude not found"

    def test_run_binary_not_executable(self) -> None:
        with patch("taskloop.engines.base.subprocess.run", side_effect=PermissionError(13, "Permission denied")):
            result = ClaudeEngine().run(REQUEST)
        assert result.error == "claude: Permission denied"

    def test_run_timeout(self) -> None:
        with patch(
            "taskloop.engines.base.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["claude"], 5),
        ):
            result = ClaudeEngine().run(REQUEST, timeout=5)
        assert result.error == "timeout after 5s"

    def test_run_keyboard_interrupt_propagates(self) -> None:
        with patch("taskloop.engines.base.subprocess.run", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                ClaudeEngine().run(REQUEST)

    def test_check_available_reports_missing_binary(self) -> None:
        with patch("taskloop.engines.base.shutil.which", return_value=None):
            message = ClaudeEngine().check_available()
        assert message is not None
        assert message.startswith("claude not found in PATH")


class TestOpenCodeEngine:
    def test_build_cmd_includes_model_and_resolved_binary(self) -> None:
        with patch("taskloop.engines.base.shutil.which", return_value="/usr/bin/opencode"):
            cmd = OpenCodeEngine(model="opencode/my-model").build_cmd("hello")

        assert cmd[:4] == ["/usr/bin/opencode", "run", "--format", "json"]
        assert cmd[cmd.index("--model") + 1] == "opencode/my-model"
        assert cmd[-1] == "hello"

    def test_parse_output_extracts_text_and_tokens(self) -> None:
        raw = "\n".join(
            [
                '{"type":"text","part":{"text":"hello "}}',
                '{"type":"text","part":{"text":"world"}}',
                '{"type":"step_finish","part":{"tokens":{"input":3,"output":4}}}',
                '{"type":"step_finish","part":{"tokens":{"input":1,"output":"x"}}}',
            ]
        )
        result = OpenCodeEngine().parse_output(raw)

        assert result.text == "hello world"
        assert result.input_tokens == 4
        assert result.output_tokens == 4

    def test_run_sets_permission_env_var(self, tmp_path: Path) -> None:
        completed = _completed(stdout='{"type":"text","part":{"text":"ok"}}')

        with patch("taskloop.engines.base.subprocess.run", return_value=completed) as mock_run:
            result = OpenCodeEngine().run(REQUEST, cwd=tmp_path)

        called_env = mock_run.call_args.kwargs.get("env") or {}
        assert called_env.get("OPENCODE_PERMISSION") == '{"*":"allow"}'
        assert mock_run.call_args.kwargs.get("cwd") == tmp_path
        assert result.ok
        assert result.text == "ok"
