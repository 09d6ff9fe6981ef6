"""Unit tests for the built-in tool definitions."""

import pytest

from aiconnect.errors import UnknownToolError
from aiconnect.preferences import ToolPreference
from aiconnect.tools import CLAUDE, GEMINI, apply_overrides, build_registry, get_tool, tool_names
from aiconnect.tools import claude, gemini


class TestLookup:
    def test_tool_names(self):
        assert tool_names() == ["claude", "gemini"]

    def test_get_tool_is_case_insensitive(self):
        assert get_tool("Claude") is CLAUDE

    def test_get_unknown_tool(self):
        with pytest.raises(UnknownToolError):
            get_tool("copilot")


class TestSpawnSpecs:
    def test_resume_arguments(self):
        assert CLAUDE.build_args(resume=True) == ["--continue"]
        assert GEMINI.build_args(resume=True) == ["--resume", "latest"]
        assert GEMINI.build_args() == []

    @pytest.mark.parametrize("line", ["> ", ">", "│ > │", "  >  "])
    def test_claude_prompt_pattern(self, line):
        assert CLAUDE.prompt_pattern.search(f"output\n{line}\n")

    def test_claude_prompt_pattern_ignores_quoted_text(self):
        assert not CLAUDE.prompt_pattern.search("> quoted line\n")


class TestClaudeCleanOutput:
    def test_strips_echo_and_chrome(self):
        raw = (
            b"\x1b[1m> what is 2+2\x1b[0m\r\n"
            b"\xe2\x8f\xba 4\r\n\r\n\r\n\r\n"
            b"? for shortcuts\r\n"
            b"> \r\n"
        )
        assert claude.clean_output(raw) == "4"

    def test_removes_box_and_interrupt_hint(self):
        raw = "╭────╮\n│ hello there │\n╰────╯\n(esc to interrupt)\n".encode()
        assert claude.clean_output(raw) == "hello there"


class TestGeminiCleanOutput:
    def test_keeps_text_after_answer_marker(self):
        raw = (
            "Loaded cached credentials.\n"
            "> explain\n"
            "✦ The answer is 42.\n\n"
            "? for shortcuts\n"
            "~/project  no sandbox\n"
        ).encode()
        assert gemini.clean_output(raw) == "The answer is 42."

    def test_redraw_keeps_final_version(self):
        raw = b"Formulating the Response\nold draft\nFormulating the Response\nfinal answer\n"
        assert gemini.clean_output(raw) == "final answer"

    def test_repeated_lines_collapse(self):
        raw = b"same line\r\nsame line\r\nnext\r\n"
        assert gemini.clean_output(raw) == "same line\nnext"


class TestRegistryBuilding:
    def test_apply_overrides(self):
        spec = apply_overrides(CLAUDE, ToolPreference(command="/opt/bin/claude", args=["--verbose"]))

        assert spec.command == "/opt/bin/claude"
        assert spec.args == ["--verbose"]
        assert spec.resume_args == CLAUDE.resume_args
        assert CLAUDE.command == "claude"

    def test_apply_no_override(self):
        assert apply_overrides(GEMINI, None) is GEMINI

    def test_build_registry(self, session_config, process_factory):
        registry = build_registry(
            ["gemini", "claude"],
            config=session_config,
            overrides={"claude": ToolPreference(command="claude-dev")},
            process_factory=process_factory,
        )

        assert registry.names() == ["gemini", "claude"]
        assert registry.active_name == "gemini"
        assert registry.get("claude").spec.command == "claude-dev"

    def test_build_registry_unknown_name(self):
        with pytest.raises(UnknownToolError):
            build_registry(["copilot"])
