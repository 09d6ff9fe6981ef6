"""Gemini CLI tool definition."""

import re

from aiconnect.pty.types import SpawnSpec
from aiconnect.utils.ansi import strip_ansi, strip_box_drawing
from aiconnect.utils.formatting import collapse_blank_lines, dedupe_lines

_STATUS_GLYPHS_RE = re.compile(r"[⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏·✢✳✶✻✽∴⏺]")

# Footer, hint and status lines the Gemini TUI draws around the answer
_CHROME_PATTERNS = [
    re.compile(r"Loaded cached credentials\.?\s*"),
    re.compile(r"^\s*Using:.*MCP servers?\s*$", re.MULTILINE),
    re.compile(r"^\s*~/[^\n]*$", re.MULTILINE),
    re.compile(r"^\s*no sandbox.*$", re.MULTILINE | re.IGNORECASE),
    re.compile(r"^\s*auto\s*$", re.MULTILINE),
    re.compile(r"^\s*Reading.*\(esc to cancel.*\)\s*$", re.MULTILINE),
    re.compile(r"^\s*>?\s*Type your message.*$", re.MULTILINE),
    re.compile(r"^\s*\?\s*for shortcuts\s*$", re.MULTILINE),
    re.compile(r'^\s*Try ".*"\s*$', re.MULTILINE),
    re.compile(r"^\s*Thought for.*$", re.MULTILINE),
    re.compile(r"^\s*Incubating.*$", re.MULTILINE),
    re.compile(r"\(ctrl\+o to show thinking\)", re.IGNORECASE),
    re.compile(r"\(esc to (?:interrupt|cancel)[^)]*\)", re.IGNORECASE),
    re.compile(r"^\s*[✓✗]\s+\w+.*$", re.MULTILINE),
    re.compile(r"^>\s*$", re.MULTILINE),
    re.compile(r"\.\.\.\s*generating more\s*\.\.\.", re.IGNORECASE),
]

# Gemini redraws its answer from the top after each of these headings, so
# only the text after the last one is the final answer.
_REDRAW_HEADINGS = [
    re.compile(r"Defining the Response Strategy", re.IGNORECASE),
    re.compile(r"Formulating\s+\w+\s+(?:Code|Response)", re.IGNORECASE),
    re.compile(r"Considering\s+the\s+Response\s+Format", re.IGNORECASE),
    re.compile(r"Presenting\s+the\s+(?:Code|Response)", re.IGNORECASE),
    re.compile(r"Providing\s+\w+\s+Code\s+Example", re.IGNORECASE),
    re.compile(r"Generating\s+\w+\s+Code", re.IGNORECASE),
    re.compile(r"Writing\s+the\s+Code", re.IGNORECASE),
]

ANSWER_MARKER = "✦"


def _after_last_redraw(text: str) -> str:
    last_end = 0
    for pattern in _REDRAW_HEADINGS:
        for match in pattern.finditer(text):
            last_end = max(last_end, match.end())
    if last_end:
        return text[last_end:]
    marker = text.rfind(ANSWER_MARKER)
    if marker >= 0:
        return text[marker + 1 :]
    return text


def clean_output(raw: bytes) -> str:
    """Strip Gemini CLI UI chrome from a captured turn."""
    text = strip_ansi(raw.decode("utf-8", errors="replace"))
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    for pattern in _CHROME_PATTERNS:
        text = pattern.sub("", text)
    text = _after_last_redraw(text)
    text = _STATUS_GLYPHS_RE.sub("", text)
    text = strip_box_drawing(text)
    # Echo of the message we typed
    text = re.sub(r"^>\s+.+$", "", text, flags=re.MULTILINE)
    return collapse_blank_lines(dedupe_lines(text))


GEMINI = SpawnSpec(
    name="gemini",
    display_name="Gemini CLI",
    command="gemini",
    resume_args=["--resume", "latest"],
    prompt_pattern=r"^>\s*$",
    idle_timeout=1.5,
    sanitizer=clean_output,
    color="\x1b[95m",
)
