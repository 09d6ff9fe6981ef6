"""Claude Code tool definition."""

import re

from aiconnect.pty.types import SpawnSpec
from aiconnect.utils.ansi import strip_ansi, strip_box_drawing
from aiconnect.utils.formatting import collapse_blank_lines, dedupe_lines

# Spinner and status glyphs; ⏺ marks the start of each reply block
_STATUS_GLYPHS_RE = re.compile(r"[⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏·✢✳✶✻✽∗⏺⎿]")

_CHROME_PATTERNS = [
    re.compile(r"^\s*\?\s*for shortcuts.*$", re.MULTILINE),
    re.compile(r"\(esc to interrupt[^)]*\)", re.IGNORECASE),
    re.compile(r"\(ctrl\+[a-z] to [^)]*\)", re.IGNORECASE),
    re.compile(r"^\s*\w+…\s*(?:\(.*\))?\s*$", re.MULTILINE),
    re.compile(r"^\s*⏵⏵.*$", re.MULTILINE),
    re.compile(r"^\s*Try \".*\"\s*$", re.MULTILINE),
    re.compile(r"^\s*>\s*$", re.MULTILINE),
]

# Claude draws its input box as "> " between horizontal rules, optionally
# inside a bordered panel.
PROMPT_PATTERN = r"^\s*│?\s*>\s*│?\s*$"


def clean_output(raw: bytes) -> str:
    """Strip Claude Code UI chrome from a captured turn."""
    text = strip_ansi(raw.decode("utf-8", errors="replace"))
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = strip_box_drawing(text)
    for pattern in _CHROME_PATTERNS:
        text = pattern.sub("", text)
    # Echo of the message we typed
    text = re.sub(r"^\s*>\s+.+$", "", text, flags=re.MULTILINE)
    text = _STATUS_GLYPHS_RE.sub("", text)
    return collapse_blank_lines(dedupe_lines(text))


CLAUDE = SpawnSpec(
    name="claude",
    display_name="Claude Code",
    command="claude",
    resume_args=["--continue"],
    prompt_pattern=PROMPT_PATTERN,
    idle_timeout=2.0,
    sanitizer=clean_output,
    color="\x1b[96m",
)
