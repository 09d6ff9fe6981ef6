"""Helpers for working with raw terminal output."""

import re

# CSI / two-character escape sequences
ANSI_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# Operating system commands (window titles, hyperlinks), BEL or ST terminated
OSC_RE = re.compile(r"\x1B\][^\x07\x1B]*(?:\x07|\x1B\\)")

# Sequences that carry no text: CSI, DEC private mode toggles, cursor style
_CONTROL_ONLY_RE = re.compile(r"\x1B\[[0-9;]*[a-zA-Z]|\x1B\[\?\d+[hl]|\x1B\[\d* ?q")

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
_SPINNER_RE = re.compile(f"[{SPINNER_FRAMES}]")

SCREEN_CLEAR = b"\x1b[2J"


def strip_ansi(text: str) -> str:
    """Remove escape sequences from text, keeping printable content."""
    return ANSI_RE.sub("", OSC_RE.sub("", text))


def has_real_content(chunk: str) -> bool:
    """Return True if a chunk of output carries something besides terminal noise.

    Spinner frames, cursor and mode changes, and carriage returns are all
    redrawn continuously by busy tools and must not count as activity.
    """
    stripped = _CONTROL_ONLY_RE.sub("", chunk)
    stripped = OSC_RE.sub("", stripped)
    stripped = _SPINNER_RE.sub("", stripped)
    stripped = stripped.replace("\r", "")
    return bool(stripped.strip())


def contains_screen_clear(data: bytes) -> bool:
    return SCREEN_CLEAR in data


def plain_text(raw: bytes) -> str:
    """Fallback output sanitizer: decode and drop escape sequences."""
    text = strip_ansi(raw.decode("utf-8", errors="replace"))
    return text.replace("\r\n", "\n").replace("\r", "").strip()


_BOX_DRAWING_RE = re.compile(r"[╭╮╰╯│─┌┐└┘├┤┬┴┼║═╔╗╚╝╠╣╦╩╬]")


def strip_box_drawing(text: str) -> str:
    """Remove the box-drawing characters TUIs use to frame their panels."""
    return _BOX_DRAWING_RE.sub("", text)
