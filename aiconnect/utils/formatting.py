from typing import Iterable, Mapping, Optional

from aiconnect.conversation import ConversationEntry, Role
from aiconnect.pty.types import SessionState, SessionStatus

RESET = "\x1b[0m"
BOLD = "\x1b[1m"
DIM = "\x1b[2m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
RED = "\x1b[31m"


def truncate(text: str, limit: int) -> str:
    """Shorten text to ``limit`` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


def dedupe_lines(text: str) -> str:
    """Drop non-blank lines that repeat the line right before them.

    Tools that redraw while streaming leave the same line behind several times.
    """
    kept: list[str] = []
    for line in text.split("\n"):
        if kept and line.strip() and line.strip() == kept[-1].strip():
            continue
        kept.append(line)
    return "\n".join(kept)


def collapse_blank_lines(text: str) -> str:
    lines = [line if line.strip() else "" for line in text.split("\n")]
    out: list[str] = []
    for line in lines:
        if not line and len(out) >= 2 and not out[-1] and not out[-2]:
            continue
        out.append(line)
    return "\n".join(out).strip()


class TerminalFormatter:
    """Renders control-loop output for an ANSI terminal."""

    HISTORY_PREVIEW = 100

    STATE_LABELS = {
        SessionState.SPAWNING: f"{YELLOW}starting{RESET}",
        SessionState.IDLE: f"{GREEN}running{RESET}",
        SessionState.PROCESSING: f"{YELLOW}processing{RESET}",
        SessionState.ATTACHED: f"{GREEN}attached{RESET}",
        SessionState.DEAD: f"{DIM}stopped{RESET}",
    }

    @classmethod
    def tool_label(cls, display_name: str, color: str = "") -> str:
        return f"{color}{display_name}{RESET}" if color else display_name

    @classmethod
    def history(
        cls,
        entries: Iterable[ConversationEntry],
        display_names: Mapping[str, str],
        colors: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Format the conversation log, one preview line per entry."""
        colors = colors or {}
        lines = []
        for entry in entries:
            if entry.role == Role.USER:
                who = "You"
                arrow = "→"
            else:
                who = cls.tool_label(display_names.get(entry.tool, entry.tool), colors.get(entry.tool, ""))
                arrow = "←"
            preview = truncate(" ".join(entry.content.split()), cls.HISTORY_PREVIEW)
            lines.append(f"{DIM}{arrow}{RESET} {BOLD}{who}{RESET}: {preview}")
        if not lines:
            return f"{DIM}No conversation history yet.{RESET}"
        return "\n".join(lines)

    @classmethod
    def status(cls, statuses: Iterable[SessionStatus], colors: Optional[Mapping[str, str]] = None) -> str:
        colors = colors or {}
        lines = []
        for status in statuses:
            marker = f"{GREEN}●{RESET}" if status.is_active else " "
            label = cls.tool_label(status.display_name, colors.get(status.name, ""))
            parts = [cls.STATE_LABELS[status.state]]
            if status.pid is not None:
                parts.append(f"pid {status.pid}")
            if status.has_history:
                parts.append("has history")
            lines.append(f"{marker} {label} ({status.name}): {', '.join(parts)}")
        return "\n".join(lines)

    @classmethod
    def error(cls, message: str) -> str:
        return f"{RED}✗{RESET} {message}"

    @classmethod
    def notice(cls, message: str) -> str:
        return f"{DIM}{message}{RESET}"
