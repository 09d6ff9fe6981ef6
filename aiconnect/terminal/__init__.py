"""Local terminal handling and attach mode."""

from .adapter import TerminalAdapter
from .keys import DetachDetector, strip_focus_reports
from .multiplexer import AttachMultiplexer, AttachResult

__all__ = [
    "AttachMultiplexer",
    "AttachResult",
    "DetachDetector",
    "TerminalAdapter",
    "strip_focus_reports",
]
