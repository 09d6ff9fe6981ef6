"""Detach-key recognition for attach mode.

Terminals disagree on how Ctrl+] and friends reach us: legacy terminals send
a single control byte, terminals with the kitty keyboard protocol enabled
send a CSI-u sequence, and some send nothing usable at all. Double Escape
works everywhere as a fallback.
"""

import time
from typing import Callable, Optional

ESC = 0x1B
DOUBLE_ESCAPE = b"\x1b\x1b"

# Ctrl+], Ctrl+\, Ctrl+^, Ctrl+_
DETACH_BYTES = frozenset({0x1D, 0x1C, 0x1E, 0x1F})

# CSI <codepoint>;<modifiers> u
DETACH_SEQUENCES = (
    b"\x1b[93;5u",  # Ctrl+]
    b"\x1b[92;5u",  # Ctrl+\
    b"\x1b[54;5u",  # Ctrl+6
    b"\x1b[45;5u",  # Ctrl+-
    b"\x1b[54;6u",  # Ctrl+Shift+6 (Ctrl+^)
    b"\x1b[45;6u",  # Ctrl+Shift+- (Ctrl+_)
)

FOCUS_IN = b"\x1b[I"
FOCUS_OUT = b"\x1b[O"


def strip_focus_reports(data: bytes) -> bytes:
    """Remove terminal focus-in/focus-out reports from a chunk."""
    return data.replace(FOCUS_IN, b"").replace(FOCUS_OUT, b"")


def find_detach_signal(data: bytes) -> Optional[int]:
    """Index of the earliest in-chunk detach signal, or None."""
    positions = [i for i, byte in enumerate(data) if byte in DETACH_BYTES][:1]
    for sequence in DETACH_SEQUENCES + (DOUBLE_ESCAPE,):
        index = data.find(sequence)
        if index != -1:
            positions.append(index)
    return min(positions) if positions else None


class DetachDetector:
    """Stateful scanner for detach keystrokes in raw stdin chunks.

    A lone Escape chunk is forwarded (tools use it to cancel) but remembered;
    a second lone Escape within ``double_escape_window`` seconds detaches.
    """

    def __init__(
        self,
        double_escape_window: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.double_escape_window = double_escape_window
        self._clock = clock
        self._last_escape: Optional[float] = None

    def feed(self, data: bytes) -> tuple[bytes, bool]:
        """Scan one chunk.

        Returns:
            (bytes to forward to the child, whether detach was requested).
            On detach only the bytes before the signal are returned.
        """
        index = find_detach_signal(data)
        if index is not None:
            self._last_escape = None
            return data[:index], True

        if data == bytes([ESC]):
            now = self._clock()
            if self._last_escape is not None and now - self._last_escape < self.double_escape_window:
                self._last_escape = None
                return b"", True
            self._last_escape = now
        else:
            self._last_escape = None
        return data, False

    def reset(self) -> None:
        self._last_escape = None
