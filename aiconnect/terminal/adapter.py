"""Local terminal access: raw mode, resize notification and line input."""

import asyncio
import os
import signal
import sys
import termios
import tty
from typing import Callable, Optional, TextIO

from loguru import logger

SHOW_CURSOR = b"\x1b[?25h"
# Focus reporting, bracketed paste, kitty keyboard protocol
DISABLE_ENHANCEMENTS = b"\x1b[?1004l\x1b[?2004l\x1b[>0u"

ResizeCallback = Callable[[int, int], None]


class TerminalAdapter:
    """Owns the real controlling terminal.

    When stdin is not a TTY every raw-mode call is a no-op and
    ``is_interactive`` is False; callers degrade instead of failing.
    """

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._saved_attrs: Optional[list] = None
        self._raw = False
        self._reader_loop: Optional[asyncio.AbstractEventLoop] = None
        self._line_buffer = bytearray()

    @property
    def is_interactive(self) -> bool:
        try:
            return self._stdin.isatty() and self._stdout.isatty()
        except (AttributeError, ValueError):
            return False

    @property
    def is_raw(self) -> bool:
        return self._raw

    def set_raw(self, enabled: bool) -> None:
        """Switch stdin between raw and its previous (cooked) mode."""
        if not self.is_interactive:
            return
        fd = self._stdin.fileno()
        if enabled and not self._raw:
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setraw(fd)
            self._raw = True
        elif not enabled and self._raw:
            if self._saved_attrs is not None:
                termios.tcsetattr(fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
            self._raw = False

    def write(self, data: bytes) -> None:
        out = getattr(self._stdout, "buffer", None)
        if out is None:
            self._stdout.write(data.decode("utf-8", errors="replace"))
            self._stdout.flush()
            return
        out.write(data)
        out.flush()

    def write_text(self, text: str) -> None:
        self.write(text.encode("utf-8"))

    def restore_cursor(self) -> None:
        self.write(SHOW_CURSOR)

    def disable_enhancements(self) -> None:
        self.write(DISABLE_ENHANCEMENTS)

    def size(self) -> tuple[int, int]:
        """Current (rows, cols), falling back to 24x80."""
        try:
            cols, rows = os.get_terminal_size(self._stdout.fileno())
        except (AttributeError, ValueError, OSError):
            return 24, 80
        return rows, cols

    def on_resize(self, callback: ResizeCallback) -> Callable[[], None]:
        """Call ``callback(rows, cols)`` on SIGWINCH. Returns an unsubscribe function."""
        loop = asyncio.get_running_loop()

        def handle_winch() -> None:
            rows, cols = self.size()
            callback(rows, cols)

        try:
            loop.add_signal_handler(signal.SIGWINCH, handle_winch)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug(f"Resize notifications unavailable: {e}")
            return lambda: None

        def unsubscribe() -> None:
            loop.remove_signal_handler(signal.SIGWINCH)

        return unsubscribe

    def add_input_reader(self, callback: Callable[[bytes], None]) -> None:
        """Deliver raw stdin chunks to ``callback`` as they arrive; b"" means EOF."""
        loop = asyncio.get_running_loop()
        fd = self._stdin.fileno()

        def on_readable() -> None:
            try:
                data = os.read(fd, 4096)
            except OSError as e:
                logger.warning(f"stdin read failed: {e}")
                data = b""
            callback(data)

        loop.add_reader(fd, on_readable)
        self._reader_loop = loop

    def remove_input_reader(self) -> None:
        if self._reader_loop is not None:
            self._reader_loop.remove_reader(self._stdin.fileno())
            self._reader_loop = None

    async def read_line(self, prompt: str = "") -> Optional[str]:
        """Read one line from stdin without blocking the event loop.

        Returns None at end of input.
        """
        if prompt:
            self.write_text(prompt)
        while b"\n" not in self._line_buffer:
            chunk = await self._read_chunk()
            if not chunk:
                if not self._line_buffer:
                    return None
                line = bytes(self._line_buffer)
                self._line_buffer.clear()
                return line.decode("utf-8", errors="replace").rstrip("\r")
            self._line_buffer.extend(chunk)

        line, _, rest = bytes(self._line_buffer).partition(b"\n")
        self._line_buffer = bytearray(rest)
        return line.decode("utf-8", errors="replace").rstrip("\r")

    async def _read_chunk(self) -> bytes:
        loop = asyncio.get_running_loop()
        fd = self._stdin.fileno()
        future = loop.create_future()

        def on_readable() -> None:
            loop.remove_reader(fd)
            if future.done():
                return
            try:
                future.set_result(os.read(fd, 4096))
            except OSError as e:
                future.set_exception(e)

        try:
            loop.add_reader(fd, on_readable)
        except PermissionError:
            # Regular files cannot be polled
            return await loop.run_in_executor(None, os.read, fd, 4096)

        try:
            return await future
        finally:
            loop.remove_reader(fd)
