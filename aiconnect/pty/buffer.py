"""Bounded output buffer for PTY sessions."""


class OutputBuffer:
    """Ring buffer of the most recent raw bytes a child has written.

    Holds at most ``limit`` bytes; older output is dropped from the front as
    new output arrives. Used to repaint the screen when a human reattaches
    and to look for the tool's prompt in the last few hundred bytes.
    """

    def __init__(self, limit: int = 100 * 1024) -> None:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        self._limit = limit
        self._data = bytearray()
        self._total_bytes = 0

    def append(self, data: bytes) -> None:
        self._data.extend(data)
        self._total_bytes += len(data)
        overflow = len(self._data) - self._limit
        if overflow > 0:
            del self._data[:overflow]

    def tail(self, n: int) -> bytes:
        """Return the last ``n`` bytes (or everything, if fewer are held)."""
        if n <= 0:
            return b""
        return bytes(self._data[-n:])

    def snapshot(self) -> bytes:
        return bytes(self._data)

    def clear(self) -> None:
        self._data.clear()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def total_bytes(self) -> int:
        """Total bytes ever appended, including those since dropped."""
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._data)
