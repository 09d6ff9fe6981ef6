"""Error types raised by the session engine and forwarding layer.

Every error carries a message meant to be shown to the operator as a single
line. The control loop catches ``AICError`` and keeps accepting input.
"""

from typing import Optional, Sequence


class AICError(Exception):
    """Base class for all aiconnect errors."""


class SpawnFailureError(AICError):
    """The tool executable could not be started."""

    def __init__(self, tool: str, command: str, reason: str = "") -> None:
        self.tool = tool
        self.command = command
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to start {tool} ({command}){detail}")


class CaptureTimeoutError(AICError):
    """The overall response bound was exceeded."""

    def __init__(self, tool: str, timeout: float) -> None:
        self.tool = tool
        self.timeout = timeout
        super().__init__(f"{tool}: response timeout after {timeout:g} seconds")


class ProcessExitedError(AICError):
    """The child process exited while a caller was waiting on it."""

    def __init__(self, tool: str, exit_code: Optional[int]) -> None:
        self.tool = tool
        self.exit_code = exit_code
        super().__init__(f"{tool} exited with code {exit_code}")


class SessionBusyError(AICError):
    """A response capture is already in flight for this session."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"{tool} is busy processing a previous request")


class SendWhileAttachedError(AICError):
    """Structured sends are refused while a human is attached."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(
            f"Cannot send to {tool} while attached, use attach-mode input instead"
        )


class CaptureCancelledError(AICError):
    """The in-flight turn was interrupted by the operator."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"{tool}: request cancelled")


class AttachUnsupportedError(AICError):
    """Attach needs an interactive terminal on stdin."""

    def __init__(self) -> None:
        super().__init__("Interactive mode requires a terminal (stdin is not a TTY)")


class AlreadyAttachedError(AICError):
    """Only one session may hold the local terminal at a time."""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"Already attached to {tool}")


class UnknownToolError(AICError):
    """A tool name that is not registered."""

    def __init__(self, name: str, known: Sequence[str] = ()) -> None:
        self.name = name
        self.known = list(known)
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Unknown tool '{name}'{hint}")


class ForwardError(AICError):
    """Validation failure while preparing a forward. No process is touched."""


class NoResponseToForwardError(ForwardError):
    def __init__(self) -> None:
        super().__init__("No response to forward yet")


class SameToolForwardError(ForwardError):
    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"Cannot forward to the same tool ({tool})")


class AmbiguousForwardTargetError(ForwardError):
    def __init__(self, candidates: Sequence[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(
            f"Ambiguous target, specify one of {{{', '.join(self.candidates)}}}"
        )
