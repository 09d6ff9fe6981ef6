"""PTY session types and dataclasses."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Pattern, Union

from aiconnect.config import config
from aiconnect.utils.ansi import plain_text

# Raw child output in, clean response text out
OutputSanitizer = Callable[[bytes], str]


class SessionState(Enum):
    """State of a PTY session."""

    SPAWNING = "spawning"
    IDLE = "idle"
    PROCESSING = "processing"
    ATTACHED = "attached"
    DEAD = "dead"


@dataclass
class SpawnSpec:
    """Everything the engine needs to know about one tool.

    This is the only place tool-specific behavior enters the core: the
    session never looks at ``name`` to decide how to behave.
    """

    name: str
    display_name: str
    command: str
    args: list[str] = field(default_factory=list)
    # Extra arguments used when respawning a session that already has history
    resume_args: list[str] = field(default_factory=list)
    prompt_pattern: Union[str, Pattern[str]] = r"^>\s*$"
    idle_timeout: float = 2.0
    sanitizer: OutputSanitizer = plain_text
    line_terminator: str = "\r"
    color: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.prompt_pattern, str):
            self.prompt_pattern = re.compile(self.prompt_pattern, re.MULTILINE)
        if self.idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be positive, got {self.idle_timeout}")

    def build_args(self, resume: bool = False) -> list[str]:
        """Argument list for a fresh spawn, optionally resuming prior conversation."""
        args = list(self.args)
        if resume:
            args.extend(self.resume_args)
        return args


@dataclass
class PTYSessionConfig:
    """Configuration for a PTY session.

    Defaults are pulled from centralized config.timeouts and config.limits.
    """

    working_directory: str = field(default_factory=lambda: config.WORKING_DIR)
    startup_grace: float = field(default_factory=lambda: config.timeouts.pty.startup_grace)
    capture_timeout: float = field(default_factory=lambda: config.timeouts.pty.capture)
    read_timeout: float = field(default_factory=lambda: config.timeouts.pty.read)
    stop_grace_period: float = field(default_factory=lambda: config.timeouts.pty.stop_grace)
    buffer_limit: int = field(default_factory=lambda: config.limits.buffer_limit)
    prompt_tail_window: int = field(default_factory=lambda: config.limits.prompt_tail_window)
    read_size: int = 4096

    # Terminal dimensions
    cols: int = 80
    rows: int = 24


@dataclass
class SessionStatus:
    """Point-in-time view of a session for status displays."""

    name: str
    display_name: str
    state: SessionState
    has_history: bool
    pid: Optional[int] = None
    is_active: bool = False
