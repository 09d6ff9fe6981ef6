"""PTY-based persistent tool session management.

This module provides persistent interactive CLI tool sessions using pexpect,
with response capture, attach support and a name-keyed session registry.
"""

from .buffer import OutputBuffer
from .process import ToolProcess
from .registry import SessionRegistry
from .session import PTYSession
from .types import PTYSessionConfig, SessionState, SessionStatus, SpawnSpec

__all__ = [
    "OutputBuffer",
    "PTYSession",
    "PTYSessionConfig",
    "SessionRegistry",
    "SessionState",
    "SessionStatus",
    "SpawnSpec",
    "ToolProcess",
]
