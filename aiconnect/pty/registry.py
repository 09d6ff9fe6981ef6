"""Session registry for managing the named tool sessions.

Uses a simple dict-based registry with an asyncio lock that guards only the
map itself; sessions run independently of one another.
"""

import asyncio
import dataclasses
from typing import Callable, Optional

from loguru import logger

from aiconnect.errors import UnknownToolError

from .process import ToolProcess
from .session import ProcessFactory, PTYSession
from .types import PTYSessionConfig, SessionState, SessionStatus, SpawnSpec


class SessionRegistry:
    """Maps tool names to PTY sessions and tracks the active one.

    Registration order is preserved. Once any session is registered exactly
    one of them is active; the active pointer never names an unregistered
    tool.
    """

    def __init__(
        self,
        config: Optional[PTYSessionConfig] = None,
        process_factory: ProcessFactory = ToolProcess,
        on_state_change: Optional[Callable[[str, SessionState], None]] = None,
    ) -> None:
        self.config = config
        self._process_factory = process_factory
        self._on_state_change = on_state_change
        self._sessions: dict[str, PTYSession] = {}
        self._active: Optional[str] = None
        self._lock = asyncio.Lock()

    def register(self, spec: SpawnSpec) -> PTYSession:
        """Register a tool. The session is created DEAD; nothing is spawned.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if spec.name in self._sessions:
            raise ValueError(f"Tool already registered: {spec.name}")

        # Each session gets its own config copy; resize mutates rows/cols
        config = dataclasses.replace(self.config) if self.config else PTYSessionConfig()
        session = PTYSession(
            spec,
            config=config,
            process_factory=self._process_factory,
            on_state_change=self._on_state_change,
        )
        self._sessions[spec.name] = session
        if self._active is None:
            self._active = spec.name
        logger.debug(f"Registered tool {spec.name} (total: {len(self._sessions)})")
        return session

    def get(self, name: str) -> PTYSession:
        """Get a session by name.

        Raises:
            UnknownToolError: If no tool with that name is registered.
        """
        session = self._sessions.get(name)
        if session is None:
            raise UnknownToolError(name, self.names())
        return session

    def names(self) -> list[str]:
        """Registered tool names in registration order."""
        return list(self._sessions.keys())

    def sessions(self) -> list[PTYSession]:
        return list(self._sessions.values())

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def start_one(self, name: str) -> PTYSession:
        """Start a tool's session if it is not already live.

        Idempotent. Only the lookup happens under the registry lock, so
        starting one tool never waits on another tool's capture.
        """
        async with self._lock:
            session = self.get(name)
        if session.state == SessionState.DEAD:
            logger.info(f"Starting {session.display_name}")
        await session.start()
        return session

    def set_active(self, name: str) -> PTYSession:
        session = self.get(name)
        if self._active != name:
            logger.debug(f"Active tool: {self._active} -> {name}")
        self._active = name
        return session

    def get_active(self) -> Optional[PTYSession]:
        if self._active is None:
            return None
        return self._sessions[self._active]

    @property
    def active_name(self) -> Optional[str]:
        return self._active

    def status(self) -> list[SessionStatus]:
        """Snapshot of every session, in registration order."""
        return [
            session.status(is_active=(name == self._active))
            for name, session in self._sessions.items()
        ]

    async def stop_all(self) -> None:
        """Stop every live child (for shutdown)."""
        async with self._lock:
            sessions = list(self._sessions.values())

        for session in sessions:
            if session.state != SessionState.DEAD:
                try:
                    await session.stop()
                except Exception:
                    logger.exception(f"Error stopping {session.display_name}")

        logger.info("Stopped all tool sessions")

    async def reset(self) -> None:
        """Stop all sessions and forget their conversation history."""
        await self.stop_all()
        for session in self._sessions.values():
            session.has_history = False
