"""Append-only log of what was said to and by each tool."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationEntry:
    tool: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)


class ConversationLog:
    """Ordered, append-only conversation record.

    Entries are never edited; the only mutations are ``append`` and
    ``clear``. Forwarding reads "the last response" from here and nowhere
    else.
    """

    def __init__(self) -> None:
        self._entries: list[ConversationEntry] = []

    def append(self, tool: str, role: Role, content: str) -> ConversationEntry:
        entry = ConversationEntry(tool=tool, role=role, content=content)
        self._entries.append(entry)
        return entry

    def add_exchange(self, tool: str, query: str, response: str) -> None:
        """Record a completed turn: the user's message and the tool's reply."""
        self.append(tool, Role.USER, query)
        self.append(tool, Role.ASSISTANT, response)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> tuple[ConversationEntry, ...]:
        return tuple(self._entries)

    def last_response(self) -> Optional[ConversationEntry]:
        """Most recent assistant entry, from any tool."""
        for entry in reversed(self._entries):
            if entry.role == Role.ASSISTANT:
                return entry
        return None

    def query_for(self, response: ConversationEntry) -> Optional[ConversationEntry]:
        """Nearest user entry to the same tool that precedes ``response``."""
        index = self._index_of(response)
        for entry in reversed(self._entries[:index]):
            if entry.role == Role.USER and entry.tool == response.tool:
                return entry
        return None

    def _index_of(self, target: ConversationEntry) -> int:
        for i in range(len(self._entries) - 1, -1, -1):
            if self._entries[i] is target:
                return i
        raise ValueError("Entry is not part of this log")

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ConversationEntry]:
        return iter(list(self._entries))

