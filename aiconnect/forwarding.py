"""Relay the latest captured response from one tool to another."""

from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger

from aiconnect.conversation import ConversationEntry, ConversationLog
from aiconnect.errors import (
    AmbiguousForwardTargetError,
    ForwardError,
    NoResponseToForwardError,
    SameToolForwardError,
    UnknownToolError,
)
from aiconnect.pty.registry import SessionRegistry
from aiconnect.pty.types import SessionState

QUERY_BEGIN = "<<<QUERY"
QUERY_END = "QUERY>>>"
RESPONSE_BEGIN = "<<<RESPONSE"
RESPONSE_END = "RESPONSE>>>"


@dataclass
class ForwardResult:
    source: str
    target: str
    prompt: str
    response: str


def parse_forward_args(text: str, names: Iterable[str]) -> tuple[Optional[str], str]:
    """Split ``"[tool] [message]"``.

    The first word is taken as the target only if it names a registered
    tool (case-insensitive); otherwise the whole text is the message.
    """
    parts = text.strip().split(maxsplit=1)
    if parts and parts[0].lower() in set(names):
        return parts[0].lower(), parts[1].strip() if len(parts) > 1 else ""
    return None, text.strip()


def build_forward_prompt(response: str, query: Optional[str] = None, instruction: str = "") -> str:
    """Quote a response, and the query that produced it, inside plain delimiters.

    The framing never characterizes where the response came from.
    """
    sections = ["Please review the following and share your thoughts."]
    if query:
        sections.append(f"{QUERY_BEGIN}\n{query}\n{QUERY_END}")
    sections.append(f"{RESPONSE_BEGIN}\n{response}\n{RESPONSE_END}")
    if instruction.strip():
        sections.append(instruction.strip())
    return "\n\n".join(sections)


class ForwardingEngine:
    """Picks a source and target tool, then drives a normal send on the target."""

    def __init__(
        self,
        registry: SessionRegistry,
        log: ConversationLog,
        timeout: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.log = log
        self.timeout = timeout

    def resolve(self, target: Optional[str] = None) -> tuple[ConversationEntry, str]:
        """Find the response to forward and the tool to send it to.

        Pure validation: no session is touched.

        Raises:
            NoResponseToForwardError: the log holds no assistant entry.
            SameToolForwardError: ``target`` is the tool that produced the response.
            UnknownToolError: ``target`` is not registered.
            AmbiguousForwardTargetError: no target given and more than one candidate.
        """
        entry = self.log.last_response()
        if entry is None:
            raise NoResponseToForwardError()

        source = entry.tool
        candidates = [name for name in self.registry.names() if name != source]

        if target is not None:
            target = target.lower()
            if target == source:
                raise SameToolForwardError(source)
            if target not in candidates:
                raise UnknownToolError(target, candidates)
            return entry, target

        if len(candidates) == 1:
            return entry, candidates[0]
        if not candidates:
            raise ForwardError(f"No other tool to forward to from {source}")
        raise AmbiguousForwardTargetError(candidates)

    async def forward(self, target: Optional[str] = None, instruction: str = "") -> ForwardResult:
        """Forward the latest response and capture the target's reply.

        The target becomes the active tool. The forwarded prompt and the
        reply are logged only after the capture succeeds.
        """
        entry, target_name = self.resolve(target)
        query = self.log.query_for(entry)
        prompt = build_forward_prompt(entry.content, query.content if query else None, instruction)

        session = self.registry.get(target_name)
        if session.state == SessionState.DEAD:
            await self.registry.start_one(target_name)

        self.registry.set_active(target_name)
        logger.info(f"Forwarding {entry.tool} -> {target_name} ({len(prompt)} chars)")
        response = await session.send_and_capture(prompt, timeout=self.timeout)

        self.log.add_exchange(target_name, prompt, response)
        return ForwardResult(source=entry.tool, target=target_name, prompt=prompt, response=response)
