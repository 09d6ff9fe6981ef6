"""Attach mode: hand the local terminal to one tool session.

While attached, stdin chunks go to the child and child output goes to
stdout. The multiplexer also keeps a copy of everything the child printed so
the exchange can be recorded in the conversation log on detach.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from aiconnect.config import config
from aiconnect.conversation import ConversationLog, Role
from aiconnect.errors import AlreadyAttachedError, AttachUnsupportedError
from aiconnect.pty.session import PTYSession
from aiconnect.pty.types import SessionState

from .adapter import TerminalAdapter
from .keys import DetachDetector, strip_focus_reports

DETACHED = "detached"
EXITED = "exited"


@dataclass
class AttachResult:
    """Outcome of one attach."""

    tool: str
    reason: str
    exit_code: Optional[int] = None
    captured: str = ""
    recorded: bool = False


class AttachMultiplexer:
    """Binds the terminal to at most one session at a time."""

    def __init__(
        self,
        terminal: TerminalAdapter,
        log: ConversationLog,
        min_capture: Optional[int] = None,
        double_escape_window: Optional[float] = None,
        initial_input_delay: Optional[float] = None,
        reattach_input_delay: Optional[float] = None,
        keystroke_interval: Optional[float] = None,
        debug_keys: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        attach_timeouts = config.timeouts.attach
        self.terminal = terminal
        self.log = log
        self.min_capture = min_capture or config.limits.min_attach_capture
        self.double_escape_window = double_escape_window or attach_timeouts.double_escape_window
        self.initial_input_delay = initial_input_delay or attach_timeouts.initial_input_delay
        self.reattach_input_delay = reattach_input_delay or attach_timeouts.reattach_input_delay
        self.keystroke_interval = keystroke_interval or attach_timeouts.keystroke_interval
        self.debug_keys = config.AIC_DEBUG if debug_keys is None else debug_keys
        self._clock = clock
        self._attached: Optional[PTYSession] = None

    @property
    def attached(self) -> Optional[PTYSession]:
        return self._attached

    async def attach(self, session: PTYSession, initial_input: Optional[str] = None) -> AttachResult:
        """Attach the terminal to ``session`` until a detach key or child exit.

        Args:
            session: Session to attach to; a dead session is respawned.
            initial_input: Text typed into the tool once it has had time to
                draw, followed by the tool's line terminator.

        Raises:
            AttachUnsupportedError: stdin/stdout is not a terminal.
            AlreadyAttachedError: another session holds the terminal.
        """
        if not self.terminal.is_interactive:
            raise AttachUnsupportedError()
        if self._attached is not None:
            raise AlreadyAttachedError(self._attached.display_name)

        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()
        captured = bytearray()
        detector = DetachDetector(self.double_escape_window, clock=self._clock)
        reattach = session.state != SessionState.DEAD

        def finish(reason: str, exit_code: Optional[int] = None) -> None:
            if not done.done():
                done.set_result((reason, exit_code))

        def on_output(data: bytes) -> None:
            data = strip_focus_reports(data)
            if data:
                captured.extend(data)
                self.terminal.write(data)

        def on_input(data: bytes) -> None:
            if not data:
                finish(DETACHED)
                return
            if self.debug_keys:
                logger.debug(f"key bytes: {data.hex(' ')}")
            data = strip_focus_reports(data)
            if not data:
                return
            forward, detach = detector.feed(data)
            if forward:
                session.write(forward)
            if detach:
                if self.debug_keys:
                    logger.debug("detach key detected")
                finish(DETACHED)

        self._attached = session
        try:
            await session.attach(on_output, on_exit=lambda code: finish(EXITED, code))
        except BaseException:
            self._attached = None
            raise
        # Written before the pump can deliver any child output
        self.terminal.write_text(
            f"Attached to {session.display_name}. Press Ctrl+] or Esc Esc to detach.\r\n"
        )

        was_raw = self.terminal.is_raw
        unsubscribe: Callable[[], None] = lambda: None
        typing_task: Optional[asyncio.Task] = None
        try:
            if reattach:
                replay = strip_focus_reports(session.output_buffer.snapshot())
                if replay:
                    self.terminal.write(replay)

            self.terminal.set_raw(True)
            self.terminal.add_input_reader(on_input)
            unsubscribe = self.terminal.on_resize(session.resize)
            session.resize(*self.terminal.size())

            if initial_input:
                typing_task = asyncio.create_task(
                    self._type_input(session, initial_input, reattach)
                )

            reason, exit_code = await done
        finally:
            if typing_task is not None and not typing_task.done():
                typing_task.cancel()
                try:
                    await typing_task
                except asyncio.CancelledError:
                    pass
            unsubscribe()
            self.terminal.remove_input_reader()
            session.detach()
            self.terminal.disable_enhancements()
            self.terminal.restore_cursor()
            self.terminal.set_raw(was_raw)
            self._attached = None

        logger.info(f"Left {session.display_name} ({reason}, {len(captured)} bytes captured)")
        return self._record(session, reason, exit_code, bytes(captured))

    def _record(
        self, session: PTYSession, reason: str, exit_code: Optional[int], raw: bytes
    ) -> AttachResult:
        text = session.spec.sanitizer(raw).strip() if raw else ""
        result = AttachResult(tool=session.name, reason=reason, exit_code=exit_code, captured=text)
        if len(text) > self.min_capture:
            self.log.append(session.name, Role.ASSISTANT, text)
            result.recorded = True
        return result

    async def _type_input(self, session: PTYSession, text: str, reattach: bool) -> None:
        # A fresh tool needs time to draw its input box before it accepts keys
        await asyncio.sleep(self.reattach_input_delay if reattach else self.initial_input_delay)
        for char in text:
            session.write(char.encode("utf-8"))
            await asyncio.sleep(self.keystroke_interval)
        session.write(session.spec.line_terminator.encode("utf-8"))
