"""PTY session management for persistent CLI tool sessions.

Keeps an interactive tool running in a pseudo-terminal and turns its
unstructured output into request/response turns. A turn is over when either
the tool redraws its input prompt or it stops producing meaningful output for
the tool's idle window, whichever happens first.
"""

import asyncio
import codecs
from dataclasses import dataclass
from typing import Callable, Optional

import pexpect
from loguru import logger

from aiconnect.errors import (
    AlreadyAttachedError,
    CaptureCancelledError,
    CaptureTimeoutError,
    ProcessExitedError,
    SendWhileAttachedError,
    SessionBusyError,
)
from aiconnect.utils.ansi import contains_screen_clear, has_real_content, strip_ansi

from .buffer import OutputBuffer
from .process import ToolProcess
from .types import PTYSessionConfig, SessionState, SessionStatus, SpawnSpec

OutputSink = Callable[[bytes], None]
ExitListener = Callable[[Optional[int]], None]
ProcessFactory = Callable[[SpawnSpec, PTYSessionConfig], ToolProcess]


@dataclass
class OutputEvent:
    """One message from the reader task: a chunk of output or process exit."""

    data: bytes = b""
    exited: bool = False
    exit_code: Optional[int] = None


class _Capture:
    """Bookkeeping for one in-flight send_and_capture call."""

    def __init__(self, loop: asyncio.AbstractEventLoop, tail_window: int) -> None:
        self.future: asyncio.Future = loop.create_future()
        self.raw = bytearray()
        self.tail = ""
        self.armed = False
        self.idle_handle: Optional[asyncio.TimerHandle] = None
        self.deadline_handle: Optional[asyncio.TimerHandle] = None
        self._tail_window = tail_window
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes) -> str:
        """Accumulate a chunk and return its decoded text."""
        self.raw.extend(data)
        text = self._decoder.decode(data)
        self.tail = (self.tail + text)[-self._tail_window :]
        return text

    def cancel_timers(self) -> None:
        if self.idle_handle is not None:
            self.idle_handle.cancel()
            self.idle_handle = None
        if self.deadline_handle is not None:
            self.deadline_handle.cancel()
            self.deadline_handle = None


def _consume_exception(future: asyncio.Future) -> None:
    # The ready latch may fail with nobody waiting on it
    if not future.cancelled():
        future.exception()


class PTYSession:
    """Manages one persistent tool process in a pseudo-terminal.

    Child output is read by a single reader task and queued as
    ``OutputEvent`` objects; a single pump task drains the queue and hands
    each chunk to exactly one consumer chosen by the current state: the
    attach sink while a human is attached, otherwise the pending capture.
    All state changes happen on the event loop thread.
    """

    def __init__(
        self,
        spec: SpawnSpec,
        config: Optional[PTYSessionConfig] = None,
        process_factory: ProcessFactory = ToolProcess,
        on_state_change: Optional[Callable[[str, SessionState], None]] = None,
        on_exit: Optional[Callable[["PTYSession", Optional[int]], None]] = None,
    ) -> None:
        self.spec = spec
        self.config = config or PTYSessionConfig()
        self.on_state_change = on_state_change
        self.on_exit = on_exit

        self.state = SessionState.DEAD
        self.has_history = False
        self.output_buffer = OutputBuffer(self.config.buffer_limit)

        self._process_factory = process_factory
        self._process: Optional[ToolProcess] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._grace_handle: Optional[asyncio.TimerHandle] = None
        self._capture: Optional[_Capture] = None
        self._attach_sink: Optional[OutputSink] = None
        self._attach_exit: Optional[ExitListener] = None
        self._spawn_lock = asyncio.Lock()
        self._stopping = False

    # ------------------------------------------------------------------
    # Identity and status
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def display_name(self) -> str:
        return self.spec.display_name

    @property
    def pid(self) -> Optional[int]:
        """Get the process ID of the tool process."""
        if self._process is not None:
            return self._process.pid
        return None

    @property
    def is_ready(self) -> bool:
        return self._ready is not None and self._ready.done() and not self._ready.exception()

    def is_alive(self) -> bool:
        """Check if the session has a live child process."""
        return self._process is not None and self.state != SessionState.DEAD

    def status(self, is_active: bool = False) -> SessionStatus:
        return SessionStatus(
            name=self.name,
            display_name=self.display_name,
            state=self.state,
            has_history=self.has_history,
            pid=self.pid,
            is_active=is_active,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, wait_ready: bool = True) -> None:
        """Spawn the tool if it is not running.

        Parameters
        ----------
        wait_ready : bool
            Wait until the tool shows its prompt or the startup grace period
            runs out. Attach skips this so the human sees the startup screen.

        Raises
        ------
        SpawnFailureError
            If the executable cannot be started; the session stays DEAD.
        ProcessExitedError
            If the tool exits before becoming ready.
        """
        async with self._spawn_lock:
            if self.state == SessionState.DEAD:
                await self._spawn()
        if wait_ready:
            await self.wait_ready()

    async def _spawn(self) -> None:
        loop = asyncio.get_running_loop()
        process = self._process_factory(self.spec, self.config)

        self._set_state(SessionState.SPAWNING)
        try:
            await process.spawn(resume=self.has_history)
        except Exception:
            self._set_state(SessionState.DEAD)
            raise

        self._process = process
        self.output_buffer.clear()
        self._ready = loop.create_future()
        self._ready.add_done_callback(_consume_exception)
        self._grace_handle = loop.call_later(self.config.startup_grace, self._mark_ready)

        events: asyncio.Queue = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_loop(process, events))
        self._pump_task = asyncio.create_task(self._pump(events))
        logger.info(f"{self.display_name} spawned (pid={process.pid}, resume={self.has_history})")

    async def wait_ready(self) -> None:
        """Block until the ready latch resolves."""
        if self._ready is None:
            if self.state == SessionState.DEAD:
                raise ProcessExitedError(self.display_name, None)
            return
        await asyncio.shield(self._ready)

    async def stop(self) -> None:
        """Stop the tool process and mark the session DEAD.

        The session object keeps its identity and history flag so it can be
        respawned later. Exit listeners are not notified for an intentional
        stop, but a pending capture is still rejected.
        """
        process = self._process
        if process is None:
            return

        self._stopping = True
        try:
            for task in (self._reader_task, self._pump_task):
                if task is not None and not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

            await process.terminate()
            loop = asyncio.get_running_loop()
            exit_code = await loop.run_in_executor(None, process.exit_code)
            self._handle_exit(exit_code)
        finally:
            self._stopping = False

    # ------------------------------------------------------------------
    # Reader / pump
    # ------------------------------------------------------------------

    async def _read_loop(self, process: ToolProcess, events: asyncio.Queue) -> None:
        """Continuously read output from the child and queue it."""
        loop = asyncio.get_running_loop()
        while True:
            try:
                data = await loop.run_in_executor(
                    None,
                    process.read_nonblocking,
                    self.config.read_size,
                    self.config.read_timeout,
                )
            except pexpect.EOF:
                break
            except OSError as e:
                logger.debug(f"{self.display_name} reader ended: {e}")
                break
            if data:
                events.put_nowait(OutputEvent(data=data))

        exit_code = await loop.run_in_executor(None, process.exit_code)
        events.put_nowait(OutputEvent(exited=True, exit_code=exit_code))

    async def _pump(self, events: asyncio.Queue) -> None:
        """Dispatch queued output events until the process exits."""
        while True:
            event = await events.get()
            if event.exited:
                self._handle_exit(event.exit_code)
                return
            self._handle_output(event.data)

    def _handle_output(self, data: bytes) -> None:
        # A full-screen redraw invalidates whatever we had buffered
        if contains_screen_clear(data):
            self.output_buffer.clear()
        self.output_buffer.append(data)

        if self.state == SessionState.ATTACHED and self._attach_sink is not None:
            try:
                self._attach_sink(data)
            except OSError as e:
                logger.warning(f"Attach sink for {self.display_name} failed: {e}")
            if not self.is_ready and self._prompt_seen(self._buffer_tail()):
                self._mark_ready()
            return

        capture = self._capture
        if capture is not None and capture.armed:
            text = capture.feed(data)
            if self._prompt_seen(capture.tail):
                logger.debug(f"{self.display_name}: prompt detected, completing capture")
                self._complete_capture(capture)
            elif has_real_content(text):
                self._reset_idle_timer(capture)
            return

        if self.state == SessionState.SPAWNING and self._prompt_seen(self._buffer_tail()):
            logger.debug(f"{self.display_name}: first prompt detected")
            self._mark_ready()

    def _handle_exit(self, exit_code: Optional[int]) -> None:
        logger.info(f"{self.display_name} exited (code={exit_code})")
        self._cancel_grace_timer()
        self._process = None
        self._reader_task = None
        self._pump_task = None
        self._set_state(SessionState.DEAD)

        error = ProcessExitedError(self.display_name, exit_code)
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)

        capture = self._capture
        if capture is not None:
            if capture.armed:
                self._fail_capture(capture, error)
            else:
                # Still waiting on readiness; that waiter sees the error
                self._capture = None

        attach_exit = self._attach_exit
        self._attach_sink = None
        self._attach_exit = None
        if attach_exit is not None:
            attach_exit(exit_code)

        if self.on_exit is not None and not self._stopping:
            self.on_exit(self, exit_code)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def _buffer_tail(self) -> str:
        return self.output_buffer.tail(self.config.prompt_tail_window).decode(
            "utf-8", errors="replace"
        )

    def _prompt_seen(self, text: str) -> bool:
        return self.spec.prompt_pattern.search(strip_ansi(text)) is not None

    def _mark_ready(self) -> None:
        self._cancel_grace_timer()
        if self.state == SessionState.SPAWNING:
            self._set_state(SessionState.IDLE)
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    def _cancel_grace_timer(self) -> None:
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None

    # ------------------------------------------------------------------
    # Send and capture
    # ------------------------------------------------------------------

    async def send_and_capture(self, message: str, timeout: Optional[float] = None) -> str:
        """Send a message and capture the tool's response.

        Args:
            message: Text to type into the tool; the tool's line terminator
                is appended.
            timeout: Overall bound in seconds (defaults to the configured
                capture timeout).

        Returns:
            The response, cleaned by the tool's output sanitizer.

        Raises:
            SessionBusyError: A capture is already in flight. Nothing is written.
            SendWhileAttachedError: A human is attached. Nothing is written.
            CaptureTimeoutError: The overall bound was exceeded; the process
                keeps running and the session returns to IDLE.
            ProcessExitedError: The tool exited before responding.
            CaptureCancelledError: The turn was interrupted.
        """
        if self._capture is not None or self.state == SessionState.PROCESSING:
            raise SessionBusyError(self.display_name)
        if self.state == SessionState.ATTACHED:
            raise SendWhileAttachedError(self.display_name)

        loop = asyncio.get_running_loop()
        capture = _Capture(loop, self.config.prompt_tail_window)
        # Reserve the session before the first await
        self._capture = capture
        try:
            if self.state == SessionState.DEAD:
                await self.start(wait_ready=False)
            await self._wait_ready_or_interrupt(capture)
        except BaseException:
            if self._capture is capture:
                self._capture = None
            raise

        if capture.future.done():
            # Interrupted before anything was written
            return await capture.future
        if self._capture is not capture:
            raise ProcessExitedError(self.display_name, None)

        timeout = timeout or self.config.capture_timeout
        capture.armed = True
        capture.deadline_handle = loop.call_later(
            timeout, self._on_capture_deadline, capture, timeout
        )
        self._reset_idle_timer(capture)
        self._set_state(SessionState.PROCESSING)
        logger.debug(f"Sending {len(message)} chars to {self.display_name}")
        self.write((message + self.spec.line_terminator).encode("utf-8"))

        try:
            return await capture.future
        except asyncio.CancelledError:
            if self._capture is capture:
                capture.cancel_timers()
                self._capture = None
                self._set_state(SessionState.IDLE)
            raise

    async def _wait_ready_or_interrupt(self, capture: _Capture) -> None:
        """Wait for readiness, returning early if the turn is interrupted."""
        if capture.future.done():
            return
        ready = asyncio.ensure_future(self.wait_ready())
        try:
            await asyncio.wait({ready, capture.future}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not ready.done():
                ready.cancel()
        if ready.done() and not ready.cancelled():
            if capture.future.done():
                ready.exception()
            else:
                ready.result()

    def _reset_idle_timer(self, capture: _Capture) -> None:
        if capture.idle_handle is not None:
            capture.idle_handle.cancel()
        loop = asyncio.get_running_loop()
        capture.idle_handle = loop.call_later(
            self.spec.idle_timeout, self._on_idle_timeout, capture
        )

    def _on_idle_timeout(self, capture: _Capture) -> None:
        if self._capture is capture:
            logger.debug(f"{self.display_name}: idle timeout, completing capture")
            self._complete_capture(capture)

    def _on_capture_deadline(self, capture: _Capture, timeout: float) -> None:
        if self._capture is capture:
            logger.warning(f"{self.display_name}: capture timed out after {timeout}s")
            self._fail_capture(capture, CaptureTimeoutError(self.display_name, timeout))
            self._set_state(SessionState.IDLE)

    def _complete_capture(self, capture: _Capture) -> None:
        capture.cancel_timers()
        self._capture = None
        self._set_state(SessionState.IDLE)
        if capture.future.done():
            return
        try:
            text = self.spec.sanitizer(bytes(capture.raw))
        except Exception as e:
            logger.exception(f"Output sanitizer for {self.display_name} failed")
            capture.future.set_exception(e)
            return
        self.has_history = True
        capture.future.set_result(text)

    def _fail_capture(self, capture: _Capture, error: Exception) -> None:
        capture.cancel_timers()
        if self._capture is capture:
            self._capture = None
        if not capture.future.done():
            capture.future.set_exception(error)

    def interrupt(self) -> bool:
        """Interrupt the in-flight turn, leaving the process running.

        Returns:
            True if a capture was in flight and has been cancelled.
        """
        capture = self._capture
        if capture is None:
            return False
        if not capture.armed:
            # Still waiting for the tool; the message is never written
            logger.info(f"{self.display_name}: turn cancelled before sending")
            self._fail_capture(capture, CaptureCancelledError(self.display_name))
            return True
        if self._process is not None:
            try:
                self._process.interrupt()
            except OSError as e:
                logger.warning(f"Failed to interrupt {self.display_name}: {e}")
        self._fail_capture(capture, CaptureCancelledError(self.display_name))
        self._set_state(SessionState.IDLE)
        return True

    # ------------------------------------------------------------------
    # Raw I/O for attach mode
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> bool:
        """Write raw bytes to the child.

        Write failures (the child may already be gone) are logged and never
        propagate.

        Returns:
            True if the bytes were handed to the child.
        """
        process = self._process
        if process is None:
            logger.warning(f"Dropped {len(data)} bytes for {self.display_name}: not running")
            return False
        try:
            process.write(data)
            return True
        except (OSError, pexpect.ExceptionPexpect) as e:
            logger.warning(f"Write to {self.display_name} failed: {e}")
            return False

    async def attach(self, sink: OutputSink, on_exit: Optional[ExitListener] = None) -> None:
        """Route child output to ``sink`` until detach() or process exit.

        A dead session is respawned without waiting for readiness so the
        human sees the tool's startup screen.
        """
        if self.state == SessionState.ATTACHED:
            raise AlreadyAttachedError(self.display_name)
        if self._capture is not None or self.state == SessionState.PROCESSING:
            raise SessionBusyError(self.display_name)

        if self.state == SessionState.DEAD:
            await self.start(wait_ready=False)
        if self.state == SessionState.DEAD:
            raise ProcessExitedError(self.display_name, None)

        self._attach_sink = sink
        self._attach_exit = on_exit
        self._set_state(SessionState.ATTACHED)

    def detach(self) -> None:
        """Stop routing output to the attach sink. The process keeps running."""
        if self.state != SessionState.ATTACHED:
            return
        self._attach_sink = None
        self._attach_exit = None
        self.has_history = True
        self._set_state(SessionState.IDLE)
        self._mark_ready()

    def resize(self, rows: int, cols: int) -> None:
        """Resize the child's terminal."""
        if self._process is not None:
            try:
                self._process.resize(rows, cols)
            except OSError as e:
                logger.debug(f"Resize of {self.display_name} failed: {e}")

    # ------------------------------------------------------------------

    def _set_state(self, new_state: SessionState) -> None:
        """Update session state and notify callback."""
        if self.state == new_state:
            return
        logger.debug(f"{self.display_name}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        if self.on_state_change:
            self.on_state_change(self.name, new_state)
