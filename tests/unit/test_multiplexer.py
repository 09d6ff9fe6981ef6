"""Unit tests for attach mode."""

import asyncio

import pytest

from aiconnect.conversation import ConversationLog, Role
from aiconnect.errors import (
    AlreadyAttachedError,
    AttachUnsupportedError,
    CaptureCancelledError,
    SessionBusyError,
    SpawnFailureError,
)
from aiconnect.pty.session import PTYSession
from aiconnect.pty.types import SessionState
from aiconnect.terminal.multiplexer import DETACHED, EXITED, AttachMultiplexer
from aiconnect.utils.ansi import plain_text


@pytest.fixture
def log():
    return ConversationLog()


@pytest.fixture
def session(make_spec, session_config, process_factory):
    return PTYSession(
        make_spec(sanitizer=plain_text),
        config=session_config,
        process_factory=process_factory,
    )


@pytest.fixture
def multiplexer(fake_terminal, log):
    return AttachMultiplexer(
        fake_terminal,
        log,
        min_capture=50,
        double_escape_window=0.5,
        initial_input_delay=0.01,
        reattach_input_delay=0.01,
        keystroke_interval=0.001,
        debug_keys=False,
    )


async def _attached(multiplexer, session, fake_terminal, helpers, **kwargs):
    task = asyncio.create_task(multiplexer.attach(session, **kwargs))
    await helpers.wait_until(lambda: fake_terminal.reader is not None)
    return task


class TestAttach:
    """Tests for AttachMultiplexer.attach."""

    @pytest.mark.asyncio
    async def test_attach_capture_and_detach(
        self, multiplexer, session, fake_terminal, process_factory, log, helpers
    ):
        """Typed input reaches the child; child output is shown and logged on detach."""
        reply = b"y" * 200
        process_factory.responders["alpha"] = lambda data: [reply] if data == b"x" * 40 else []

        task = await _attached(multiplexer, session, fake_terminal, helpers)
        assert fake_terminal.is_raw
        assert session.state == SessionState.ATTACHED

        fake_terminal.reader(b"x" * 40)
        await helpers.wait_until(lambda: reply in bytes(fake_terminal.output))
        fake_terminal.reader(b"\x1b[93;5u")

        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.reason == DETACHED
        assert result.recorded
        assert process_factory.last("alpha").writes == [b"x" * 40]
        assert len(log) == 1
        entry = log.entries[0]
        assert entry.role == Role.ASSISTANT
        assert entry.tool == "alpha"
        assert entry.content == "y" * 200
        # Terminal handed back the way we found it
        assert not fake_terminal.is_raw
        assert "disable_enhancements" in fake_terminal.events
        assert "restore_cursor" in fake_terminal.events
        assert fake_terminal.reader is None
        assert fake_terminal.unsubscribed
        assert session.state == SessionState.IDLE
        assert multiplexer.attached is None
        await session.stop()

    @pytest.mark.asyncio
    async def test_detach_mid_chunk_forwards_prefix_only(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers)

        fake_terminal.reader(b"abc\x1dxyz")
        await asyncio.wait_for(task, timeout=2.0)

        assert process_factory.last("alpha").written == b"abc"
        await session.stop()

    @pytest.mark.asyncio
    async def test_short_output_is_not_recorded(
        self, multiplexer, session, fake_terminal, process_factory, log, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers)
        process_factory.last("alpha").emit(b"ok")
        await helpers.wait_until(lambda: b"ok" in bytes(fake_terminal.output))

        fake_terminal.reader(b"\x1d")
        result = await asyncio.wait_for(task, timeout=2.0)

        assert not result.recorded
        assert len(log) == 0
        await session.stop()

    @pytest.mark.asyncio
    async def test_child_exit_ends_attach(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers)

        process_factory.last("alpha").exit(9)
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.reason == EXITED
        assert result.exit_code == 9
        assert session.state == SessionState.DEAD
        assert not fake_terminal.is_raw

    @pytest.mark.asyncio
    async def test_focus_reports_filtered_both_ways(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers)
        process = process_factory.last("alpha")

        fake_terminal.reader(b"\x1b[I")
        fake_terminal.reader(b"hi\x1b[O")
        process.emit(b"\x1b[Ishown")
        await helpers.wait_until(lambda: b"shown" in bytes(fake_terminal.output))
        fake_terminal.reader(b"\x1d")
        await asyncio.wait_for(task, timeout=2.0)

        assert process.written == b"hi"
        assert b"\x1b[I" not in bytes(fake_terminal.output)
        await session.stop()

    @pytest.mark.asyncio
    async def test_resize_is_propagated(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers)
        process = process_factory.last("alpha")
        assert process.resizes == [(40, 120)]

        fake_terminal.resize_callback(50, 160)
        assert process.resizes[-1] == (50, 160)

        fake_terminal.reader(b"\x1d")
        await asyncio.wait_for(task, timeout=2.0)
        await session.stop()

    @pytest.mark.asyncio
    async def test_initial_input_is_typed(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        task = await _attached(multiplexer, session, fake_terminal, helpers, initial_input="/help")
        process = process_factory.last("alpha")
        await helpers.wait_until(lambda: process.written == b"/help\r")

        assert process.writes[:5] == [b"/", b"h", b"e", b"l", b"p"]
        fake_terminal.reader(b"\x1d")
        await asyncio.wait_for(task, timeout=2.0)
        await session.stop()

    @pytest.mark.asyncio
    async def test_reattach_replays_buffer(
        self, multiplexer, session, fake_terminal, process_factory, helpers
    ):
        await session.start()
        process_factory.last("alpha").emit(b"previous screen")
        await helpers.wait_until(lambda: b"previous screen" in session.output_buffer.snapshot())

        task = await _attached(multiplexer, session, fake_terminal, helpers)

        assert b"previous screen" in bytes(fake_terminal.output)
        fake_terminal.reader(b"\x1d")
        result = await asyncio.wait_for(task, timeout=2.0)
        # Replayed bytes are not part of this attach's capture
        assert "previous screen" not in result.captured
        await session.stop()

    @pytest.mark.asyncio
    async def test_stdin_eof_detaches(self, multiplexer, session, fake_terminal, helpers):
        task = await _attached(multiplexer, session, fake_terminal, helpers)

        fake_terminal.reader(b"")
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.reason == DETACHED
        await session.stop()


class TestAttachErrors:
    @pytest.mark.asyncio
    async def test_non_interactive_terminal_is_unsupported(self, session, log, helpers):
        multiplexer = AttachMultiplexer(helpers.FakeTerminal(interactive=False), log)

        with pytest.raises(AttachUnsupportedError):
            await multiplexer.attach(session)

        assert session.state == SessionState.DEAD

    @pytest.mark.asyncio
    async def test_only_one_session_attached(
        self, multiplexer, session, fake_terminal, make_spec, session_config, process_factory, helpers
    ):
        other = PTYSession(make_spec("beta"), config=session_config, process_factory=process_factory)
        task = await _attached(multiplexer, session, fake_terminal, helpers)

        with pytest.raises(AlreadyAttachedError):
            await multiplexer.attach(other)

        fake_terminal.reader(b"\x1d")
        await asyncio.wait_for(task, timeout=2.0)
        await session.stop()

    @pytest.mark.asyncio
    async def test_spawn_failure_prints_no_banner(self, multiplexer, session, fake_terminal, process_factory):
        """A tool that cannot start leaves the terminal untouched."""
        process_factory.failing.add("alpha")

        with pytest.raises(SpawnFailureError):
            await multiplexer.attach(session)

        assert "Attached to" not in fake_terminal.text
        assert fake_terminal.events == []
        assert multiplexer.attached is None

    @pytest.mark.asyncio
    async def test_busy_session_prints_no_banner(self, multiplexer, session, fake_terminal, helpers):
        await session.start()
        pending = asyncio.create_task(session.send_and_capture("long task"))
        await helpers.wait_until(lambda: session.state == SessionState.PROCESSING)

        with pytest.raises(SessionBusyError):
            await multiplexer.attach(session)

        assert "Attached to" not in fake_terminal.text
        session.interrupt()
        with pytest.raises(CaptureCancelledError):
            await pending
        await session.stop()
