"""Pytest fixtures for aiconnect tests."""

import asyncio
import queue
import time
from typing import Callable, Optional

import pexpect
import pytest
from loguru import logger

from aiconnect.errors import SpawnFailureError
from aiconnect.pty.types import PTYSessionConfig, SpawnSpec
from aiconnect.utils.ansi import plain_text

Responder = Callable[[bytes], Optional[list[bytes]]]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "pty: tests that spawn real processes in a pseudo-terminal",
    )


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep loguru's default stderr sink out of test output."""
    logger.remove()
    yield
    logger.remove()


class FakeProcess:
    """In-memory stand-in for ToolProcess.

    Output is queued with ``emit`` and read back by the session's reader
    task through ``read_nonblocking``; ``exit`` makes the next read raise EOF.
    """

    def __init__(
        self,
        spec: SpawnSpec,
        config: PTYSessionConfig,
        responder: Optional[Responder] = None,
        startup_output: bytes = b"",
        fail_spawn: bool = False,
    ) -> None:
        self.spec = spec
        self.config = config
        self.responder = responder
        self.startup_output = startup_output
        self.fail_spawn = fail_spawn
        self.outbox: queue.Queue = queue.Queue()
        self.writes: list[bytes] = []
        self.resizes: list[tuple[int, int]] = []
        self.resume: Optional[bool] = None
        self.exit_status: Optional[int] = 0
        self.interrupts = 0
        self.terminated = False
        self.closed = False
        self.pid = 4242

    async def spawn(self, resume: bool = False) -> None:
        if self.fail_spawn:
            raise SpawnFailureError(self.spec.display_name, self.spec.command, "not found")
        self.resume = resume
        if self.startup_output:
            self.emit(self.startup_output)

    def emit(self, data: bytes) -> None:
        self.outbox.put(data)

    def exit(self, code: Optional[int] = 0) -> None:
        self.exit_status = code
        self.outbox.put(None)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise OSError(5, "Input/output error")
        self.writes.append(data)
        if self.responder is not None:
            for chunk in self.responder(data) or []:
                self.emit(chunk)

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)

    def read_nonblocking(self, size: int = 4096, timeout: float = 0.05) -> bytes:
        try:
            item = self.outbox.get(timeout=timeout)
        except queue.Empty:
            return b""
        if item is None:
            self.closed = True
            raise pexpect.EOF("End of file")
        return item

    def exit_code(self) -> Optional[int]:
        return self.exit_status

    def interrupt(self) -> None:
        self.interrupts += 1

    def is_alive(self) -> bool:
        return not self.closed

    async def terminate(self) -> None:
        self.terminated = True
        self.closed = True
        self.outbox.put(None)

    def resize(self, rows: int, cols: int) -> None:
        self.resizes.append((rows, cols))


class FakeProcessFactory:
    """Creates FakeProcess objects and remembers them per tool."""

    def __init__(self) -> None:
        self.created: list[FakeProcess] = []
        self.responders: dict[str, Responder] = {}
        self.startup: dict[str, bytes] = {}
        self.failing: set[str] = set()

    def __call__(self, spec: SpawnSpec, config: PTYSessionConfig) -> FakeProcess:
        process = FakeProcess(
            spec,
            config,
            responder=self.responders.get(spec.name),
            startup_output=self.startup.get(spec.name, b""),
            fail_spawn=spec.name in self.failing,
        )
        self.created.append(process)
        return process

    def for_tool(self, name: str) -> list[FakeProcess]:
        return [p for p in self.created if p.spec.name == name]

    def last(self, name: str) -> FakeProcess:
        return self.for_tool(name)[-1]


class FakeTerminal:
    """Records everything the multiplexer and control loop do to the terminal."""

    def __init__(self, interactive: bool = True, lines: Optional[list[str]] = None) -> None:
        self.is_interactive = interactive
        self.is_raw = False
        self.output = bytearray()
        self.events: list = []
        self.reader: Optional[Callable[[bytes], None]] = None
        self.resize_callback = None
        self.unsubscribed = False
        self.lines = list(lines or [])

    def set_raw(self, enabled: bool) -> None:
        self.is_raw = enabled
        self.events.append(("raw", enabled))

    def write(self, data: bytes) -> None:
        self.output.extend(data)

    def write_text(self, text: str) -> None:
        self.write(text.encode("utf-8"))

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    def restore_cursor(self) -> None:
        self.events.append("restore_cursor")

    def disable_enhancements(self) -> None:
        self.events.append("disable_enhancements")

    def size(self) -> tuple[int, int]:
        return 40, 120

    def on_resize(self, callback):
        self.resize_callback = callback

        def unsubscribe() -> None:
            self.unsubscribed = True

        return unsubscribe

    def add_input_reader(self, callback: Callable[[bytes], None]) -> None:
        self.reader = callback

    def remove_input_reader(self) -> None:
        self.reader = None

    async def read_line(self, prompt: str = "") -> Optional[str]:
        await asyncio.sleep(0)
        if not self.lines:
            return None
        return self.lines.pop(0)


def strip_prompt(raw: bytes) -> str:
    """Test sanitizer: plain text without prompt lines."""
    lines = plain_text(raw).split("\n")
    return "\n".join(line for line in lines if line.strip() != ">").strip()


def answer_with(*chunks: bytes) -> Responder:
    """Responder that replies to every submitted line with ``chunks``."""

    def respond(data: bytes) -> list[bytes]:
        if data.endswith(b"\r"):
            return list(chunks)
        return []

    return respond


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def session_config(tmp_path) -> PTYSessionConfig:
    return PTYSessionConfig(
        working_directory=str(tmp_path),
        startup_grace=0.05,
        capture_timeout=3.0,
        read_timeout=0.01,
        stop_grace_period=0.01,
        buffer_limit=4096,
        prompt_tail_window=200,
    )


@pytest.fixture
def make_spec() -> Callable[..., SpawnSpec]:
    def factory(name: str = "alpha", **overrides) -> SpawnSpec:
        values = dict(
            name=name,
            display_name=name.title(),
            command=name,
            resume_args=["--continue"],
            prompt_pattern=r"^>\s*$",
            idle_timeout=5.0,
            sanitizer=strip_prompt,
        )
        values.update(overrides)
        return SpawnSpec(**values)

    return factory


@pytest.fixture
def fake_terminal() -> FakeTerminal:
    return FakeTerminal()


@pytest.fixture
def helpers():
    """Plain helper functions shared by test modules."""

    class Helpers:
        FakeTerminal = FakeTerminal
        answer_with = staticmethod(answer_with)
        strip_prompt = staticmethod(strip_prompt)
        wait_until = staticmethod(wait_until)

    return Helpers
