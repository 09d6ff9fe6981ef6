"""Sessions driving real child processes through a pseudo-terminal.

These use ``cat`` and ``sh`` as stand-ins for an interactive tool.

Run with: pytest tests/integration -m pty
"""

import shutil

import pytest

from aiconnect.errors import ProcessExitedError
from aiconnect.pty.session import PTYSession
from aiconnect.pty.types import SessionState, SpawnSpec

pytestmark = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")


def make_spec(name: str, command: str, args=None) -> SpawnSpec:
    return SpawnSpec(
        name=name,
        display_name=name,
        command=command,
        args=args or [],
        # Never matches, so turns end on the idle window
        prompt_pattern=r"^\x00PROMPT\x00$",
        idle_timeout=0.3,
    )


@pytest.mark.pty
@pytest.mark.asyncio
async def test_cat_echoes_line(session_config):
    session = PTYSession(make_spec("cat", "cat"), config=session_config)
    await session.start()

    response = await session.send_and_capture("hello from the pty")

    assert response == "hello from the pty"
    assert session.state == SessionState.IDLE
    await session.stop()
    assert session.state == SessionState.DEAD


@pytest.mark.pty
@pytest.mark.asyncio
async def test_exit_while_capturing_reports_code(session_config):
    session = PTYSession(make_spec("shell", "sh", ["-c", "read line; exit 3"]), config=session_config)
    await session.start()

    with pytest.raises(ProcessExitedError) as exc_info:
        await session.send_and_capture("go")

    assert exc_info.value.exit_code == 3
    assert session.state == SessionState.DEAD
