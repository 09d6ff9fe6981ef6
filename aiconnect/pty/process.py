"""Low-level tool process management with pexpect."""

import asyncio
import os
from pathlib import Path
from typing import Optional

import pexpect
from loguru import logger

from aiconnect.errors import SpawnFailureError

from .types import PTYSessionConfig, SpawnSpec


class ToolProcess:
    """Low-level pexpect wrapper for one interactive CLI tool.

    Handles spawning, byte-level I/O, and lifecycle of the pexpect child.
    The child is spawned without an encoding so every read and write is raw
    bytes; decoding is left to whoever consumes the output.
    """

    def __init__(self, spec: SpawnSpec, config: PTYSessionConfig) -> None:
        self.spec = spec
        self.config = config
        self.child: Optional[pexpect.spawn] = None

    async def spawn(self, resume: bool = False) -> None:
        """Spawn the tool in a fresh pseudo-terminal.

        Parameters
        ----------
        resume : bool
            Pass the tool's resume arguments so it continues its previous
            conversation.

        Raises
        ------
        SpawnFailureError
            If the executable cannot be resolved or started.
        """
        cwd = Path(self.config.working_directory).expanduser()
        if not cwd.exists():
            cwd = Path.home()

        args = self.spec.build_args(resume=resume)

        # Set up environment
        env = os.environ.copy()
        env["TERM"] = "xterm-256color"
        env["COLUMNS"] = str(self.config.cols)
        env["LINES"] = str(self.config.rows)

        logger.info(f"Spawning {self.spec.name}: {self.spec.command} {' '.join(args)}")

        try:
            self.child = pexpect.spawn(
                self.spec.command,
                args=args,
                cwd=str(cwd),
                env=env,
                encoding=None,
                echo=False,
                dimensions=(self.config.rows, self.config.cols),
            )
        except (pexpect.ExceptionPexpect, OSError) as e:
            self.child = None
            raise SpawnFailureError(self.spec.display_name, self.spec.command, str(e)) from e

    def write(self, data: bytes) -> None:
        """Send raw bytes to the process.

        Parameters
        ----------
        data : bytes
            Data to send.
        """
        self.child.send(data)

    def read_nonblocking(self, size: int = 4096, timeout: float = 0.05) -> bytes:
        """Read available data from the PTY without blocking.

        Parameters
        ----------
        size : int
            Maximum bytes to read.
        timeout : float
            Timeout in seconds.

        Returns
        -------
        bytes
            Data read, or empty bytes if nothing available.

        Raises
        ------
        pexpect.EOF
            If process has terminated.
        """
        try:
            data = self.child.read_nonblocking(size=size, timeout=timeout)
            return data if data else b""
        except pexpect.TIMEOUT:
            return b""

    def exit_code(self) -> Optional[int]:
        """Reap the process and return its exit code.

        A process killed by a signal reports the negated signal number.
        """
        if self.child is None:
            return None
        try:
            self.child.close(force=True)
        except pexpect.ExceptionPexpect as e:
            logger.debug(f"Error closing {self.spec.name} child: {e}")
        if self.child.exitstatus is not None:
            return self.child.exitstatus
        if self.child.signalstatus is not None:
            return -self.child.signalstatus
        return None

    def interrupt(self) -> None:
        """Send Ctrl+C (the terminal's interrupt character)."""
        if self.child is not None and self.child.isalive():
            self.child.sendintr()

    def is_alive(self) -> bool:
        """Check if process is still running."""
        return self.child is not None and self.child.isalive()

    @property
    def pid(self) -> Optional[int]:
        """Get the process ID."""
        if self.child is not None:
            return self.child.pid
        return None

    async def terminate(self) -> None:
        """Terminate the process gracefully, then forcefully if needed."""
        if not self.child or not self.child.isalive():
            return

        grace_period = self.config.stop_grace_period

        # Try Ctrl+C
        try:
            self.child.sendintr()
            await asyncio.sleep(grace_period)
        except OSError:
            pass

        # Force terminate
        if self.child.isalive():
            try:
                self.child.terminate(force=True)
            except pexpect.ExceptionPexpect as e:
                logger.warning(f"Failed to terminate {self.spec.name}: {e}")

    def resize(self, rows: int, cols: int) -> None:
        """Resize the terminal window.

        Parameters
        ----------
        rows : int
            Number of rows.
        cols : int
            Number of columns.
        """
        if self.child:
            self.child.setwinsize(rows, cols)
            self.config.rows = rows
            self.config.cols = cols
