"""Operator control loop.

Reads lines from the terminal, sends plain text to the active tool and
handles the slash commands for switching tools, attaching, forwarding and
inspecting state.
"""

import asyncio
import re
import signal
from typing import Optional

from loguru import logger

from aiconnect.config import config
from aiconnect.conversation import ConversationLog
from aiconnect.errors import AICError
from aiconnect.forwarding import ForwardingEngine, parse_forward_args
from aiconnect.logging_setup import configure_logging
from aiconnect.preferences import PreferenceStore
from aiconnect.pty.registry import SessionRegistry
from aiconnect.pty.session import PTYSession
from aiconnect.pty.types import PTYSessionConfig, SessionState
from aiconnect.terminal.adapter import TerminalAdapter
from aiconnect.terminal.multiplexer import EXITED, AttachMultiplexer
from aiconnect.tools import build_registry, tool_names
from aiconnect.utils.ansi import strip_ansi
from aiconnect.utils.formatting import BOLD, DIM, RESET, TerminalFormatter

# Focus reports and cursor-position replies that leak into cooked-mode input,
# both raw and as the caret-escaped text some terminals echo
_TERMINAL_NOISE_RE = re.compile(r"\x1b\[[IO]|\x1b\[\d+;\d+R|\^\[\[[IO]|\^\[\[\d+;\d+R")

ATTACH_COMMANDS = {"i", "interactive", "shell"}
FORWARD_COMMANDS = {"forward", "fwd"}
QUIT_COMMANDS = {"quit", "exit", "cya"}
HELP_COMMANDS = {"help", "?"}


def clean_input(line: str) -> str:
    """Strip terminal responses and escape sequences from a typed line."""
    return strip_ansi(_TERMINAL_NOISE_RE.sub("", line)).strip()


class AICSession:
    """One interactive aic run: the registry, the log and the terminal."""

    def __init__(
        self,
        registry: SessionRegistry,
        terminal: Optional[TerminalAdapter] = None,
        log: Optional[ConversationLog] = None,
        preferences: Optional[PreferenceStore] = None,
        multiplexer: Optional[AttachMultiplexer] = None,
        default_tool: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.terminal = terminal or TerminalAdapter()
        self.log = log or ConversationLog()
        self.preferences = preferences or PreferenceStore()
        self.multiplexer = multiplexer or AttachMultiplexer(self.terminal, self.log)
        self.forwarder = ForwardingEngine(registry, self.log)

        if default_tool and default_tool in registry:
            registry.set_active(default_tool)

        self._stop_requested = False
        self._read_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def print(self, text: str = "") -> None:
        self.terminal.write_text(text + "\n")

    def _colors(self) -> dict[str, str]:
        return {session.name: session.spec.color for session in self.registry.sessions()}

    def _display_names(self) -> dict[str, str]:
        return {session.name: session.display_name for session in self.registry.sessions()}

    def _label(self, session: PTYSession) -> str:
        return TerminalFormatter.tool_label(session.display_name, session.spec.color)

    def prompt(self) -> str:
        session = self.registry.get_active()
        name = session.name if session else "aic"
        color = session.spec.color if session else ""
        return f"{color}{name}{RESET} {BOLD}❯{RESET} "

    def banner(self) -> str:
        tools = ", ".join(self._label(s) for s in self.registry.sessions())
        return (
            f"{BOLD}aic{RESET} - tools: {tools}\n"
            f"{DIM}Type /help for commands, /quit to exit.{RESET}"
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Accept input until /quit, end of input, or an idle Ctrl+C."""
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self._on_interrupt)
            handles_sigint = True
        except (NotImplementedError, RuntimeError, ValueError):
            handles_sigint = False

        self.print(self.banner())
        try:
            while not self._stop_requested:
                self._read_task = asyncio.create_task(self.terminal.read_line(self.prompt()))
                try:
                    line = await self._read_task
                except asyncio.CancelledError:
                    if self._stop_requested:
                        break
                    raise
                finally:
                    self._read_task = None

                if line is None:
                    break
                await self.handle_line(line)
        finally:
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)
            self.print(TerminalFormatter.notice("Stopping tools..."))
            await self.registry.stop_all()

    def _on_interrupt(self) -> None:
        """Ctrl+C: cancel the in-flight turn if there is one, else quit."""
        if self.multiplexer.attached is not None:
            return
        interrupted = [s for s in self.registry.sessions() if s.interrupt()]
        if interrupted:
            logger.info(f"Interrupted {', '.join(s.name for s in interrupted)}")
            return
        self.request_stop()

    def request_stop(self) -> None:
        self._stop_requested = True
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()

    async def handle_line(self, line: str) -> None:
        """Dispatch one input line. Errors are reported, never raised."""
        text = clean_input(line)
        if not text:
            return
        try:
            if text.startswith("//"):
                await self.attach(initial_input=text[1:])
            elif text.startswith("/"):
                await self.handle_command(text)
            else:
                await self.send(text)
        except AICError as e:
            self.print(TerminalFormatter.error(str(e)))
        except Exception as e:
            logger.exception(f"Unexpected error handling {text!r}")
            self.print(TerminalFormatter.error(f"Unexpected error: {e}"))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def send(self, text: str) -> str:
        session = self.registry.get_active()
        if session is None:
            raise AICError("No tools registered")
        if session.state == SessionState.DEAD:
            self.print(TerminalFormatter.notice(f"Starting {session.display_name}..."))

        response = await session.send_and_capture(text)
        self.log.add_exchange(session.name, text, response)
        self.print(f"{self._label(session)}:")
        self.print(response or TerminalFormatter.notice("(no output)"))
        return response

    async def attach(self, initial_input: Optional[str] = None) -> None:
        session = self.registry.get_active()
        if session is None:
            raise AICError("No tools registered")

        result = await self.multiplexer.attach(session, initial_input=initial_input)
        self.print()
        if result.reason == EXITED:
            self.print(TerminalFormatter.notice(f"{session.display_name} exited (code {result.exit_code})"))
        else:
            self.print(TerminalFormatter.notice(f"Detached from {session.display_name}"))
        if result.recorded:
            self.print(TerminalFormatter.notice("Output saved. Use /i to re-attach, /forward to send to another tool."))

    async def forward(self, args: str) -> None:
        target, message = parse_forward_args(args, self.registry.names())
        entry, target_name = self.forwarder.resolve(target)
        source = self.registry.get(entry.tool)
        target_session = self.registry.get(target_name)
        self.print(f"Forwarding {self._label(source)} → {self._label(target_session)}")

        result = await self.forwarder.forward(target_name, message)
        self.print(f"{self._label(target_session)}:")
        self.print(result.response or TerminalFormatter.notice("(no output)"))

    async def handle_command(self, text: str) -> None:
        parts = text[1:].split(maxsplit=1)
        command = parts[0].lower() if parts else ""
        args = parts[1] if len(parts) > 1 else ""

        if command in self.registry:
            session = self.registry.set_active(command)
            self.print(f"Switched to {self._label(session)}")
        elif command in ATTACH_COMMANDS:
            await self.attach()
        elif command in FORWARD_COMMANDS:
            await self.forward(args)
        elif command == "history":
            self.print(TerminalFormatter.history(self.log, self._display_names(), self._colors()))
        elif command == "status":
            self.print(TerminalFormatter.status(self.registry.status(), self._colors()))
        elif command == "default":
            self._default(args)
        elif command == "clear":
            self.log.clear()
            await self.registry.reset()
            self.print(TerminalFormatter.notice("Conversation cleared and tools restarted fresh."))
        elif command in HELP_COMMANDS:
            self.print(self.help_text())
        elif command in QUIT_COMMANDS:
            self.request_stop()
        else:
            self.print(TerminalFormatter.error(f"Unknown command: /{command}. Type /help for commands."))

    def _default(self, args: str) -> None:
        names = self.registry.names()
        if not args.strip():
            current = self.preferences.get_default_tool(names)
            self.print(f"Default tool: {current}")
            return
        ok, message = self.preferences.set_default_tool(args, names)
        self.print(message if ok else TerminalFormatter.error(message))

    def help_text(self) -> str:
        tools = " ".join(f"/{name}" for name in self.registry.names())
        rows = [
            (tools, "Switch active tool"),
            ("/i", "Attach to the active tool (Ctrl+] or Esc Esc to detach)"),
            ("//cmd", "Attach and type /cmd into the tool"),
            ("/forward [tool] [msg]", "Forward the last response (alias /fwd)"),
            ("/history", "Show conversation history"),
            ("/status", "Show tool sessions"),
            ("/default [tool]", "Show or set the default tool"),
            ("/clear", "Clear history and restart tools"),
            ("/help", "Show this help"),
            ("/quit", "Exit (aliases /exit, /cya)"),
        ]
        width = max(len(cmd) for cmd, _ in rows)
        return "\n".join(f"  {cmd.ljust(width)}  {DIM}{desc}{RESET}" for cmd, desc in rows)


async def main(tool: Optional[str] = None, working_dir: Optional[str] = None) -> None:
    """Entry point for the control loop."""
    configure_logging()
    preferences = PreferenceStore()
    names = tool_names()
    default_tool = (tool or preferences.get_default_tool(names)).lower()

    session_config = PTYSessionConfig()
    if working_dir:
        session_config.working_directory = working_dir

    registry = build_registry(config=session_config, overrides=preferences.tool_overrides())
    logger.info(f"Starting aic (default tool: {default_tool}, debug: {config.AIC_DEBUG})")

    session = AICSession(registry, preferences=preferences, default_tool=default_tool)
    await session.run()
