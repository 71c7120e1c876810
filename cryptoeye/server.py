"""SSH front end: one ticker session per interactive connection."""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from pathlib import Path
from typing import Callable

import asyncssh

from .config import Settings
from .providers.base import PriceStream
from .providers.binance_ws import BinanceTickerStreamer
from .session.controller import SessionController
from .session.model import KeyPress, Resize
from .ui.keys import key_name
from .ui.render import DisplayConfig


logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 80
DEFAULT_HEIGHT = 24

CLEAR_SCREEN = "\x1b[H\x1b[2J"
RESET_STYLE = "\x1b[0m"
HIDE_CURSOR = "\x1b[?25l"
SHOW_CURSOR = "\x1b[?25h"


def load_or_create_host_key(path: str) -> asyncssh.SSHKey:
    """Read the server host key, generating an ed25519 key on first start."""
    key_path = Path(path)
    if key_path.exists():
        return asyncssh.read_private_key(str(key_path))

    key = asyncssh.generate_private_key("ssh-ed25519")
    key.write_private_key(str(key_path))
    os.chmod(key_path, 0o600)
    logger.info(f"Generated new host key at {key_path}")
    return key


class TickerSSHServer(asyncssh.SSHServer):
    """Accepts every user; the ticker is public and read-only."""

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._peer = conn.get_extra_info("peername")
        logger.info(f"SSH connection from {self._peer}")

    def connection_lost(self, exc: Exception | None) -> None:
        if exc:
            logger.warning(f"SSH connection from {self._peer} lost: {exc}")
        else:
            logger.info(f"SSH connection from {self._peer} closed")

    def begin_auth(self, username: str) -> bool:
        return False  # no authentication required


class TerminalWriter:
    """Redraws the whole viewport on each update."""

    def __init__(self, stdout: asyncssh.SSHWriter, height: int):
        self._stdout = stdout
        self.height = height

    def draw(self, text: str) -> None:
        lines = text.split("\n")
        if self.height > 0:
            lines = lines[: self.height]
        self.write(CLEAR_SCREEN + "\r\n".join(lines) + RESET_STYLE)

    def write(self, data: str) -> None:
        try:
            self._stdout.write(data)
        except BrokenPipeError:
            # Channel already gone; the key reader sees EOF and ends the session
            logger.debug("Dropping frame for closed channel")


class SessionHandler:
    """asyncssh process factory running one SessionController per process."""

    def __init__(self, settings: Settings, stream_factory: Callable[[str], PriceStream] | None = None):
        self.settings = settings
        self.stream_factory = stream_factory or (
            lambda session_id: BinanceTickerStreamer(settings, name=session_id)
        )
        self.display = DisplayConfig.from_settings(settings)
        self.sessions: dict[str, SessionController] = {}
        self._ids = itertools.count(1)

    async def __call__(self, process: asyncssh.SSHServerProcess) -> None:
        session_id = f"session-{next(self._ids)}"
        width, height = self._terminal_size(process)
        terminal = TerminalWriter(process.stdout, height)

        controller = SessionController(
            session_id,
            width,
            height,
            on_render=terminal.draw,
            settings=self.settings,
            display=self.display,
            stream=self.stream_factory(session_id),
        )
        self.sessions[session_id] = controller
        terminal.write(HIDE_CURSOR)
        controller.start()

        reader = asyncio.create_task(self._read_keys(process, controller, terminal))
        try:
            await controller.wait_closed()
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            await controller.close()
            self.sessions.pop(session_id, None)
            terminal.write(RESET_STYLE + SHOW_CURSOR + "\r\n")
            process.exit(0)

    async def close_all(self) -> None:
        """End every live session (server shutdown)."""
        sessions = list(self.sessions.values())
        for controller in sessions:
            controller.terminated.set()
        await asyncio.gather(*(c.close() for c in sessions), return_exceptions=True)

    @staticmethod
    def _terminal_size(process: asyncssh.SSHServerProcess) -> tuple[int, int]:
        width, height, _, _ = process.get_terminal_size()
        return width or DEFAULT_WIDTH, height or DEFAULT_HEIGHT

    async def _read_keys(
        self,
        process: asyncssh.SSHServerProcess,
        controller: SessionController,
        terminal: TerminalWriter,
    ) -> None:
        """Forward key presses and window changes until EOF."""
        while not controller.terminated.is_set():
            try:
                data = await process.stdin.read(1024)
            except asyncssh.TerminalSizeChanged as exc:
                width = exc.width or DEFAULT_WIDTH
                height = exc.height or DEFAULT_HEIGHT
                terminal.height = height
                controller.dispatch(Resize(width, height))
                continue
            except asyncssh.BreakReceived:
                continue
            except (asyncssh.Error, OSError) as e:
                logger.info(f"[{controller.session_id}] Input closed: {e}")
                break

            if not data:
                break
            for ch in data:
                controller.dispatch(KeyPress(key_name(ch)))

        controller.terminated.set()


async def start_server(settings: Settings, handler: SessionHandler | None = None) -> tuple[asyncssh.SSHAcceptor, SessionHandler]:
    """Listen for SSH connections; returns the acceptor and the session handler."""
    host_key = load_or_create_host_key(settings.ssh_host_key)
    handler = handler or SessionHandler(settings)

    acceptor = await asyncssh.create_server(
        TickerSSHServer,
        settings.ssh_host,
        settings.ssh_port,
        server_host_keys=[host_key],
        process_factory=handler,
        line_editor=False,
        encoding="utf-8",
    )
    return acceptor, handler
