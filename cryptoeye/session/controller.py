"""Session controller: binds one price stream to one interactive session."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from ..config import Settings
from ..providers.base import PriceStream
from ..providers.binance_ws import BinanceTickerStreamer
from ..streaming.channel import ChannelClosed, SampleChannel
from ..streaming.history import PriceHistory
from ..ui.render import DisplayConfig, render, render_status
from .model import (
    Append,
    Command,
    Event,
    Quit,
    ReceiveNext,
    Render,
    SampleReceived,
    SessionState,
    ShowStatus,
    StreamEnded,
)
from . import model


logger = logging.getLogger(__name__)


class SessionController:
    """
    Owns one session's history, channel, price stream and cancellation scope.

    The host (SSH channel, test harness, ...) feeds Resize/KeyPress events
    through dispatch() and receives terminal text through on_render. Setting
    the termination event, from either side, cancels the price stream.
    """

    def __init__(
        self,
        session_id: str,
        width: int,
        height: int,
        on_render: Callable[[str], None],
        on_quit: Callable[[], None] | None = None,
        settings: Settings | None = None,
        display: DisplayConfig | None = None,
        stream: PriceStream | None = None,
        terminated: asyncio.Event | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_id = session_id
        self.settings = settings or Settings()
        self.display = display or DisplayConfig.from_settings(self.settings)
        self.on_render = on_render
        self.on_quit = on_quit
        self.clock = clock

        self.state = SessionState(width=width, height=height)
        self.history = PriceHistory(self.settings.history_capacity)
        self.channel = SampleChannel(self.settings.queue_capacity)
        self.stream = stream or BinanceTickerStreamer(self.settings, name=session_id)
        self.terminated = terminated or asyncio.Event()
        self.status: str | None = None

        self._stream_task: asyncio.Task | None = None
        self._watcher_task: asyncio.Task | None = None
        self._receiver_task: asyncio.Task | None = None

    def start(self) -> None:
        """Start the price stream and the termination watcher, draw the first frame."""
        if self._stream_task is not None:
            raise RuntimeError(f"session {self.session_id} already started")

        logger.info(f"[{self.session_id}] Session started ({self.state.width}x{self.state.height})")
        self._stream_task = asyncio.create_task(
            self.stream.run(self.channel), name=f"{self.session_id}-stream"
        )
        self._stream_task.add_done_callback(self._log_task_failure)
        self._watcher_task = asyncio.create_task(
            self._watch_termination(), name=f"{self.session_id}-watcher"
        )
        self._execute([Render(), ReceiveNext()])

    def dispatch(self, event: Event) -> None:
        """Run one event through the session state machine."""
        self.state, commands = model.update(self.state, event)
        self._execute(commands)

    async def close(self) -> None:
        """End the session and wait for every session task to finish."""
        self.terminated.set()
        tasks = [t for t in (self._stream_task, self._watcher_task, self._receiver_task) if t]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.channel.close()
        logger.info(f"[{self.session_id}] Session closed.")

    async def wait_closed(self) -> None:
        await self.terminated.wait()

    def _execute(self, commands: list[Command]) -> None:
        for command in commands:
            if isinstance(command, Append):
                self.history.append(command.value)
            elif isinstance(command, Render):
                self._draw()
            elif isinstance(command, ReceiveNext):
                self._receiver_task = asyncio.create_task(
                    self._receive_next(), name=f"{self.session_id}-receive"
                )
                self._receiver_task.add_done_callback(self._log_task_failure)
            elif isinstance(command, ShowStatus):
                self.status = command.text
                logger.info(f"[{self.session_id}] {command.text}")
                self.on_render(render_status(command.text))
            elif isinstance(command, Quit):
                logger.info(f"[{self.session_id}] Quit requested")
                self.terminated.set()
                if self.on_quit:
                    self.on_quit()

    def _draw(self) -> None:
        try:
            frame = self._render()
        except Exception:
            # Commands after this Render (ReceiveNext) still run
            logger.exception(f"[{self.session_id}] Render failed")
            return
        self.on_render(frame)

    def _render(self) -> str:
        # Snapshot releases the history lock before any rendering work
        snapshot = self.history.snapshot()
        return render(
            snapshot,
            self.state.width,
            self.state.height,
            show_help=self.state.show_help,
            display=self.display,
            now=self.clock() if self.clock else None,
        )

    async def _receive_next(self) -> None:
        try:
            value = await self.channel.receive()
        except ChannelClosed:
            self.dispatch(StreamEnded())
        else:
            self.dispatch(SampleReceived(value))

    async def _watch_termination(self) -> None:
        await self.terminated.wait()
        if self._stream_task and not self._stream_task.done():
            logger.info(f"[{self.session_id}] Session ended, cancelling price stream")
            self._stream_task.cancel()
        self.channel.close()

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"[{self.session_id}] Task {task.get_name()} failed: {exc}",
                exc_info=exc,
            )
