"""Binance WebSocket mini-ticker streaming implementation."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import time

import websockets
from websockets.asyncio.client import ClientConnection

from ..config import Settings
from ..streaming.channel import SampleChannel
from .base import ConnectionPhase, ConnectionState


logger = logging.getLogger(__name__)

BINANCE_MINI_TICKER_URL = "wss://stream.binance.com:9443/ws/btcusdt@miniTicker"
MAX_FRAME_SIZE = 1 << 20
# Plain decimal or exponent notation; float() alone would also take padding,
# digit underscores and nan/inf spellings
DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def backoff_delay(failures: int, base: float = 2.0, exponent_cap: int = 6, cap: float = 30.0) -> float:
    """
    Seconds to wait before the next connect attempt.

    Args:
        failures: Consecutive failed connect attempts so far (>= 1)
        base: Exponential base
        exponent_cap: Largest exponent applied to the base
        cap: Upper bound on the delay
    """
    return min(cap, base ** min(failures, exponent_cap))


def parse_price(message: str | bytes) -> float | None:
    """
    Extract the current price ("c") from a mini-ticker frame.

    Returns None for anything that is not a JSON object carrying a finite
    decimal string price. Surrounding whitespace, digit underscores, nan and
    inf are rejected, and so are values that overflow a float. Other fields
    are ignored.
    """
    try:
        payload = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    raw = payload.get("c")
    if not isinstance(raw, str) or not DECIMAL_RE.fullmatch(raw):
        return None
    value = float(raw)
    if not math.isfinite(value):
        return None
    return value


class BinanceTickerStreamer:
    """Streams the current BTC/USDT price from the Binance mini-ticker feed."""

    def __init__(self, settings: Settings | None = None, name: str = "feed"):
        """
        Initialize Binance ticker streamer.

        Args:
            settings: Feed URL, liveness timings and backoff parameters
            name: Label used in log messages (usually the session id)
        """
        self.settings = settings or Settings()
        self.url = self.settings.feed_url or BINANCE_MINI_TICKER_URL
        self.name = name
        self.state = ConnectionState()
        self._ws: ClientConnection | None = None
        self._deadline = 0.0

    async def run(self, channel: SampleChannel) -> None:
        """
        Produce price samples onto the channel until cancelled.

        Reconnects forever with exponential backoff. The channel is closed
        when this coroutine exits for any reason.
        """
        try:
            await self._connect_loop(channel)
        finally:
            self.state.phase = ConnectionPhase.DISCONNECTED
            channel.close()
            logger.info(f"[{self.name}] Price stream stopped.")

    async def _connect_loop(self, channel: SampleChannel) -> None:
        settings = self.settings

        while True:
            self.state.phase = ConnectionPhase.CONNECTING
            try:
                ws = await websockets.connect(
                    self.url,
                    open_timeout=10,
                    close_timeout=5,
                    ping_interval=None,  # keepalive is driven by _keepalive()
                    max_size=MAX_FRAME_SIZE,
                )
            except (
                websockets.exceptions.WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                self.state.failures += 1
                self.state.phase = ConnectionPhase.BACKOFF
                delay = backoff_delay(
                    self.state.failures,
                    base=settings.backoff_base,
                    exponent_cap=settings.backoff_exponent_cap,
                    cap=settings.backoff_cap,
                )
                logger.warning(
                    f"[{self.name}] WS connect failed (attempt {self.state.failures}): {e}"
                    f" - retrying in {delay:.0f}s"
                )
                await asyncio.sleep(delay)
                continue

            self.state.failures = 0
            self.state.phase = ConnectionPhase.CONNECTED
            logger.info(f"[{self.name}] Connected to Binance stream")

            try:
                await self._read_loop(ws, channel)
            except asyncio.CancelledError:
                # Consumers see the end of stream before the socket finishes closing
                channel.close()
                raise
            except (
                websockets.exceptions.WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                logger.warning(f"[{self.name}] WS read error: {e!r}")
            finally:
                self.state.phase = ConnectionPhase.DISCONNECTED
                self._ws = None
                await self._close_quietly(ws)

    async def _read_loop(self, ws: ClientConnection, channel: SampleChannel) -> None:
        """Read frames until the connection fails or the read deadline passes."""
        self._ws = ws
        self._touch()
        keepalive = asyncio.create_task(self._keepalive(ws))
        try:
            while True:
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError(
                        f"no frame within {self.settings.read_deadline:.0f}s"
                    )
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    # A pong may have pushed the deadline out while we waited
                    continue

                self._touch()
                value = parse_price(message)
                if value is None:
                    logger.debug(f"[{self.name}] Dropping unparsable frame: {message!r:.200}")
                    continue

                logger.debug(f"[{self.name}] Price received: {value:.2f}")
                channel.offer(value)
        finally:
            keepalive.cancel()
            try:
                await keepalive
            except asyncio.CancelledError:
                pass

    async def _keepalive(self, ws: ClientConnection) -> None:
        """Ping every keepalive_interval; each pong refreshes the read deadline."""
        settings = self.settings
        while True:
            await asyncio.sleep(settings.keepalive_interval)
            try:
                pong_waiter = await asyncio.wait_for(
                    ws.ping(b"ping"), timeout=settings.ping_write_timeout
                )
            except (websockets.exceptions.WebSocketException, asyncio.TimeoutError, OSError) as e:
                # The read loop notices a dead connection through its deadline
                logger.debug(f"[{self.name}] Ping failed: {e!r}")
                continue
            pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is None:
            self._touch()

    def _touch(self) -> None:
        self._deadline = time.monotonic() + self.settings.read_deadline

    @staticmethod
    async def _close_quietly(ws: ClientConnection) -> None:
        try:
            await ws.close()
        except (websockets.exceptions.WebSocketException, OSError):
            pass
