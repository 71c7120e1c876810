"""
Tests for the Binance mini-ticker streamer.

The websocket is replaced by an in-memory fake so reconnect, read deadline,
keepalive and cancellation behavior can be exercised without a network.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from cryptoeye.config import Settings
from cryptoeye.providers.base import ConnectionPhase
from cryptoeye.providers.binance_ws import (
    BinanceTickerStreamer,
    backoff_delay,
    parse_price,
)
from cryptoeye.streaming.channel import ChannelClosed, SampleChannel


class FakeWebSocket:
    """Replays frames, then blocks (or fails) like an idle connection."""

    def __init__(self, frames, fail_after=False, answer_pings=True, hang_pings=False, channel=None):
        self.frames = list(frames)
        self.fail_after = fail_after
        self.answer_pings = answer_pings
        self.hang_pings = hang_pings
        self.channel = channel
        self.closed = False
        self.channel_closed_at_close = None
        self.pings = 0

    async def recv(self):
        if self.frames:
            await asyncio.sleep(0)
            return self.frames.pop(0)
        if self.fail_after:
            raise OSError("connection reset by peer")
        await asyncio.Event().wait()

    async def ping(self, data=None):
        self.pings += 1
        if self.hang_pings:
            await asyncio.Event().wait()
        pong = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            pong.set_result(0.0)
        return pong

    async def close(self):
        if self.channel is not None:
            self.channel_closed_at_close = self.channel.closed
        self.closed = True


def make_settings(**overrides):
    defaults = dict(
        feed_url="wss://example.invalid/ws/btcusdt@miniTicker",
        keepalive_interval=60.0,
        read_deadline=60.0,
        ping_write_timeout=1.0,
    )
    defaults.update(overrides)
    return Settings(**defaults)


async def receive_n(channel, n, timeout=2.0):
    return [await asyncio.wait_for(channel.receive(), timeout=timeout) for _ in range(n)]


async def stop(task):
    task.cancel()
    try:
        await asyncio.wait_for(task, timeout=2.0)
    except asyncio.CancelledError:
        pass


class TestBackoffDelay:
    """Tests for the reconnect delay formula."""

    def test_sequence_for_eight_failures(self):
        """min(30, 2 ** min(r, 6)) for r = 1..8."""
        delays = [backoff_delay(r) for r in range(1, 9)]
        assert delays == [2, 4, 8, 16, 30, 30, 30, 30]

    def test_custom_parameters(self):
        assert backoff_delay(10, base=3, exponent_cap=2, cap=100) == 9
        assert backoff_delay(1, base=2, exponent_cap=6, cap=1) == 1


class TestParsePrice:
    """Tests for mini-ticker frame parsing."""

    def test_parses_current_price(self):
        frame = '{"e":"24hrMiniTicker","E":1700000000000,"s":"BTCUSDT","c":"64123.45000000","o":"1"}'
        assert parse_price(frame) == 64123.45

    def test_accepts_bytes(self):
        assert parse_price(b'{"c":"1.5"}') == 1.5

    @pytest.mark.parametrize("raw,expected", [("-0.5", -0.5), (".25", 0.25), ("7.", 7.0), ("1e3", 1000.0)])
    def test_accepts_decimal_notations(self, raw, expected):
        assert parse_price(f'{{"c":"{raw}"}}') == expected

    @pytest.mark.parametrize(
        "frame",
        [
            "not json",
            "[1, 2, 3]",
            '{"e": "24hrMiniTicker"}',
            '{"c": "abc"}',
            '{"c": 123.4}',
            '{"c": "nan"}',
            '{"c": "inf"}',
            '{"c": " 5 "}',
            '{"c": "1_000"}',
            '{"c": "1e999"}',
            '{"c": "."}',
            '{"c": ""}',
            "",
        ],
    )
    def test_rejects_malformed_frames(self, frame):
        assert parse_price(frame) is None


class TestBinanceTickerStreamer:
    """Tests for the connect/read loop."""

    @pytest.mark.asyncio
    async def test_emits_parsed_samples_and_skips_bad_frames(self):
        frames = [
            '{"e":"24hrMiniTicker","c":"100.50"}',
            "garbage",
            '{"c":"oops"}',
            '{"c":"101.25"}',
        ]
        ws = FakeWebSocket(frames)
        streamer = BinanceTickerStreamer(make_settings(), name="test")
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=AsyncMock(return_value=ws)):
            task = asyncio.create_task(streamer.run(channel))
            assert await receive_n(channel, 2) == [100.50, 101.25]
            assert streamer.state.phase is ConnectionPhase.CONNECTED
            await stop(task)

        assert channel.closed
        assert ws.closed

    @pytest.mark.asyncio
    async def test_drops_samples_when_channel_full(self):
        frames = [f'{{"c":"{i}.0"}}' for i in range(1, 6)]
        ws = FakeWebSocket(frames)
        streamer = BinanceTickerStreamer(make_settings())
        channel = SampleChannel(2)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=AsyncMock(return_value=ws)):
            task = asyncio.create_task(streamer.run(channel))
            for _ in range(50):
                if channel.dropped == 3:
                    break
                await asyncio.sleep(0.01)
            await stop(task)

        assert channel.dropped == 3
        assert await receive_n(channel, 2) == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reconnects_after_read_error(self):
        """A read error closes the socket and the loop connects again."""
        first = FakeWebSocket(['{"c":"10.0"}'], fail_after=True)
        second = FakeWebSocket(['{"c":"11.0"}'])
        connect = AsyncMock(side_effect=[first, second])
        streamer = BinanceTickerStreamer(make_settings())
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            assert await receive_n(channel, 2) == [10.0, 11.0]
            await stop(task)

        assert connect.await_count == 2
        assert first.closed
        assert streamer.state.failures == 0

    @pytest.mark.asyncio
    async def test_connect_failures_back_off_then_reset(self):
        ws = FakeWebSocket(['{"c":"5.0"}'])
        connect = AsyncMock(side_effect=[OSError("refused"), OSError("refused"), ws])
        streamer = BinanceTickerStreamer(make_settings(backoff_cap=0.01))
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect), \
                patch("cryptoeye.providers.binance_ws.backoff_delay", wraps=backoff_delay) as delay:
            task = asyncio.create_task(streamer.run(channel))
            assert await receive_n(channel, 1) == [5.0]
            await stop(task)

        assert [c.args[0] for c in delay.call_args_list] == [1, 2]
        assert streamer.state.failures == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_is_immediate(self):
        """Cancellation interrupts the backoff sleep and closes the channel."""
        connect = AsyncMock(side_effect=OSError("refused"))
        streamer = BinanceTickerStreamer(make_settings(backoff_cap=30.0))
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            for _ in range(50):
                if streamer.state.phase is ConnectionPhase.BACKOFF:
                    break
                await asyncio.sleep(0.01)
            assert streamer.state.phase is ConnectionPhase.BACKOFF
            await stop(task)

        assert task.cancelled()
        assert channel.closed
        assert streamer.state.phase is ConnectionPhase.DISCONNECTED
        with pytest.raises(ChannelClosed):
            await channel.receive()

    @pytest.mark.asyncio
    async def test_cancel_while_reading_closes_channel_before_socket(self):
        """Consumers observe end of stream without waiting for the close handshake."""
        channel = SampleChannel(8)
        ws = FakeWebSocket(['{"c":"1.0"}'], channel=channel)
        streamer = BinanceTickerStreamer(make_settings())

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=AsyncMock(return_value=ws)):
            task = asyncio.create_task(streamer.run(channel))
            await receive_n(channel, 1)
            await stop(task)

        assert ws.channel_closed_at_close is True
        assert channel.offer(2.0) is False

    @pytest.mark.asyncio
    async def test_read_deadline_forces_reconnect(self):
        """A silent connection is dropped once the read deadline passes."""
        silent = FakeWebSocket([])
        live = FakeWebSocket(['{"c":"3.0"}'])
        connect = AsyncMock(side_effect=[silent, live])
        streamer = BinanceTickerStreamer(make_settings(read_deadline=0.05))
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            assert await receive_n(channel, 1) == [3.0]
            await stop(task)

        assert silent.closed
        assert connect.await_count == 2

    @pytest.mark.asyncio
    async def test_pongs_keep_connection_alive(self):
        """Answered pings refresh the read deadline of an otherwise quiet feed."""
        quiet = FakeWebSocket([], answer_pings=True)
        connect = AsyncMock(return_value=quiet)
        streamer = BinanceTickerStreamer(
            make_settings(read_deadline=0.1, keepalive_interval=0.02)
        )
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            await asyncio.sleep(0.35)
            assert connect.await_count == 1
            assert quiet.pings >= 5
            assert streamer.state.phase is ConnectionPhase.CONNECTED
            await stop(task)

    @pytest.mark.asyncio
    async def test_stuck_ping_times_out_and_deadline_still_reconnects(self):
        """A ping write that never completes is abandoned; the keepalive keeps going."""
        stuck = FakeWebSocket([], hang_pings=True)
        live = FakeWebSocket(['{"c":"4.0"}'])
        connect = AsyncMock(side_effect=[stuck, live])
        streamer = BinanceTickerStreamer(
            make_settings(read_deadline=0.15, keepalive_interval=0.02, ping_write_timeout=0.01)
        )
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            assert await receive_n(channel, 1) == [4.0]
            await stop(task)

        assert stuck.pings >= 2
        assert stuck.closed
        assert connect.await_count == 2

    @pytest.mark.asyncio
    async def test_cancel_while_connecting_closes_channel(self):
        """Cancellation before the handshake finishes still ends the stream."""

        async def never_connects(*args, **kwargs):
            await asyncio.Event().wait()

        connect = AsyncMock(side_effect=never_connects)
        streamer = BinanceTickerStreamer(make_settings())
        channel = SampleChannel(8)

        with patch("cryptoeye.providers.binance_ws.websockets.connect", new=connect):
            task = asyncio.create_task(streamer.run(channel))
            for _ in range(50):
                if connect.call_count:
                    break
                await asyncio.sleep(0.01)
            assert streamer.state.phase is ConnectionPhase.CONNECTING
            await stop(task)

        assert task.cancelled()
        assert connect.call_count == 1
        assert channel.closed
        assert streamer.state.phase is ConnectionPhase.DISCONNECTED
        with pytest.raises(ChannelClosed):
            await channel.receive()
