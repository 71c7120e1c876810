"""
Terminal view of a session's price history.

render() is a pure mapping from (snapshot, viewport, display config) to text:
for a fixed snapshot, viewport and clock reading the output is byte-identical.

Layout:
    title
    (blank lines)
    line chart (plotext) + caption "<pair> <last>" in the trend color
    Δ line: spread, percent change, wall-clock time
    one value line per configured unit (last / min / max)
    help footer
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence

import plotext as plt
from rich.console import Console
from rich.text import Text

from ..config import Settings
from ..streaming.history import Snapshot, delta, percent_change, stats
from ..utils.format import format_kitchen, format_with_spaces
from .keys import DEFAULT_KEYMAP, KeyMap

# plotext draws on a module-level figure. Sessions render on the event loop
# thread, but a host may render from worker threads, so build one chart at a time
_PLOT_LOCK = threading.Lock()

MIN_GRAPH_WIDTH = 20
MIN_GRAPH_HEIGHT = 8
MAX_GRAPH_HEIGHT = 20
# Fewest chart rows kept when the viewport is too short for the full layout
MIN_FITTED_HEIGHT = 3


class Trend(Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class DisplayConfig:
    """Everything the renderer needs to know about presentation."""
    title: str = "BTC/USDT Live Price"
    pair_label: str = "BTC/USDT"
    placeholder: str = "Connecting to Binance…"
    units: tuple[tuple[str, float], ...] = (("usdt", 1.0), ("czk", 21.0))
    up_color: str = "#00ff00"
    down_color: str = "#ff0000"
    neutral_color: str = "#ffffff"
    color_system: str | None = "truecolor"  # None renders plain text

    @classmethod
    def from_settings(cls, settings: Settings) -> DisplayConfig:
        return cls(
            title=f"{settings.pair_label} Live Price",
            pair_label=settings.pair_label,
            units=tuple(settings.get_units()),
            color_system=settings.color_system or None,
        )

    def trend_color(self, trend: Trend) -> str:
        if trend is Trend.UP:
            return self.up_color
        if trend is Trend.DOWN:
            return self.down_color
        return self.neutral_color


DEFAULT_DISPLAY = DisplayConfig()


def trend(samples: Sequence[float]) -> Trend:
    """Direction of the most recent move (exact float comparison)."""
    if len(samples) < 2:
        return Trend.NEUTRAL
    prev, last = samples[-2], samples[-1]
    if last > prev:
        return Trend.UP
    if last < prev:
        return Trend.DOWN
    return Trend.NEUTRAL


def graph_size(viewport_width: int, viewport_height: int) -> tuple[int, int]:
    """Chart (width, height) for a viewport."""
    width = max(MIN_GRAPH_WIDTH, viewport_width - 4)
    height = max(MIN_GRAPH_HEIGHT, min(MAX_GRAPH_HEIGHT, viewport_height - 6))
    return width, height


def _build_chart(samples: Sequence[float], width: int, height: int) -> str:
    with _PLOT_LOCK:
        plt.clf()
        plt.plotsize(width, height)
        plt.theme("clear")
        low, high = stats(samples)
        if low == high:
            # Flat series: give plotext a non-empty y range
            plt.ylim(low - 1, high + 1)
        plt.plot(list(samples))
        return plt.build()


def _value_line(last: float, low: float, high: float, unit: str, rate: float) -> str:
    return (
        f"Last: {format_with_spaces(last * rate)}{unit}  "
        f"Min: {format_with_spaces(low * rate)}{unit}  "
        f"Max: {format_with_spaces(high * rate)}{unit}"
    )


def _to_terminal(text: Text, width: int, color_system: str | None) -> str:
    console = Console(
        width=max(width, MIN_GRAPH_WIDTH),
        color_system=color_system,
        force_terminal=color_system is not None,
        legacy_windows=False,
    )
    with console.capture() as capture:
        console.print(text, end="", soft_wrap=True)
    return capture.get()


def render(
    snapshot: Snapshot,
    width: int,
    height: int,
    *,
    show_help: bool = False,
    display: DisplayConfig = DEFAULT_DISPLAY,
    keymap: KeyMap = DEFAULT_KEYMAP,
    now: datetime | None = None,
) -> str:
    """
    Render a history snapshot for a viewport of width x height cells.

    Args:
        snapshot: History copy taken outside of rendering
        width: Viewport width in columns
        height: Viewport height in rows
        show_help: Full key help instead of the one-line summary
        display: Colors, labels and units
        keymap: Bindings listed in the footer
        now: Clock reading for the Δ line (defaults to the current local time)
    """
    samples = snapshot.samples
    if not samples:
        return display.placeholder

    help_text = keymap.full_help() if show_help else keymap.short_help()
    graph_w, graph_h = graph_size(width, height)
    # Title, gap, caption, Δ line, value lines and footer always stay on screen;
    # the chart gives up rows when the viewport is short
    fixed_rows = 8 + len(display.units) + help_text.count("\n")
    chart_rows = max(MIN_FITTED_HEIGHT, min(graph_h, height - fixed_rows))
    chart_lines = _build_chart(samples, graph_w, chart_rows).rstrip("\n").split("\n")
    chart = "\n".join(chart_lines[:chart_rows])

    low, high = stats(samples)
    caption = f"{display.pair_label} {snapshot.last:.2f}"
    pad = max(0, (graph_w - len(caption)) // 2)
    stamp = format_kitchen(now or datetime.now())

    body = Text(display.title)
    body.append("\n\n\n")
    body.append_text(Text.from_ansi(chart))
    body.append("\n" + " " * pad)
    body.append(caption, style=display.trend_color(trend(samples)))
    body.append("\n\n")
    body.append(f"Δ: {delta(samples):.2f} ({percent_change(samples):.2f}%)  {stamp}")
    for unit, rate in display.units:
        body.append("\n" + _value_line(snapshot.last, low, high, unit, rate))
    body.append("\n\n")
    body.append(help_text, style="dim")

    return _to_terminal(body, width, display.color_system)


def render_status(message: str) -> str:
    """Terminal text shown once the price stream has ended."""
    return f"{message}\n\nPress q to quit."
