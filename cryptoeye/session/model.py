"""
Per-session state machine.

The session is driven by events (resize, sample, key press, end of stream).
update() is pure: it returns the next state plus the commands the controller
must execute. Only one ReceiveNext is ever outstanding, because it is issued
exactly once per received sample (and once at start).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

from ..ui.keys import DEFAULT_KEYMAP, KeyMap


STREAM_CLOSED_STATUS = "stream closed"


class Phase(Enum):
    AWAITING_SAMPLE = "awaiting_sample"
    STREAM_CLOSED = "stream_closed"  # terminal for the stream, session stays interactive
    QUIT = "quit"


@dataclass(frozen=True)
class SessionState:
    width: int = 80
    height: int = 24
    phase: Phase = Phase.AWAITING_SAMPLE
    show_help: bool = False


# Events

@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class SampleReceived:
    value: float


@dataclass(frozen=True)
class KeyPress:
    key: str  # normalized binding name, see ui.keys.key_name()


@dataclass(frozen=True)
class StreamEnded:
    pass


Event = Union[Resize, SampleReceived, KeyPress, StreamEnded]


# Commands

@dataclass(frozen=True)
class Append:
    value: float


@dataclass(frozen=True)
class Render:
    pass


@dataclass(frozen=True)
class ReceiveNext:
    pass


@dataclass(frozen=True)
class ShowStatus:
    text: str


@dataclass(frozen=True)
class Quit:
    pass


Command = Union[Append, Render, ReceiveNext, ShowStatus, Quit]


def update(state: SessionState, event: Event, keymap: KeyMap = DEFAULT_KEYMAP) -> tuple[SessionState, list[Command]]:
    """Apply one event; return the new state and the commands to run, in order."""
    if state.phase is Phase.QUIT:
        return state, []

    if isinstance(event, SampleReceived):
        if state.phase is not Phase.AWAITING_SAMPLE:
            return state, []
        return state, [Append(event.value), Render(), ReceiveNext()]

    if isinstance(event, StreamEnded):
        if state.phase is Phase.STREAM_CLOSED:
            return state, []
        return replace(state, phase=Phase.STREAM_CLOSED), [ShowStatus(STREAM_CLOSED_STATUS)]

    if isinstance(event, Resize):
        # The SSH writer has no retained screen to reflow, so a new geometry
        # is only visible once the frame is drawn again
        new_state = replace(state, width=event.width, height=event.height)
        if state.phase is Phase.STREAM_CLOSED:
            return new_state, []
        return new_state, [Render()]

    if isinstance(event, KeyPress):
        if keymap.quit.matches(event.key):
            return replace(state, phase=Phase.QUIT), [Quit()]
        if keymap.help.matches(event.key):
            new_state = replace(state, show_help=not state.show_help)
            if state.phase is Phase.STREAM_CLOSED:
                return new_state, []
            return new_state, [Render()]
        return state, []

    raise TypeError(f"Unknown session event: {event!r}")
