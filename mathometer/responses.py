"""Two-channel response capture: keyboard keys and left/right screen taps.

First valid input wins. The InputHub forwards events only while a capture is
armed through ``InputHub.session``; leaving the ``with`` block disarms both
channels on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .clock import Stamp, TrialClock

if TYPE_CHECKING:
    from .stage import Stage

logger = logging.getLogger(__name__)

TRUE_LABEL = "True"
FALSE_LABEL = "False"
NO_RESPONSE = "NA"
NO_RT = -1.0


class Side(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class InputChannel(str, Enum):
    KEYBOARD = "keyboard"
    POINTER = "pointer"


def true_response_side(true_side: int) -> Side:
    # trueSide 1: True is right; trueSide 2: True is left.
    if true_side == 1:
        return Side.RIGHT
    if true_side == 2:
        return Side.LEFT
    raise ValueError(f"true_side must be 1 or 2, got {true_side!r}")


def mapping_string(true_side: int, *, left_key: str = "y", right_key: str = "b") -> str:
    if true_response_side(true_side) is Side.RIGHT:
        return f"True=right({right_key}/tap-right), False=left({left_key}/tap-left)"
    return f"True=left({left_key}/tap-left), False=right({right_key}/tap-right)"


def truth_label(side: Side | None, true_side: int) -> str:
    if side is None:
        return NO_RESPONSE
    return TRUE_LABEL if side is true_response_side(true_side) else FALSE_LABEL


@dataclass(frozen=True, slots=True)
class InputEvent:
    channel: InputChannel
    t: float
    key: str | None = None
    x_norm: float | None = None  # 0.0 = left edge, 1.0 = right edge

    @classmethod
    def keypress(cls, key: str, t: float) -> "InputEvent":
        return cls(channel=InputChannel.KEYBOARD, t=float(t), key=str(key))

    @classmethod
    def tap(cls, x_norm: float, t: float) -> "InputEvent":
        return cls(channel=InputChannel.POINTER, t=float(t), x_norm=float(x_norm))


def pointer_to_side(x_norm: float | None) -> Side | None:
    if x_norm is None or not (0.0 <= x_norm <= 1.0):
        return None
    return Side.LEFT if x_norm < 0.5 else Side.RIGHT


@dataclass(slots=True)
class ResponseCapture:
    """Per-trial latch. Only the first valid offer is kept."""

    side: Side | None = None
    channel: InputChannel | None = None
    t: float | None = None
    ignored: int = 0

    @property
    def latched(self) -> bool:
        return self.side is not None

    def offer(self, *, channel: InputChannel, side: Side | None, t: float) -> bool:
        if side is None:
            return False
        if self.latched:
            self.ignored += 1
            return False
        self.side = side
        self.channel = channel
        self.t = float(t)
        return True


class InputHub:
    def __init__(self, *, left_key: str = "y", right_key: str = "b") -> None:
        self._key_map: dict[str, Side] = {
            left_key.lower(): Side.LEFT,
            right_key.lower(): Side.RIGHT,
        }
        self._active: ResponseCapture | None = None

    @property
    def armed(self) -> bool:
        return self._active is not None

    @contextmanager
    def session(self, capture: ResponseCapture) -> Iterator[ResponseCapture]:
        if self._active is not None:
            raise RuntimeError("an input session is already armed")
        self._active = capture
        try:
            yield capture
        finally:
            self._active = None

    def resolve(self, event: InputEvent) -> Side | None:
        if event.channel is InputChannel.KEYBOARD:
            if event.key is None:
                return None
            return self._key_map.get(event.key.lower())
        return pointer_to_side(event.x_norm)

    def dispatch(self, events: Iterable[InputEvent]) -> bool:
        """Offer a batch of events, earliest first. Returns True if one was latched."""

        capture = self._active
        batch = sorted(events, key=lambda e: e.t)
        if capture is None:
            if batch:
                logger.debug("ignoring %d input event(s): no response window open", len(batch))
            return False
        latched = False
        for event in batch:
            if capture.offer(channel=event.channel, side=self.resolve(event), t=event.t):
                latched = True
        return latched


@dataclass(frozen=True, slots=True)
class ResponseOutcome:
    got_response: bool
    side: Side | None
    channel: InputChannel | None
    label: str
    rt: float  # response time relative to the anchor, NO_RT when absent
    latency: float  # response time relative to window opening, NO_RT when absent


class ResponseArbiter:
    """Runs one bounded response window and evaluates the captured side."""

    def __init__(
        self,
        *,
        hub: InputHub,
        trial_clock: TrialClock,
        stage: "Stage",
        window_s: float,
    ) -> None:
        if window_s <= 0.0:
            raise ValueError("window_s must be > 0")
        self._hub = hub
        self._clock = trial_clock
        self._stage = stage
        self._window_s = float(window_s)

    async def collect(
        self,
        *,
        true_side: int,
        on_open: Callable[[Stamp], None] | None = None,
    ) -> ResponseOutcome:
        capture = ResponseCapture()
        with self._hub.session(capture):
            opened = await self._clock.sync()
            if on_open is not None:
                on_open(opened)
            await self._stage.sleep(self._window_s)
        return self.evaluate(capture, true_side=true_side, opened=opened)

    def evaluate(self, capture: ResponseCapture, *, true_side: int, opened: Stamp) -> ResponseOutcome:
        if not capture.latched or capture.t is None:
            return ResponseOutcome(
                got_response=False,
                side=None,
                channel=None,
                label=NO_RESPONSE,
                rt=NO_RT,
                latency=NO_RT,
            )
        rel = self._clock.relative(capture.t)
        return ResponseOutcome(
            got_response=True,
            side=capture.side,
            channel=capture.channel,
            label=truth_label(capture.side, true_side),
            rt=NO_RT if rel is None else rel,
            latency=max(0.0, capture.t - opened.raw_s),
        )
