from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class FrameSource(Protocol):
    async def next_frame(self) -> float:
        """Suspend until the next frame is presented; return its time on the shared Clock."""


@dataclass(frozen=True, slots=True)
class Stamp:
    raw_s: float
    rel_s: float | None  # None when no anchor is set


class TrialClock:
    """Event timestamps relative to a per-run anchor time (T0).

    - immediate(): the instant of the call ("intent issued now").
    - sync(): the next presented frame ("the stimulus became visible").
    Before set_anchor() every relative value is None.
    """

    def __init__(self, *, clock: Clock, frames: FrameSource) -> None:
        self._clock = clock
        self._frames = frames
        self._anchor_s: float | None = None

    @property
    def anchor_s(self) -> float | None:
        return self._anchor_s

    @property
    def anchored(self) -> bool:
        return self._anchor_s is not None

    def set_anchor(self) -> float:
        self._anchor_s = self._clock.now()
        return self._anchor_s

    def clear_anchor(self) -> None:
        self._anchor_s = None

    def now(self) -> float:
        return self._clock.now()

    def relative(self, t_raw: float | None) -> float | None:
        if self._anchor_s is None or t_raw is None:
            return None
        return float(t_raw) - self._anchor_s

    def immediate(self) -> Stamp:
        t = self._clock.now()
        return Stamp(raw_s=t, rel_s=self.relative(t))

    async def sync(self) -> Stamp:
        t = await self._frames.next_frame()
        return Stamp(raw_s=t, rel_s=self.relative(t))
