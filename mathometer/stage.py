from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .planning import RunPlan


class MediaError(RuntimeError):
    """A cue or stimulus asset could not be loaded or played."""


class SceneKind(str, Enum):
    BLANK = "blank"
    FIXATION = "fixation"
    VIDEO = "video"
    MESSAGE = "message"


@dataclass(frozen=True, slots=True)
class Scene:
    kind: SceneKind
    media: str | None = None
    text: str = ""
    loop: bool = False

    @classmethod
    def blank(cls) -> "Scene":
        return cls(kind=SceneKind.BLANK)

    @classmethod
    def fixation(cls) -> "Scene":
        return cls(kind=SceneKind.FIXATION, text="+")

    @classmethod
    def video(cls, ref: str, *, loop: bool = True) -> "Scene":
        return cls(kind=SceneKind.VIDEO, media=ref, loop=loop)

    @classmethod
    def message(cls, text: str) -> "Scene":
        return cls(kind=SceneKind.MESSAGE, text=text)


class Stage(Protocol):
    """Display, media and operator gates. Everything the trial core waits on.

    Media coroutines return on natural completion and raise MediaError on failure.
    Input arrives through the InputHub the stage was built with.
    """

    def show(self, scene: Scene) -> None: ...

    async def next_frame(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...

    async def play_audio(self, ref: str) -> None: ...

    async def play_audio_with_video(self, audio_ref: str, video_ref: str) -> None: ...

    async def confirm_run(self, plan: "RunPlan", *, subject_id: int) -> None: ...

    async def wait_ready(self, plan: "RunPlan") -> None: ...

    async def show_end(self) -> None: ...
