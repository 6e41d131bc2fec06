"""Deterministic stand-ins for the clock, the stage and the content tables.

FakeStage advances a FakeClock instead of waiting: ``sleep`` jumps the clock,
``next_frame`` snaps it to the next 60 Hz boundary and audio takes a fixed
duration. Responses are scripted per response window: each armed ``sleep``
consumes one entry of ``window_script`` and delivers its presses at the given
offsets from the window opening.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from mathometer.config import ExperimentConfig, TimingConfig
from mathometer.content import CharacterAssociation, SentenceInfo
from mathometer.persistence import ProgressStore
from mathometer.planning import RunPlan, SessionPlan, build_session_plan
from mathometer.recorder import ArtifactWriter, RunRecorder
from mathometer.responses import InputEvent, InputHub
from mathometer.session import SessionRunner, build_session_runner
from mathometer.stage import MediaError, Scene

FPS = 60.0

# One response press: (offset from window opening in seconds, key name or tap x in [0, 1]).
Press = tuple[float, str | float]


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


@dataclass
class FakeStage:
    clock: FakeClock
    inputs: InputHub
    audio_s: float = 0.75
    failing: set[str] = field(default_factory=set)
    hanging: set[str] = field(default_factory=set)
    window_script: list[list[Press]] = field(default_factory=list)
    audio_presses: list[str] = field(default_factory=list)
    on_gate: Callable[[str, int | None], None] | None = None

    scenes: list[Scene] = field(default_factory=list)
    gates: list[tuple[str, int | None]] = field(default_factory=list)
    played: list[str] = field(default_factory=list)
    windows_opened: list[float] = field(default_factory=list)

    def show(self, scene: Scene) -> None:
        self.scenes.append(scene)

    async def next_frame(self) -> float:
        frame = math.floor(self.clock.t * FPS + 1e-9) + 1
        self.clock.t = frame / FPS
        await asyncio.sleep(0)
        return self.clock.t

    async def sleep(self, seconds: float) -> None:
        start = self.clock.t
        end = start + float(seconds)
        if self.inputs.armed:
            self.windows_opened.append(start)
            presses = self.window_script.pop(0) if self.window_script else []
            events = [_event(start + offset, what) for offset, what in presses if offset <= seconds]
            for event in sorted(events, key=lambda e: e.t):
                self.clock.t = event.t
                self.inputs.dispatch([event])
        self.clock.t = end
        await asyncio.sleep(0)

    async def play_audio(self, ref: str) -> None:
        self.played.append(ref)
        if ref in self.failing:
            raise MediaError(f"cannot load {ref}")
        if ref in self.hanging:
            await asyncio.Event().wait()
        for key in self.audio_presses:
            self.inputs.dispatch([InputEvent.keypress(key, self.clock.t)])
        self.clock.advance(self.audio_s)
        await asyncio.sleep(0)

    async def play_audio_with_video(self, audio_ref: str, video_ref: str) -> None:
        self.show(Scene.video(video_ref, loop=True))
        await self.play_audio(audio_ref)

    async def confirm_run(self, plan: RunPlan, *, subject_id: int) -> None:
        self._gate("confirm", plan.run_index)

    async def wait_ready(self, plan: RunPlan) -> None:
        self._gate("ready", plan.run_index)

    async def show_end(self) -> None:
        self._gate("end", None)

    def _gate(self, name: str, run_index: int | None) -> None:
        self.gates.append((name, run_index))
        if self.on_gate is not None:
            self.on_gate(name, run_index)


def _event(t: float, what: str | float) -> InputEvent:
    if isinstance(what, str):
        return InputEvent.keypress(what, t)
    return InputEvent.tap(what, t)


def small_config(*, total_runs: int = 2, trials_per_run: int = 3, **overrides: object) -> ExperimentConfig:
    timing = overrides.pop("timing", TimingConfig(media_fallback_s=0.2))
    return ExperimentConfig(
        total_runs=total_runs,
        trials_per_run=trials_per_run,
        timing=timing,  # type: ignore[arg-type]
        **overrides,  # type: ignore[arg-type]
    )


def make_content(
    *,
    total_runs: int,
    per_run: int,
    characters: tuple[str, ...] = ("P1", "P2", "P3", "P4"),
) -> tuple[list[SentenceInfo], list[CharacterAssociation]]:
    sentences = [
        SentenceInfo(
            sentence_id=f"{run}{k:02d}",
            run=run,
            category="Calc" if k % 2 else "Geo",
            theme=f"Th{k % 3}",
            truth_value="True" if k % 2 else "False",
        )
        for run in range(1, total_runs + 1)
        for k in range(1, per_run + 1)
    ]
    associations = [
        CharacterAssociation(run=run, characters=tuple(characters[k % len(characters)] for k in range(per_run)))
        for run in range(1, total_runs + 1)
    ]
    return sentences, associations


@dataclass
class Harness:
    clock: FakeClock
    stage: FakeStage
    store: ProgressStore
    recorder: RunRecorder
    plan: SessionPlan
    runner: SessionRunner
    output_dir: Path


def make_harness(
    tmp_path: Path,
    *,
    subject_id: int = 7,
    config: ExperimentConfig | None = None,
    seed: int = 1234,
    store: ProgressStore | None = None,
) -> Harness:
    cfg = config or small_config()
    clock = FakeClock(t=100.0)
    inputs = InputHub(left_key=cfg.left_key, right_key=cfg.right_key)
    stage = FakeStage(clock=clock, inputs=inputs)
    store = store or ProgressStore(tmp_path / "progress.sqlite3", total_runs=cfg.total_runs)
    output_dir = tmp_path / "runs"
    recorder = RunRecorder(store=store, writer=ArtifactWriter(output_dir), config=cfg)
    sentences, associations = make_content(total_runs=cfg.total_runs, per_run=cfg.trials_per_run)
    plan = build_session_plan(
        subject_id=subject_id,
        sentences=sentences,
        associations=associations,
        store=store,
        seed=seed,
        config=cfg,
    )
    runner = build_session_runner(
        plan=plan,
        config=cfg,
        stage=stage,
        inputs=inputs,
        clock=clock,
        recorder=recorder,
    )
    return Harness(
        clock=clock,
        stage=stage,
        store=store,
        recorder=recorder,
        plan=plan,
        runner=runner,
        output_dir=output_dir,
    )
