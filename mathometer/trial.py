from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum

from .clock import TrialClock
from .config import ExperimentConfig
from .planning import RunPlan, SessionPlan, TrialConfig
from .questions import OnsetSlot, RunQuestions
from .recorder import RunRecord, RunRecorder
from .responses import InputHub, ResponseArbiter
from .stage import MediaError, Scene, Stage

logger = logging.getLogger(__name__)


class TrialPhase(str, Enum):
    IDLE = "idle"
    CUE = "cue"
    STIMULUS = "stimulus"
    RESPONSE = "response"
    FEEDBACK = "feedback"
    POST_GAP = "post_gap"
    REST = "rest"
    FINALIZE = "finalize"


@dataclass(slots=True)
class SessionContext:
    """Everything a running session shares. One per subject session."""

    plan: SessionPlan
    config: ExperimentConfig
    stage: Stage
    inputs: InputHub
    trial_clock: TrialClock
    recorder: RunRecorder

    @property
    def subject_id(self) -> int:
        return self.plan.subject_id


class TrialStateMachine:
    """Drives one trial at a time through Cue -> Stimulus -> Response -> Feedback -> PostGap -> Rest.

    Owns the live RunQuestions buffer: allocated at trial row 0, handed to the
    RunRecorder after the last trial's rest, then dropped.
    """

    def __init__(self, context: SessionContext) -> None:
        self._ctx = context
        self._arbiter = ResponseArbiter(
            hub=context.inputs,
            trial_clock=context.trial_clock,
            stage=context.stage,
            window_s=context.config.timing.response_s,
        )
        self._phase = TrialPhase.IDLE
        self._current: TrialConfig | None = None
        self._buffer: RunQuestions | None = None

    @property
    def phase(self) -> TrialPhase:
        return self._phase

    @property
    def current_trial(self) -> TrialConfig | None:
        return self._current

    @property
    def rows_recorded(self) -> int:
        return 0 if self._buffer is None else len(self._buffer)

    def discard(self) -> None:
        if self._buffer is not None:
            logger.warning(
                "discarding partial run %d (%d trial(s) recorded)",
                self._buffer.run_index,
                len(self._buffer),
            )
        self._buffer = None
        self._current = None
        self._phase = TrialPhase.IDLE

    async def run_trial(self, run: RunPlan, trial: TrialConfig) -> RunRecord | None:
        """Run one trial. Returns the RunRecord after the run's last trial, else None."""

        if trial.run_index != run.run_index:
            raise ValueError(f"trial of run {trial.run_index} passed with run {run.run_index}")

        ctx = self._ctx
        stage = ctx.stage
        timing = ctx.config.timing
        clock = ctx.trial_clock

        if trial.row == 0 or self._buffer is None:
            self._buffer = RunQuestions(run_index=run.run_index)
        buffer = self._buffer
        row = buffer.begin_trial(trial)
        self._current = trial

        self._enter(TrialPhase.CUE)
        stage.show(Scene.fixation())
        await self._bounded(stage.play_audio(trial.beep), label=f"cue {trial.beep}")
        buffer.stamp(row, OnsetSlot.CUE, (await clock.sync()).rel_s)

        self._enter(TrialPhase.STIMULUS)
        buffer.stamp(row, OnsetSlot.STIMULUS, clock.immediate().rel_s)
        await self._bounded(
            stage.play_audio_with_video(trial.audio_file, trial.anim_sentence_file),
            label=f"stimulus {trial.audio_file}",
        )

        self._enter(TrialPhase.RESPONSE)
        stage.show(Scene.video(trial.anim_wait_file, loop=True))
        outcome = await self._arbiter.collect(
            true_side=trial.true_side,
            on_open=lambda opened: buffer.stamp(row, OnsetSlot.RESPONSE, opened.rel_s),
        )
        buffer.record_response(row, outcome)

        self._enter(TrialPhase.FEEDBACK)
        buffer.stamp(row, OnsetSlot.FEEDBACK, clock.immediate().rel_s)
        stage.show(Scene.video(trial.robot_ok if outcome.got_response else trial.robot_not_ok, loop=True))
        await stage.sleep(timing.feedback_s)

        self._enter(TrialPhase.POST_GAP)
        stage.show(Scene.fixation())
        await stage.sleep(timing.post_gap_s)

        self._enter(TrialPhase.REST)
        buffer.stamp(row, OnsetSlot.REST_START, (await clock.sync()).rel_s)
        await stage.sleep(timing.rest_s)
        buffer.stamp(row, OnsetSlot.REST_END, (await clock.sync()).rel_s)

        logger.debug(
            "run %d trial %d: response=%s rt=%.3f onsets=%s",
            run.run_index,
            trial.trial_index,
            outcome.label,
            outcome.rt,
            buffer.onsets[row],
        )

        if trial.trial_index < len(run.trials):
            self._enter(TrialPhase.IDLE)
            return None

        self._enter(TrialPhase.FINALIZE)
        record = ctx.recorder.finalize(
            plan=ctx.plan,
            run=run,
            buffer=buffer,
            anchor_time=clock.anchor_s,
        )
        self._buffer = None
        self._current = None
        self._enter(TrialPhase.IDLE)
        return record

    def _enter(self, phase: TrialPhase) -> None:
        self._phase = phase

    async def _bounded(self, media: Awaitable[None], *, label: str) -> None:
        """Await a media coroutine; a failure or a hang counts as completion."""

        limit_s = self._ctx.config.timing.media_fallback_s
        try:
            await asyncio.wait_for(media, timeout=limit_s)
        except MediaError as exc:
            logger.warning("%s failed: %s; advancing", label, exc)
        except asyncio.TimeoutError:
            logger.warning("%s did not finish within %.1fs; advancing", label, limit_s)
