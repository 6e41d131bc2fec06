"""One subject session: the remaining runs, in execution order, from confirmation to record."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .clock import Clock, TrialClock
from .config import AnchorPolicy, ExperimentConfig
from .persistence import subject_str
from .planning import RunPlan, SessionPlan
from .recorder import RunRecord, RunRecorder
from .responses import InputHub
from .stage import Scene, Stage
from .trial import SessionContext, TrialPhase, TrialStateMachine

logger = logging.getLogger(__name__)

_PHASE_LABELS = {
    TrialPhase.CUE: "BEEP",
    TrialPhase.STIMULUS: "SENTENCE",
    TrialPhase.RESPONSE: "RESPONSE (tap left/right | keys: {left}=left, {right}=right)",
    TrialPhase.FEEDBACK: "FEEDBACK",
    TrialPhase.POST_GAP: "",
    TrialPhase.REST: "REST",
}


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    subject_id: int
    phase: str
    run_index: int | None
    run_number: int | None
    trial_index: int | None
    trials_per_run: int
    debug_label: str


class SessionRunner:
    def __init__(self, context: SessionContext) -> None:
        self._ctx = context
        self._machine = TrialStateMachine(context)
        self._status = "idle"
        self._run: RunPlan | None = None
        self._stop_requested = False
        self._records: list[RunRecord] = []

    @property
    def context(self) -> SessionContext:
        return self._ctx

    @property
    def records(self) -> list[RunRecord]:
        return list(self._records)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Stop before the next trial. The partial run is discarded."""

        self._stop_requested = True

    async def run(self) -> list[RunRecord]:
        ctx = self._ctx
        cfg = ctx.config
        plan = ctx.plan
        stage = ctx.stage
        subj = subject_str(plan.subject_id)

        remaining = plan.remaining_runs()
        if not remaining:
            logger.info("subject %s has already completed all %d runs", subj, len(plan.runs))
            self._status = "complete"
            return []

        logger.info(
            "subject %s: starting at run %d of %d (run order %s)",
            subj,
            remaining[0].run_index,
            len(plan.runs),
            list(plan.run_order),
        )

        for i, run in enumerate(remaining):
            if self._stop_requested:
                break
            self._run = run
            first = i == 0

            if first or cfg.confirm_each_run:
                self._status = "run_confirm"
                await stage.confirm_run(run, subject_id=plan.subject_id)

            if cfg.anchor_policy is AnchorPolicy.PER_RUN or not ctx.trial_clock.anchored:
                self._status = "ready"
                await stage.wait_ready(run)
                t0 = ctx.trial_clock.set_anchor()
                logger.info("run %d: anchor time set at %.6f", run.run_index, t0)

            self._status = "fixation"
            stage.show(Scene.fixation())
            await stage.sleep(cfg.timing.fixation_s)

            self._status = "trials"
            record = await self._run_trials(run)
            if record is None:
                break
            self._records.append(record)

            if cfg.anchor_policy is AnchorPolicy.PER_RUN:
                ctx.trial_clock.clear_anchor()

        self._run = None
        if self._stop_requested:
            self._status = "stopped"
            logger.warning("subject %s: session stopped by operator", subj)
            return list(self._records)

        self._status = "end"
        await stage.show_end()
        self._status = "complete"
        logger.info("subject %s: session complete (%d run(s) recorded)", subj, len(self._records))
        return list(self._records)

    async def _run_trials(self, run: RunPlan) -> RunRecord | None:
        record: RunRecord | None = None
        try:
            for trial in run.trials:
                if self._stop_requested:
                    self._machine.discard()
                    return None
                record = await self._machine.run_trial(run, trial)
        except asyncio.CancelledError:
            self._machine.discard()
            raise
        return record

    def snapshot(self) -> SessionSnapshot:
        trial = self._machine.current_trial
        run = self._run
        phase = self._machine.phase
        if self._status == "trials" and phase is not TrialPhase.IDLE:
            phase_name = phase.value
            template = _PHASE_LABELS.get(phase, "")
            label = template.format(left=self._ctx.config.left_key, right=self._ctx.config.right_key)
            if phase is TrialPhase.CUE and trial is not None:
                label = f"{label} (run {trial.run_index} / orig {trial.run_number} trial {trial.trial_index})"
        else:
            phase_name = self._status
            label = self._status.upper() if self._status == "fixation" else ""
        return SessionSnapshot(
            subject_id=self._ctx.subject_id,
            phase=phase_name,
            run_index=None if run is None else run.run_index,
            run_number=None if run is None else run.run_number,
            trial_index=None if trial is None else trial.trial_index,
            trials_per_run=self._ctx.config.trials_per_run,
            debug_label=label,
        )


def build_session_runner(
    *,
    plan: SessionPlan,
    config: ExperimentConfig,
    stage: Stage,
    inputs: InputHub,
    clock: Clock,
    recorder: RunRecorder,
) -> SessionRunner:
    context = SessionContext(
        plan=plan,
        config=config,
        stage=stage,
        inputs=inputs,
        trial_clock=TrialClock(clock=clock, frames=stage),
        recorder=recorder,
    )
    return SessionRunner(context)
