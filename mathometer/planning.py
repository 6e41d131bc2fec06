"""Per-subject, per-run trial plans.

The run order is obtained from (or created in) the progress store, so a
reload for the same subject always sees the same order. Everything else
(stimulus order within a run, the first run's true side) is drawn from an
RNG seeded at construction; the seed is recorded in the params snapshot.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .assignment import alternate, permute, random_side, rotate
from .config import ExperimentConfig, validate_config
from .content import (
    BEEP_REF,
    FEEDBACK_NOT_OK_REF,
    FEEDBACK_OK_REF,
    CharacterAssociation,
    ConfigurationError,
    SentenceInfo,
    sentence_animation_ref,
    sentence_audio_ref,
    wait_animation_ref,
)
from .persistence import ProgressRecord, ProgressStore, subject_str
from .responses import Side, mapping_string, true_response_side

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrialConfig:
    run_index: int
    run_number: int
    trial_index: int  # 1-based within the run
    true_side: int
    subject_id: int

    sentence_id: str
    category: str
    theme: str
    truth_value: str

    character_id: str
    gender: str

    true_response: Side
    animation_name_idx: tuple[int, int, int, int]

    beep: str
    audio_file: str
    anim_sentence_file: str
    anim_wait_file: str
    robot_ok: str
    robot_not_ok: str

    @property
    def row(self) -> int:
        return self.trial_index - 1

    def media_refs(self) -> tuple[str, ...]:
        return (
            self.beep,
            self.audio_file,
            self.anim_sentence_file,
            self.anim_wait_file,
            self.robot_ok,
            self.robot_not_ok,
        )


@dataclass(frozen=True, slots=True)
class RunPlan:
    run_index: int  # execution order, 1-based
    run_number: int  # original run identity, from the run order
    true_side: int
    trials: tuple[TrialConfig, ...]

    @property
    def mapping(self) -> str:
        return mapping_string(self.true_side)

    def params_dict(self) -> dict[str, Any]:
        return {
            "runIndex": self.run_index,
            "runNumber": self.run_number,
            "trueSide": self.true_side,
            "sentenceNames": [sentence_name(t) for t in self.trials],
            "characters": [t.character_id for t in self.trials],
            "genders": [t.gender for t in self.trials],
            "sentenceCateg": [t.category for t in self.trials],
            "sentenceTheme": [t.theme for t in self.trials],
            "sentenceTruth": [t.truth_value for t in self.trials],
            "sentenceGender": [t.gender for t in self.trials],
            "animationNameIdx": [list(t.animation_name_idx) for t in self.trials],
        }


@dataclass(frozen=True, slots=True)
class SessionPlan:
    subject_id: int
    run_order: tuple[int, ...]
    last_run_completed: int
    runs: tuple[RunPlan, ...]
    seed: int

    @property
    def is_complete(self) -> bool:
        return self.last_run_completed >= len(self.runs)

    def remaining_runs(self) -> tuple[RunPlan, ...]:
        return tuple(r for r in self.runs if r.run_index > self.last_run_completed)

    def params_snapshot(self, *, created_at_utc: str = "") -> dict[str, Any]:
        """Full plan minus runtime-only fields (the params artifact)."""

        return {
            "subjectNumber": self.subject_id,
            "runOrder": list(self.run_order),
            "lastRunCompleted": self.last_run_completed,
            "seed": self.seed,
            "runs": [r.params_dict() for r in self.runs],
            "createdAt_utc": created_at_utc,
        }


def sentence_name(trial: TrialConfig) -> str:
    return trial.audio_file.rsplit("/", 1)[-1]


def obtain_progress(
    store: ProgressStore,
    *,
    subject_id: int,
    total_runs: int,
    rng: random.Random,
) -> ProgressRecord:
    """Return the subject's stored progress, creating and persisting a new run order if absent."""

    existing = store.load(subject_id)
    if existing is not None:
        logger.info(
            "subject %s: reusing run order %s (last run completed %d)",
            subject_str(subject_id),
            list(existing.run_order),
            existing.last_run_completed,
        )
        return existing

    run_order = tuple(i + 1 for i in permute(total_runs, rng))
    logger.info("subject %s: new run order %s", subject_str(subject_id), list(run_order))
    # save() keeps an order stored in the meantime by another session.
    return store.save(subject_id, ProgressRecord(run_order=run_order, last_run_completed=0))


class ParameterGenerator:
    def __init__(
        self,
        *,
        config: ExperimentConfig,
        store: ProgressStore,
        seed: int,
    ) -> None:
        validate_config(config)
        if store.total_runs != config.total_runs:
            raise ValueError("progress store and config disagree on total_runs")
        self._config = config
        self._store = store
        self._seed = int(seed)
        self._rng = random.Random(self._seed)

    def build(
        self,
        *,
        subject_id: int,
        sentences: Sequence[SentenceInfo],
        associations: Sequence[CharacterAssociation],
    ) -> SessionPlan:
        if int(subject_id) < 1:
            raise ValueError("subject_id must be >= 1")
        cfg = self._config

        progress = obtain_progress(
            self._store,
            subject_id=subject_id,
            total_runs=cfg.total_runs,
            rng=self._rng,
        )

        runs: list[RunPlan] = []
        for i, run_number in enumerate(progress.run_order):
            if i == 0:
                true_side = random_side(self._rng)
            else:
                true_side = alternate(runs[i - 1].true_side)
            runs.append(
                self._build_run(
                    subject_id=subject_id,
                    run_index=i + 1,
                    run_number=run_number,
                    true_side=true_side,
                    sentences=sentences,
                    associations=associations,
                )
            )

        return SessionPlan(
            subject_id=int(subject_id),
            run_order=progress.run_order,
            last_run_completed=progress.last_run_completed,
            runs=tuple(runs),
            seed=self._seed,
        )

    def _build_run(
        self,
        *,
        subject_id: int,
        run_index: int,
        run_number: int,
        true_side: int,
        sentences: Sequence[SentenceInfo],
        associations: Sequence[CharacterAssociation],
    ) -> RunPlan:
        cfg = self._config
        n_trials = cfg.trials_per_run
        n_characters = len(cfg.character_ids)

        pool = [s for s in sentences if s.run == run_number]
        if len(pool) < n_trials:
            raise ConfigurationError(
                f"run {run_number}: {len(pool)} sentences found, {n_trials} required "
                f"(short by {n_trials - len(pool)})",
                run_number=run_number,
            )
        ordered = [pool[k] for k in permute(len(pool), self._rng)][:n_trials]

        assoc = next((a for a in associations if a.run == run_number), None)
        if assoc is None:
            raise ConfigurationError(
                f"run {run_number}: no sentence-character association", run_number=run_number
            )
        if len(assoc.characters) < n_trials:
            raise ConfigurationError(
                f"run {run_number}: {len(assoc.characters)} characters listed, {n_trials} required "
                f"(short by {n_trials - len(assoc.characters)})",
                run_number=run_number,
            )
        chars = rotate(assoc.characters, subject_id % n_characters)[:n_trials]

        true_response = true_response_side(true_side)
        robot_ok_idx = 4 * n_characters + 1
        robot_not_ok_idx = 4 * n_characters + 2

        trials: list[TrialConfig] = []
        for t, (sentence, character_id) in enumerate(zip(ordered, chars)):
            gender = cfg.gender_of(character_id)
            if gender is None:
                raise ConfigurationError(
                    f"run {run_number}: unknown character {character_id!r}", run_number=run_number
                )
            c = cfg.character_ids.index(character_id) + 1
            base = 4 * (c - 1)
            if true_side == 1:
                sent_idx, wait_idx = base + 1, base + 3
            else:
                sent_idx, wait_idx = base + 2, base + 4

            trials.append(
                TrialConfig(
                    run_index=run_index,
                    run_number=run_number,
                    trial_index=t + 1,
                    true_side=true_side,
                    subject_id=int(subject_id),
                    sentence_id=sentence.sentence_id,
                    category=sentence.category,
                    theme=sentence.theme,
                    truth_value=sentence.truth_value,
                    character_id=character_id,
                    gender=gender,
                    true_response=true_response,
                    animation_name_idx=(sent_idx, wait_idx, robot_ok_idx, robot_not_ok_idx),
                    beep=BEEP_REF,
                    audio_file=sentence_audio_ref(sentence, gender),
                    anim_sentence_file=sentence_animation_ref(character_id, true_side),
                    anim_wait_file=wait_animation_ref(character_id, true_side),
                    robot_ok=FEEDBACK_OK_REF,
                    robot_not_ok=FEEDBACK_NOT_OK_REF,
                )
            )

        logger.debug(
            "run %d (original %d): true side %d, sentences %s",
            run_index,
            run_number,
            true_side,
            [s.sentence_id for s in ordered],
        )
        return RunPlan(
            run_index=run_index,
            run_number=run_number,
            true_side=true_side,
            trials=tuple(trials),
        )


def build_session_plan(
    *,
    subject_id: int,
    sentences: Sequence[SentenceInfo],
    associations: Sequence[CharacterAssociation],
    store: ProgressStore,
    seed: int,
    config: ExperimentConfig | None = None,
) -> SessionPlan:
    generator = ParameterGenerator(config=config or ExperimentConfig(), store=store, seed=seed)
    return generator.build(subject_id=subject_id, sentences=sentences, associations=associations)
