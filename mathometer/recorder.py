from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import ExperimentConfig
from .persistence import ProgressStore, subject_str
from .planning import RunPlan, SessionPlan
from .questions import QuestionsSnapshot, RunQuestions

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def run_file_name(subject_id: int, run_index: int) -> str:
    return f"mathometer_subj{subject_str(subject_id)}_run_{run_index}.json"


def params_file_name(subject_id: int) -> str:
    return f"mathometer_subj{subject_str(subject_id)}_params.json"


def params_after_run_file_name(subject_id: int, run_index: int) -> str:
    return f"mathometer_subj{subject_str(subject_id)}_params_after_run_{run_index}.json"


@dataclass(frozen=True, slots=True)
class RunRecord:
    """Self-contained output of one completed run. Written once."""

    subject_id: int
    run_index: int
    run_number: int
    run_order: tuple[int, ...]
    true_side: int
    mapping: str
    anchor_time: float | None  # raw monotonic seconds of T0
    questions: QuestionsSnapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "subjectId": self.subject_id,
            "runIndex": self.run_index,
            "runNumber": self.run_number,
            "runOrder": list(self.run_order),
            "trueSide": self.true_side,
            "mapping": self.mapping,
            "anchorTime": self.anchor_time,
            "questions": self.questions.to_dict(),
        }


class ArtifactWriter:
    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def write_json(self, filename: str, payload: dict[str, Any]) -> Path:
        path = self._output_dir / filename
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(f"{path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            logger.exception("failed to write %s", path)
            raise
        logger.info("wrote %s", path)
        return path


class RunRecorder:
    def __init__(
        self,
        *,
        store: ProgressStore,
        writer: ArtifactWriter,
        config: ExperimentConfig,
    ) -> None:
        self._store = store
        self._writer = writer
        self._config = config

    def write_params_snapshot(self, plan: SessionPlan) -> Path:
        return self._writer.write_json(
            params_file_name(plan.subject_id),
            plan.params_snapshot(created_at_utc=_utc_now_iso()),
        )

    def finalize(
        self,
        *,
        plan: SessionPlan,
        run: RunPlan,
        buffer: RunQuestions,
        anchor_time: float | None,
    ) -> RunRecord:
        if buffer.run_index != run.run_index:
            raise ValueError(f"buffer is for run {buffer.run_index}, not run {run.run_index}")
        if len(buffer) != len(run.trials):
            raise ValueError(
                f"run {run.run_index}: {len(buffer)} of {len(run.trials)} trials recorded; "
                "partial runs are not persisted"
            )

        record = RunRecord(
            subject_id=plan.subject_id,
            run_index=run.run_index,
            run_number=run.run_number,
            run_order=tuple(plan.run_order),
            true_side=run.true_side,
            mapping=run.mapping,
            anchor_time=anchor_time,
            questions=buffer.freeze(),
        )

        self._writer.write_json(run_file_name(plan.subject_id, run.run_index), record.to_dict())
        progress = self._store.advance(plan.subject_id, run.run_index)

        if self._config.params_snapshot_each_run:
            self._writer.write_json(
                params_after_run_file_name(plan.subject_id, run.run_index),
                {} if progress is None else progress.to_dict(),
            )

        logger.info(
            "subject %s run %d (original %d) recorded: %d trials, %d responses",
            subject_str(plan.subject_id),
            run.run_index,
            run.run_number,
            len(record.questions),
            sum(1 for got in record.questions.got_response if got),
        )
        return record
