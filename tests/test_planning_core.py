from __future__ import annotations

import pytest

from mathometer.config import ExperimentConfig
from mathometer.content import (
    BEEP_REF,
    FEEDBACK_NOT_OK_REF,
    FEEDBACK_OK_REF,
    CharacterAssociation,
    ConfigurationError,
)
from mathometer.persistence import ProgressRecord, ProgressStore
from mathometer.planning import build_session_plan, sentence_name
from mathometer.responses import Side
from tests.fakes import make_content


def _plan(tmp_path, *, subject_id: int = 7, seed: int = 11, config: ExperimentConfig | None = None, content=None):
    cfg = config or ExperimentConfig()
    sentences, associations = content or make_content(total_runs=cfg.total_runs, per_run=cfg.trials_per_run)
    store = ProgressStore(tmp_path / "p.sqlite3", total_runs=cfg.total_runs)
    return build_session_plan(
        subject_id=subject_id,
        sentences=sentences,
        associations=associations,
        store=store,
        seed=seed,
        config=cfg,
    )


def test_full_plan_shape(tmp_path) -> None:
    plan = _plan(tmp_path)
    assert sorted(plan.run_order) == [1, 2, 3, 4, 5, 6]
    assert len(plan.runs) == 6
    for i, run in enumerate(plan.runs):
        assert run.run_index == i + 1
        assert run.run_number == plan.run_order[i]
        assert len(run.trials) == 20
        assert [t.trial_index for t in run.trials] == list(range(1, 21))
        ids = [t.sentence_id for t in run.trials]
        assert len(set(ids)) == 20
        # Every sentence comes from the run's own pool.
        assert all(sid.startswith(str(run.run_number)) for sid in ids)


def test_true_side_alternates_between_runs(tmp_path) -> None:
    plan = _plan(tmp_path)
    sides = [r.true_side for r in plan.runs]
    assert sides[0] in (1, 2)
    for prev, cur in zip(sides, sides[1:]):
        assert cur == 3 - prev
    for run in plan.runs:
        expected = Side.RIGHT if run.true_side == 1 else Side.LEFT
        assert all(t.true_response is expected for t in run.trials)


def test_characters_rotate_by_subject(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=1, trials_per_run=4)
    sentences, _ = make_content(total_runs=1, per_run=4)
    associations = [CharacterAssociation(run=1, characters=("P1", "P2", "P3", "P4"))]
    content = (sentences, associations)

    plan5 = _plan(tmp_path / "a", subject_id=5, config=cfg, content=content)
    plan8 = _plan(tmp_path / "b", subject_id=8, config=cfg, content=content)
    assert [t.character_id for t in plan5.runs[0].trials] == ["P4", "P1", "P2", "P3"]
    assert [t.character_id for t in plan8.runs[0].trials] == ["P1", "P2", "P3", "P4"]
    assert [t.gender for t in plan5.runs[0].trials] == ["F", "M", "F", "M"]


def test_media_names(tmp_path) -> None:
    plan = _plan(tmp_path, config=ExperimentConfig(total_runs=2, trials_per_run=3))
    for run in plan.runs:
        side = "Right" if run.true_side == 1 else "Left"
        for t in run.trials:
            assert t.beep == BEEP_REF
            assert t.robot_ok == FEEDBACK_OK_REF
            assert t.robot_not_ok == FEEDBACK_NOT_OK_REF
            assert t.audio_file == (
                f"Sentences/Sentence{t.sentence_id}_{t.category}_{t.theme}_{t.truth_value}_Gender_{t.gender}.wav"
            )
            assert sentence_name(t) == t.audio_file.split("/")[-1]
            assert t.anim_sentence_file == f"Animations/SentenceTrue{side}{t.character_id}.MP4"
            assert t.anim_wait_file == f"Animations/WaitTrue{side}{t.character_id}.MP4"


def test_animation_indices(tmp_path) -> None:
    plan = _plan(tmp_path, config=ExperimentConfig(total_runs=2, trials_per_run=4))
    for run in plan.runs:
        for t in run.trials:
            c = int(t.character_id[1:])
            offset = 1 if run.true_side == 1 else 2
            assert t.animation_name_idx == (4 * (c - 1) + offset, 4 * (c - 1) + offset + 2, 17, 18)


def test_same_seed_same_plan(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=3, trials_per_run=5)
    a = _plan(tmp_path / "a", seed=77, config=cfg)
    b = _plan(tmp_path / "b", seed=77, config=cfg)
    assert a == b


def test_reload_keeps_run_order_and_progress(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=3, trials_per_run=2)
    store = ProgressStore(tmp_path / "p.sqlite3", total_runs=3)
    store.save(4, ProgressRecord(run_order=(3, 1, 2), last_run_completed=1))
    sentences, associations = make_content(total_runs=3, per_run=2)
    plan = build_session_plan(
        subject_id=4, sentences=sentences, associations=associations, store=store, seed=1, config=cfg
    )
    assert plan.run_order == (3, 1, 2)
    assert plan.last_run_completed == 1
    assert [r.run_index for r in plan.remaining_runs()] == [2, 3]
    assert [r.run_number for r in plan.remaining_runs()] == [1, 2]


def test_short_sentence_pool_names_run_and_shortfall(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=2, trials_per_run=5)
    sentences, associations = make_content(total_runs=2, per_run=5)
    sentences = [s for s in sentences if not (s.run == 2 and s.sentence_id.endswith(("04", "05")))]
    with pytest.raises(ConfigurationError) as excinfo:
        _plan(tmp_path, config=cfg, content=(sentences, associations))
    assert excinfo.value.run_number == 2
    assert "short by 2" in str(excinfo.value)


def test_short_character_list(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=2, trials_per_run=5)
    sentences, associations = make_content(total_runs=2, per_run=5)
    associations = [associations[0], CharacterAssociation(run=2, characters=("P1", "P2"))]
    with pytest.raises(ConfigurationError) as excinfo:
        _plan(tmp_path, config=cfg, content=(sentences, associations))
    assert excinfo.value.run_number == 2
    assert "short by 3" in str(excinfo.value)


def test_missing_association(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=2, trials_per_run=2)
    sentences, associations = make_content(total_runs=2, per_run=2)
    with pytest.raises(ConfigurationError):
        _plan(tmp_path, config=cfg, content=(sentences, associations[:1]))


def test_unknown_character(tmp_path) -> None:
    cfg = ExperimentConfig(total_runs=1, trials_per_run=2)
    sentences, _ = make_content(total_runs=1, per_run=2)
    with pytest.raises(ConfigurationError):
        _plan(tmp_path, config=cfg, content=(sentences, [CharacterAssociation(run=1, characters=("P1", "P9"))]))


def test_subject_must_be_positive(tmp_path) -> None:
    with pytest.raises(ValueError):
        _plan(tmp_path, subject_id=0)


def test_params_snapshot(tmp_path) -> None:
    plan = _plan(tmp_path, config=ExperimentConfig(total_runs=2, trials_per_run=3))
    snap = plan.params_snapshot(created_at_utc="2024-01-01T00:00:00Z")
    assert snap["subjectNumber"] == 7
    assert snap["runOrder"] == list(plan.run_order)
    assert snap["lastRunCompleted"] == 0
    assert len(snap["runs"]) == 2
    run0 = snap["runs"][0]
    assert run0["trueSide"] == plan.runs[0].true_side
    assert len(run0["sentenceNames"]) == 3
    assert all("/" not in name for name in run0["sentenceNames"])
