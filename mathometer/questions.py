from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from .planning import TrialConfig
from .responses import NO_RESPONSE, NO_RT, ResponseOutcome

ONSET_SENTINEL = -1.0
N_ONSETS = 6


class OnsetSlot(IntEnum):
    CUE = 0  # beep end, frame-synced
    STIMULUS = 1  # sentence start, immediate
    RESPONSE = 2  # response window start, frame-synced
    FEEDBACK = 3  # feedback start, immediate
    REST_START = 4  # frame-synced
    REST_END = 5  # frame-synced


class OnsetAlreadyStamped(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class QuestionsSnapshot:
    onsets: tuple[tuple[float | None, ...], ...]
    response: tuple[str, ...]
    rt: tuple[float, ...]
    latency: tuple[float, ...]
    sentence_names: tuple[str, ...]
    truth_value: tuple[str, ...]
    type: tuple[str, ...]
    character: tuple[str, ...]
    got_response: tuple[bool, ...]
    channel: tuple[str | None, ...]

    def __len__(self) -> int:
        return len(self.onsets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "onsets": [list(row) for row in self.onsets],
            "response": list(self.response),
            "rt": list(self.rt),
            "latency": list(self.latency),
            "sentenceNames": list(self.sentence_names),
            "truthValue": list(self.truth_value),
            "type": list(self.type),
            "character": list(self.character),
            "gotResponse": list(self.got_response),
            "channel": list(self.channel),
        }


@dataclass(slots=True)
class RunQuestions:
    """Live per-run buffer. Rows are appended in trial order; each onset slot is written once."""

    run_index: int
    onsets: list[list[float | None]] = field(default_factory=list)
    response: list[str] = field(default_factory=list)
    rt: list[float] = field(default_factory=list)
    latency: list[float] = field(default_factory=list)
    sentence_names: list[str] = field(default_factory=list)
    truth_value: list[str] = field(default_factory=list)
    type: list[str] = field(default_factory=list)
    character: list[str] = field(default_factory=list)
    got_response: list[bool] = field(default_factory=list)
    channel: list[str | None] = field(default_factory=list)
    _stamped: list[set[int]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.onsets)

    def begin_trial(self, trial: TrialConfig) -> int:
        row = trial.row
        if trial.run_index != self.run_index:
            raise ValueError(f"trial belongs to run {trial.run_index}, buffer is for run {self.run_index}")
        if row != len(self.onsets):
            raise ValueError(f"trial row {row} out of order (expected {len(self.onsets)})")

        self.onsets.append([ONSET_SENTINEL] * N_ONSETS)
        self._stamped.append(set())
        self.response.append(NO_RESPONSE)
        self.rt.append(NO_RT)
        self.latency.append(NO_RT)
        self.sentence_names.append(trial.audio_file)
        self.truth_value.append(trial.truth_value)
        self.type.append(trial.category)
        self.character.append(trial.character_id)
        self.got_response.append(False)
        self.channel.append(None)
        return row

    def stamp(self, row: int, slot: OnsetSlot, value: float | None) -> None:
        stamped = self._stamped[row]
        if slot in stamped:
            raise OnsetAlreadyStamped(f"row {row}: onset slot {slot.name} already written")
        stamped.add(slot)
        self.onsets[row][slot] = value

    def record_response(self, row: int, outcome: ResponseOutcome) -> None:
        self.response[row] = outcome.label
        self.rt[row] = outcome.rt
        self.latency[row] = outcome.latency
        self.got_response[row] = outcome.got_response
        self.channel[row] = None if outcome.channel is None else outcome.channel.value

    def unstamped(self, row: int) -> list[OnsetSlot]:
        return [slot for slot in OnsetSlot if slot not in self._stamped[row]]

    def freeze(self) -> QuestionsSnapshot:
        return QuestionsSnapshot(
            onsets=tuple(tuple(row) for row in self.onsets),
            response=tuple(self.response),
            rt=tuple(self.rt),
            latency=tuple(self.latency),
            sentence_names=tuple(self.sentence_names),
            truth_value=tuple(self.truth_value),
            type=tuple(self.type),
            character=tuple(self.character),
            got_response=tuple(self.got_response),
            channel=tuple(self.channel),
        )
