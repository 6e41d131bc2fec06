from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

CONTENT_DIR_ENV = "MATHOMETER_CONTENT_DIR"
DATA_DIR_ENV = "MATHOMETER_DATA_DIR"
OUTPUT_DIR_ENV = "MATHOMETER_OUTPUT_DIR"
MEDIA_DIR_ENV = "MATHOMETER_MEDIA_DIR"
LOG_LEVEL_ENV = "MATHOMETER_LOG_LEVEL"


class AnchorPolicy(str, Enum):
    PER_RUN = "per_run"
    PER_SESSION = "per_session"


@dataclass(frozen=True, slots=True)
class TimingConfig:
    # Seconds.
    fixation_s: float = 1.0
    response_s: float = 4.0
    feedback_s: float = 1.5
    rest_s: float = 5.0
    post_gap_s: float = 1.0

    # Upper bound on any single media wait before the phase is forced to complete.
    media_fallback_s: float = 15.0


@dataclass(frozen=True, slots=True)
class ExperimentConfig:
    total_runs: int = 6
    trials_per_run: int = 20

    character_ids: tuple[str, ...] = ("P1", "P2", "P3", "P4")
    character_genders: tuple[tuple[str, str], ...] = (
        ("P1", "M"),
        ("P2", "F"),
        ("P3", "M"),
        ("P4", "F"),
    )

    left_key: str = "y"
    right_key: str = "b"

    anchor_policy: AnchorPolicy = AnchorPolicy.PER_RUN
    confirm_each_run: bool = True

    params_snapshot_at_start: bool = True
    params_snapshot_each_run: bool = False

    timing: TimingConfig = field(default_factory=TimingConfig)

    def gender_of(self, character_id: str) -> str | None:
        for cid, gender in self.character_genders:
            if cid == character_id:
                return gender
        return None


def validate_config(config: ExperimentConfig) -> None:
    if config.total_runs <= 0:
        raise ValueError("total_runs must be > 0")
    if config.trials_per_run <= 0:
        raise ValueError("trials_per_run must be > 0")
    if not config.character_ids:
        raise ValueError("character_ids must not be empty")
    if len(set(config.character_ids)) != len(config.character_ids):
        raise ValueError("character_ids must be distinct")
    missing = [cid for cid in config.character_ids if config.gender_of(cid) is None]
    if missing:
        raise ValueError(f"no gender configured for characters: {missing}")
    if config.left_key.lower() == config.right_key.lower():
        raise ValueError("left_key and right_key must differ")

    t = config.timing
    for name in ("fixation_s", "feedback_s", "rest_s", "post_gap_s"):
        if getattr(t, name) < 0.0:
            raise ValueError(f"{name} must be >= 0")
    if t.response_s <= 0.0:
        raise ValueError("response_s must be > 0")
    if t.media_fallback_s <= 0.0:
        raise ValueError("media_fallback_s must be > 0")


@dataclass(frozen=True, slots=True)
class AppSettings:
    content_dir: Path
    data_dir: Path
    output_dir: Path
    media_dir: Path
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppSettings":
        base = Path.home() / ".mathometer"

        def _path(env: str, fallback: Path) -> Path:
            explicit = os.environ.get(env)
            if explicit:
                return Path(explicit).expanduser()
            return fallback

        data_dir = _path(DATA_DIR_ENV, base)
        content_dir = _path(CONTENT_DIR_ENV, Path.cwd() / "data")
        return cls(
            content_dir=content_dir,
            data_dir=data_dir,
            output_dir=_path(OUTPUT_DIR_ENV, data_dir / "runs"),
            media_dir=_path(MEDIA_DIR_ENV, content_dir.parent),
            log_level=os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper() or "INFO",
        )

    @property
    def db_path(self) -> Path:
        return self.data_dir / "mathometer.sqlite3"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "mathometer.log"
