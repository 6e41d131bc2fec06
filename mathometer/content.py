"""Read-only content tables and the media naming contract."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SENTENCES_FILE = "all_sentences_info.json"
ASSOCIATIONS_FILE = "sentence_to_character.json"

# Exact, case-sensitive names. The media folders are served as-is.
SENTENCES_DIR = "Sentences"
ANIMATIONS_DIR = "Animations"
VIDEO_EXT = ".MP4"
AUDIO_EXT = ".wav"
BEEP_REF = f"{SENTENCES_DIR}/beep{AUDIO_EXT}"
FEEDBACK_OK_REF = f"{ANIMATIONS_DIR}/FeedbackOkRobot{VIDEO_EXT}"
FEEDBACK_NOT_OK_REF = f"{ANIMATIONS_DIR}/FeedbackNotOkRobot{VIDEO_EXT}"


class ConfigurationError(ValueError):
    """Content or configuration cannot produce a valid plan. Needs operator action."""

    def __init__(self, message: str, *, run_number: int | None = None) -> None:
        super().__init__(message)
        self.run_number = run_number


@dataclass(frozen=True, slots=True)
class SentenceInfo:
    sentence_id: str
    run: int
    category: str
    theme: str
    truth_value: str


@dataclass(frozen=True, slots=True)
class CharacterAssociation:
    run: int
    characters: tuple[str, ...]


def _as_run(value: object, *, where: str) -> int:
    try:
        run = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"{where}: invalid run value {value!r}") from None
    return run


def parse_sentences(raw: object) -> list[SentenceInfo]:
    if not isinstance(raw, list):
        raise ConfigurationError(f"{SENTENCES_FILE}: expected a list of sentence records")
    out: list[SentenceInfo] = []
    for i, item in enumerate(raw):
        where = f"{SENTENCES_FILE}[{i}]"
        if not isinstance(item, dict):
            raise ConfigurationError(f"{where}: expected an object")
        missing = [k for k in ("sentenceId", "run", "category", "theme", "truthValue") if k not in item]
        if missing:
            raise ConfigurationError(f"{where}: missing fields {missing}")
        out.append(
            SentenceInfo(
                sentence_id=str(item["sentenceId"]),
                run=_as_run(item["run"], where=where),
                category=str(item["category"]),
                theme=str(item["theme"]),
                truth_value=str(item["truthValue"]),
            )
        )
    return out


def parse_associations(raw: object) -> list[CharacterAssociation]:
    if not isinstance(raw, list):
        raise ConfigurationError(f"{ASSOCIATIONS_FILE}: expected a list of association records")
    out: list[CharacterAssociation] = []
    for i, item in enumerate(raw):
        where = f"{ASSOCIATIONS_FILE}[{i}]"
        if not isinstance(item, dict) or "run" not in item:
            raise ConfigurationError(f"{where}: expected an object with a run field")
        characters = item.get("characters")
        if not isinstance(characters, list):
            raise ConfigurationError(f"{where}: characters must be a list")
        out.append(
            CharacterAssociation(
                run=_as_run(item["run"], where=where),
                characters=tuple(str(c) for c in characters),
            )
        )
    return out


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"content file not found: {path}") from None
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"cannot read {path}: {exc}") from exc


def load_content(content_dir: Path) -> tuple[list[SentenceInfo], list[CharacterAssociation]]:
    sentences = parse_sentences(_read_json(content_dir / SENTENCES_FILE))
    associations = parse_associations(_read_json(content_dir / ASSOCIATIONS_FILE))
    logger.info(
        "loaded %d sentences and %d character associations from %s",
        len(sentences),
        len(associations),
        content_dir,
    )
    return sentences, associations


def side_word(true_side: int) -> str:
    return "Right" if true_side == 1 else "Left"


def sentence_file_name(sentence: SentenceInfo, gender: str) -> str:
    return (
        f"Sentence{sentence.sentence_id}_{sentence.category}_{sentence.theme}"
        f"_{sentence.truth_value}_Gender_{gender}{AUDIO_EXT}"
    )


def sentence_audio_ref(sentence: SentenceInfo, gender: str) -> str:
    return f"{SENTENCES_DIR}/{sentence_file_name(sentence, gender)}"


def sentence_animation_ref(character_id: str, true_side: int) -> str:
    # e.g. Animations/SentenceTrueLeftP1.MP4
    return f"{ANIMATIONS_DIR}/SentenceTrue{side_word(true_side)}{character_id}{VIDEO_EXT}"


def wait_animation_ref(character_id: str, true_side: int) -> str:
    return f"{ANIMATIONS_DIR}/WaitTrue{side_word(true_side)}{character_id}{VIDEO_EXT}"
