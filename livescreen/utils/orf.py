"""
Oral reading fluency (ORF) scoring.

The assessor marks words while the student reads a passage for up to a
minute. Unmarked words count as correct. From the marks, the optional stopping
point and the elapsed time we derive:

    words_attempted = last_word_index + 1   (or every word if no stopping point)
    error_count     = error marks before the stopping point
    words_correct   = words_attempted - error_count
    wcpm            = round(words_correct / elapsed_seconds * 60)
    accuracy        = round(words_correct / words_attempted * 100)

Self-corrections are counted separately and are not errors.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from livescreen.utils.errors import DataShapeError, ValidationError

CONFIG_ROOT = Path(__file__).resolve().parents[1] / "config" / "orf"

FLUENCY_MIN = 1
FLUENCY_MAX = 4


class WordStatus(str, Enum):
    CORRECT = "correct"
    ERROR = "error"
    SELF_CORRECT = "self_correct"


STATUS_CYCLE = (WordStatus.CORRECT, WordStatus.ERROR, WordStatus.SELF_CORRECT)


class BenchmarkStatus(str, Enum):
    ABOVE = "above"
    ON_TRACK = "on-track"
    BELOW = "below"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class WordMark:
    index: int
    status: WordStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "status": self.status.value}


@dataclass(frozen=True)
class OrfMetrics:
    total_words: int
    words_attempted: int
    error_count: int
    self_correct_count: int
    words_correct: int
    elapsed_seconds: int
    wcpm: int
    accuracy: int


# --------------------- Helpers ---------------------

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"YAML not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def split_words(passage: str) -> List[str]:
    return [w for w in (passage or "").split() if w]


def extract_passage(stimulus_data: Any, item_index: int) -> str:
    """Passage text of the stimulus item at `item_index` (`passage`, else `text`)."""
    if not isinstance(stimulus_data, dict) or not isinstance(stimulus_data.get("items"), list):
        raise DataShapeError("stimulus_data has no 'items' list")
    items = stimulus_data["items"]
    if not 0 <= item_index < len(items):
        raise DataShapeError(f"stimulus item {item_index} does not exist")
    item = items[item_index]
    if isinstance(item, str):
        text = item
    elif isinstance(item, dict):
        text = item.get("passage") or item.get("text") or ""
    else:
        text = ""
    if not str(text).strip():
        raise DataShapeError(f"stimulus item {item_index} has no passage text")
    return str(text)


# --------------------- Metrics ---------------------

def words_attempted_for(total_words: int, last_word_index: Optional[int]) -> int:
    return last_word_index + 1 if last_word_index is not None else total_words


def compute_metrics(
    total_words: int,
    word_marks: Iterable[WordMark],
    last_word_index: Optional[int],
    elapsed_seconds: int,
) -> OrfMetrics:
    if total_words < 0 or elapsed_seconds < 0:
        raise ValidationError("total_words and elapsed_seconds must not be negative")
    if last_word_index is not None and not 0 <= last_word_index < total_words:
        raise ValidationError(f"last_word_index {last_word_index} is outside the passage")

    attempted = words_attempted_for(total_words, last_word_index)
    marks = list(word_marks)
    errors = sum(1 for m in marks if m.status is WordStatus.ERROR and m.index < attempted)
    self_corrects = sum(1 for m in marks if m.status is WordStatus.SELF_CORRECT and m.index < attempted)
    correct = attempted - errors

    wcpm = round_half_up(correct / elapsed_seconds * 60) if elapsed_seconds > 0 else 0
    accuracy = round_half_up(correct / attempted * 100) if attempted > 0 else 0

    return OrfMetrics(
        total_words=total_words,
        words_attempted=attempted,
        error_count=errors,
        self_correct_count=self_corrects,
        words_correct=correct,
        elapsed_seconds=elapsed_seconds,
        wcpm=wcpm,
        accuracy=accuracy,
    )


# --------------------- Fluency rubric ---------------------

@lru_cache(maxsize=1)
def load_fluency_rubric() -> Dict[str, Any]:
    return _load_yaml(CONFIG_ROOT / "fluency_rubric.yaml")


def fluency_dimensions() -> List[str]:
    return [d["key"] for d in load_fluency_rubric()["dimensions"]]


@dataclass(frozen=True)
class FluencyScores:
    """Four independent 1..4 prosody ratings. Descriptive only."""
    expression: int = 2
    phrasing: int = 2
    smoothness: int = 2
    pace: int = 2

    def __post_init__(self):
        for key in ("expression", "phrasing", "smoothness", "pace"):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, int) or not FLUENCY_MIN <= value <= FLUENCY_MAX:
                raise ValidationError(f"fluency '{key}' must be an integer {FLUENCY_MIN}..{FLUENCY_MAX}")

    @property
    def mean(self) -> float:
        return (self.expression + self.phrasing + self.smoothness + self.pace) / 4

    def to_dict(self) -> Dict[str, int]:
        return {
            "expression": self.expression,
            "phrasing": self.phrasing,
            "smoothness": self.smoothness,
            "pace": self.pace,
        }

    def describe(self) -> Dict[str, Dict[str, Any]]:
        rubric = load_fluency_rubric()
        out = {}
        for dim in rubric["dimensions"]:
            score = getattr(self, dim["key"])
            out[dim["key"]] = {
                "score": score,
                "label": dim["label"],
                "descriptor": dim["levels"][score - 1],
            }
        return out


# --------------------- Benchmarks ---------------------

@lru_cache(maxsize=1)
def load_benchmarks() -> Dict[str, Dict[str, int]]:
    data = _load_yaml(CONFIG_ROOT / "benchmarks.yaml")
    return {str(grade): {"low": int(v["low"]), "target": int(v["target"])} for grade, v in data.items()}


def classify_benchmark(wcpm: int, grade: Optional[str]) -> BenchmarkStatus:
    if grade is None or not str(grade).strip():
        return BenchmarkStatus.UNKNOWN
    benchmark = load_benchmarks().get(str(grade).strip())
    if not benchmark:
        return BenchmarkStatus.UNKNOWN
    if wcpm >= benchmark["target"]:
        return BenchmarkStatus.ABOVE
    if wcpm >= benchmark["low"]:
        return BenchmarkStatus.ON_TRACK
    return BenchmarkStatus.BELOW


# --------------------- Attempt ---------------------

@dataclass
class OrfAttempt:
    """Assessor-side marking of one passage reading."""
    words: List[str]
    last_word_index: Optional[int] = None
    _marks: Dict[int, WordStatus] = field(default_factory=dict, repr=False)

    @classmethod
    def from_passage(cls, passage: str) -> "OrfAttempt":
        return cls(words=split_words(passage))

    @classmethod
    def restore(
        cls,
        words: List[str],
        word_marks: Iterable[WordMark],
        last_word_index: Optional[int] = None,
    ) -> "OrfAttempt":
        attempt = cls(words=list(words))
        for mark in word_marks:
            if mark.index in attempt._marks:
                raise ValidationError(f"word {mark.index} is marked more than once")
            attempt.mark(mark.index, mark.status)
        if last_word_index is not None:
            attempt.set_stopping_point(last_word_index)
        return attempt

    @property
    def total_words(self) -> int:
        return len(self.words)

    @property
    def words_attempted(self) -> int:
        return words_attempted_for(self.total_words, self.last_word_index)

    @property
    def word_marks(self) -> List[WordMark]:
        return [WordMark(i, s) for i, s in sorted(self._marks.items())]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.total_words:
            raise ValidationError(f"word index {index} is outside the passage")

    def status(self, index: int) -> WordStatus:
        return self._marks.get(index, WordStatus.CORRECT)

    def mark(self, index: int, status: WordStatus) -> None:
        self._check_index(index)
        status = WordStatus(status)
        if status is WordStatus.CORRECT:
            self._marks.pop(index, None)
        else:
            self._marks[index] = status

    def cycle_word(self, index: int) -> WordStatus:
        """correct -> error -> self_correct -> correct"""
        current = self.status(index)
        nxt = STATUS_CYCLE[(STATUS_CYCLE.index(current) + 1) % len(STATUS_CYCLE)]
        self.mark(index, nxt)
        return nxt

    def set_stopping_point(self, index: int) -> None:
        self._check_index(index)
        self.last_word_index = index

    def clear_stopping_point(self) -> None:
        self.last_word_index = None

    def metrics(self, elapsed_seconds: int) -> OrfMetrics:
        return compute_metrics(self.total_words, self.word_marks, self.last_word_index, elapsed_seconds)

    def to_payload(self, elapsed_seconds: int, fluency: FluencyScores) -> Dict[str, Any]:
        m = self.metrics(elapsed_seconds)
        return {
            "wcpm": m.wcpm,
            "words_attempted": m.words_attempted,
            "words_correct": m.words_correct,
            "error_count": m.error_count,
            "self_correct_count": m.self_correct_count,
            "accuracy": m.accuracy,
            "fluency_scores": fluency.to_dict(),
            "word_marks": [wm.to_dict() for wm in self.word_marks],
            "last_word_index": self.last_word_index,
        }
