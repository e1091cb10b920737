from __future__ import annotations

import itertools

import pytest

from livescreen.utils.errors import DataShapeError, ValidationError
from livescreen.utils.orf import (
    BenchmarkStatus,
    FluencyScores,
    OrfAttempt,
    WordMark,
    WordStatus,
    classify_benchmark,
    compute_metrics,
    extract_passage,
    fluency_dimensions,
    round_half_up,
)


def passage(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def test_reference_reading():
    attempt = OrfAttempt.from_passage(passage(50))
    for i in (3, 10, 17, 29):
        attempt.mark(i, WordStatus.ERROR)
    # past the stopping point; must not count
    attempt.mark(40, WordStatus.ERROR)
    attempt.set_stopping_point(29)

    m = attempt.metrics(60)
    assert m.words_attempted == 30
    assert m.error_count == 4
    assert m.words_correct == 26
    assert m.wcpm == 26
    assert m.accuracy == 87


def test_without_stopping_point_every_word_is_attempted():
    m = compute_metrics(20, [WordMark(0, WordStatus.ERROR)], None, 30)
    assert m.words_attempted == 20
    assert m.words_correct == 19
    assert m.wcpm == 38


def test_self_corrections_are_not_errors():
    attempt = OrfAttempt.from_passage(passage(10))
    attempt.mark(2, WordStatus.SELF_CORRECT)
    attempt.mark(4, WordStatus.ERROR)
    m = attempt.metrics(60)
    assert m.self_correct_count == 1
    assert m.error_count == 1
    assert m.words_correct == 9


def test_zero_elapsed_gives_zero_wcpm():
    assert compute_metrics(10, [], None, 0).wcpm == 0


def test_empty_passage():
    m = compute_metrics(0, [], None, 60)
    assert m.words_attempted == 0
    assert m.accuracy == 0
    assert m.wcpm == 0


def test_rounding_is_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4999) == 2
    # 1 correct of 8 attempted is 12.5%
    marks = [WordMark(i, WordStatus.ERROR) for i in range(1, 8)]
    assert compute_metrics(8, marks, None, 60).accuracy == 13


def test_metric_invariants_hold_for_all_mark_sets():
    total = 6
    statuses = (None, WordStatus.ERROR, WordStatus.SELF_CORRECT)
    for combo in itertools.product(statuses, repeat=total):
        marks = [WordMark(i, s) for i, s in enumerate(combo) if s is not None]
        for last in (None, 0, 2, 5):
            for elapsed in (0, 1, 45, 60):
                m = compute_metrics(total, marks, last, elapsed)
                assert m.words_correct + m.error_count == m.words_attempted
                assert 0 <= m.accuracy <= 100
                assert m.wcpm >= 0


def test_cycle_word():
    attempt = OrfAttempt.from_passage("one two three")
    assert attempt.cycle_word(1) is WordStatus.ERROR
    assert attempt.cycle_word(1) is WordStatus.SELF_CORRECT
    assert attempt.cycle_word(1) is WordStatus.CORRECT
    # correct is implicit, never stored
    assert attempt.word_marks == []


def test_stopping_point_bounds():
    attempt = OrfAttempt.from_passage("one two three")
    with pytest.raises(ValidationError):
        attempt.set_stopping_point(3)
    attempt.set_stopping_point(0)
    assert attempt.words_attempted == 1
    attempt.clear_stopping_point()
    assert attempt.words_attempted == 3


def test_restore_rejects_duplicate_marks():
    marks = [WordMark(1, WordStatus.ERROR), WordMark(1, WordStatus.SELF_CORRECT)]
    with pytest.raises(ValidationError):
        OrfAttempt.restore(["a", "b", "c"], marks)


def test_restore_rejects_out_of_range_marks():
    with pytest.raises(ValidationError):
        OrfAttempt.restore(["a", "b"], [WordMark(5, WordStatus.ERROR)])


def test_payload_shape():
    attempt = OrfAttempt.restore(passage(10).split(), [WordMark(0, WordStatus.ERROR)], 4)
    payload = attempt.to_payload(30, FluencyScores(expression=3))
    assert payload["words_attempted"] == 5
    assert payload["wcpm"] == 8
    assert payload["accuracy"] == 80
    assert payload["word_marks"] == [{"index": 0, "status": "error"}]
    assert payload["fluency_scores"] == {"expression": 3, "phrasing": 2, "smoothness": 2, "pace": 2}


@pytest.mark.parametrize(
    "wcpm, grade, status",
    [
        (95, "2", BenchmarkStatus.ABOVE),
        (90, "2", BenchmarkStatus.ABOVE),
        (80, "2", BenchmarkStatus.ON_TRACK),
        (70, "2", BenchmarkStatus.ON_TRACK),
        (69, "2", BenchmarkStatus.BELOW),
        (50, None, BenchmarkStatus.UNKNOWN),
        (50, "", BenchmarkStatus.UNKNOWN),
        (50, "12", BenchmarkStatus.UNKNOWN),
    ],
)
def test_benchmarks(wcpm, grade, status):
    assert classify_benchmark(wcpm, grade) is status


def test_fluency_defaults_and_bounds():
    scores = FluencyScores()
    assert scores.mean == 2
    assert fluency_dimensions() == ["expression", "phrasing", "smoothness", "pace"]
    with pytest.raises(ValidationError):
        FluencyScores(pace=5)
    with pytest.raises(ValidationError):
        FluencyScores(expression=0)


def test_fluency_describe_uses_rubric():
    described = FluencyScores(expression=4).describe()
    assert described["expression"]["score"] == 4
    assert described["expression"]["label"]
    assert described["expression"]["descriptor"]


def test_extract_passage():
    data = {"items": [{"passage": "The cat sat."}, {"text": "A dog ran."}, "Plain text", {}]}
    assert extract_passage(data, 0) == "The cat sat."
    assert extract_passage(data, 1) == "A dog ran."
    assert extract_passage(data, 2) == "Plain text"
    with pytest.raises(DataShapeError):
        extract_passage(data, 3)
    with pytest.raises(DataShapeError):
        extract_passage(data, 9)
    with pytest.raises(DataShapeError):
        extract_passage({"nope": []}, 0)
