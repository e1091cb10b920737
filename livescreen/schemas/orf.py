from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from livescreen.schemas.session import SubtestSummaryOut


class WordMarkIn(BaseModel):
    index: int = Field(ge=0)
    status: Literal["correct", "error", "self_correct"]


class FluencyIn(BaseModel):
    expression: int = Field(default=2, ge=1, le=4)
    phrasing: int = Field(default=2, ge=1, le=4)
    smoothness: int = Field(default=2, ge=1, le=4)
    pace: int = Field(default=2, ge=1, le=4)


class OrfScoreRequest(BaseModel):
    word_marks: List[WordMarkIn] = []
    last_word_index: Optional[int] = Field(default=None, ge=0)
    fluency: FluencyIn = FluencyIn()
    # falls back to the subtest grade, then the student's grade
    grade: Optional[str] = None


class OrfPreview(BaseModel):
    wcpm: int
    words_attempted: int
    words_correct: int
    error_count: int
    self_correct_count: int
    accuracy: int
    elapsed_seconds: int
    total_words: int
    last_word_index: Optional[int] = None
    benchmark_status: str
    fluency_scores: Dict[str, int]
    word_marks: List[WordMarkIn]


class PassageResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    subtest_id: str
    wcpm: int
    words_attempted: int
    words_correct: int
    error_count: int
    self_correct_count: int
    accuracy: int
    elapsed_seconds: int
    last_word_index: Optional[int] = None
    benchmark_status: str
    fluency_scores: Dict[str, int]
    word_marks: List[WordMarkIn]
    created_at: datetime
    updated_at: datetime


class OrfSaveResult(BaseModel):
    result: PassageResultOut
    summary: SubtestSummaryOut
