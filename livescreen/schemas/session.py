from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from livescreen.models.enums import ScoreCode, SessionStatus, ValidityStatus


class SessionCreate(BaseModel):
    student_id: Optional[str] = None


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: Optional[str] = None
    current_subtest_id: Optional[str] = None
    status: SessionStatus
    validity_status: Optional[ValidityStatus] = None
    validity_notes: Optional[str] = None
    observations: Optional[Dict[str, Any]] = None
    created_at: datetime
    started_at: datetime
    ended_at: Optional[datetime] = None


class SessionCreated(SessionOut):
    # shown once; only its hash is stored
    assessor_token: str


class SessionDetail(BaseModel):
    session: SessionOut
    state: Dict[str, Any]
    phase: str
    allowed_events: List[str]
    completed_subtest_ids: List[str] = []


# --------------------- Observations ---------------------

class Observations(BaseModel):
    """Behaviour observed during the session; each category is a closed set."""
    model_config = ConfigDict(extra="forbid")

    attention: Optional[Literal["focused", "distracted", "variable"]] = None
    effort: Optional[Literal["strong", "adequate", "minimal"]] = None
    frustration: Optional[Literal["none", "mild", "moderate", "high"]] = None
    impulsivity: Optional[Literal["none", "mild", "frequent"]] = None
    avoidance: Optional[Literal["none", "some", "significant"]] = None
    responsiveness: Optional[Literal["responsive", "delayed", "unresponsive"]] = None
    notes: Optional[str] = None


class SessionUpdate(BaseModel):
    observations: Optional[Observations] = None
    validity_notes: Optional[str] = None


class EndSessionRequest(BaseModel):
    validity_status: ValidityStatus
    validity_notes: Optional[str] = None
    observations: Optional[Observations] = None


# --------------------- Commands ---------------------

class ResponseCreate(BaseModel):
    item_index: int = Field(ge=0)
    score_code: ScoreCode
    error_type: Optional[str] = None
    strategy_tag: Optional[str] = None
    response_time_ms: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class ResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    subtest_id: str
    item_index: int
    score_code: ScoreCode
    error_type: Optional[str] = None
    strategy_tag: Optional[str] = None
    response_time_ms: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime


class RecordResponseResult(BaseModel):
    response: ResponseOut
    state: Dict[str, Any]


class NavigateRequest(BaseModel):
    # null returns to the subtest picker after a completed subtest
    subtest_id: Optional[str] = None


class CompleteSubtestRequest(BaseModel):
    action: Literal["submit", "discontinue"] = "submit"


class SubtestSummaryOut(BaseModel):
    subtest_id: str
    total_items: int
    items_scored: int
    correct: int
    accuracy: int
    reason: Optional[str] = None


class CompleteSubtestResult(BaseModel):
    summary: SubtestSummaryOut
    phase: str
    allowed_events: List[str]


class SessionSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    total_items: int
    total_correct: int
    subtests: Optional[List[Dict[str, Any]]] = None
    created_at: datetime
