from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from livescreen.database import get_db
from livescreen.models.response import Response
from livescreen.models.session import AssessmentSession, SessionSummary
from livescreen.models.student import Student
from livescreen.models.subtest import Subtest
from livescreen.schemas.session import (
    CompleteSubtestRequest,
    CompleteSubtestResult,
    EndSessionRequest,
    NavigateRequest,
    RecordResponseResult,
    ResponseCreate,
    ResponseOut,
    SessionCreate,
    SessionCreated,
    SessionDetail,
    SessionOut,
    SessionSummaryOut,
    SessionUpdate,
    SubtestSummaryOut,
)
from livescreen.utils.auth import get_session_or_404, get_token_hash, new_assessor_token, require_assessor
from livescreen.utils.controller import build_session_summary, commit_or_raise, registry
from livescreen.utils.scored_response import build_scored_response

router = APIRouter(prefix="/sessions", tags=["Session"])


def _detail(db: Session, session: AssessmentSession) -> SessionDetail:
    controller = registry.get(db, session)
    return SessionDetail(session=SessionOut.model_validate(session), **controller.snapshot())


@router.post("", response_model=SessionCreated, status_code=201)
def create_session(payload: SessionCreate, db: Session = Depends(get_db)) -> SessionCreated:
    if payload.student_id and not db.get(Student, payload.student_id):
        raise HTTPException(status_code=404, detail="Student not found")

    token = new_assessor_token()
    session = AssessmentSession(
        id=str(uuid4()),
        student_id=payload.student_id,
        assessor_token_hash=get_token_hash(token),
    )
    db.add(session)
    commit_or_raise(db, "new session", session.id)
    db.refresh(session)

    out = SessionOut.model_validate(session).model_dump()
    return SessionCreated(**out, assessor_token=token)


@router.get("/{session_id}", response_model=SessionDetail)
def get_session(session_id: str, db: Session = Depends(get_db)) -> SessionDetail:
    return _detail(db, get_session_or_404(db, session_id))


@router.patch("/{session_id}", response_model=SessionOut)
def update_session(
    payload: SessionUpdate,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> SessionOut:
    observations = payload.observations.model_dump(exclude_none=True) if payload.observations else None
    controller = registry.get(db, session)
    session = controller.update_session(db, session, observations, payload.validity_notes)
    return SessionOut.model_validate(session)


@router.post("/{session_id}/responses", response_model=RecordResponseResult, status_code=201)
def record_response(
    payload: ResponseCreate,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> RecordResponseResult:
    scored = build_scored_response(payload.score_code, payload.error_type, payload.strategy_tag)
    controller = registry.get(db, session)
    response = controller.record_response(
        db,
        session,
        payload.item_index,
        scored,
        response_time_ms=payload.response_time_ms,
        notes=payload.notes,
    )
    return RecordResponseResult(
        response=ResponseOut.model_validate(response),
        state=controller.state.to_message(),
    )


@router.get("/{session_id}/responses", response_model=List[ResponseOut])
def list_responses(
    session_id: str,
    subtest_id: Optional[str] = None,
    db: Session = Depends(get_db),
) -> List[Response]:
    get_session_or_404(db, session_id)
    query = db.query(Response).filter(Response.session_id == session_id)
    if subtest_id:
        query = query.filter(Response.subtest_id == subtest_id)
    return query.order_by(Response.created_at).all()


@router.post("/{session_id}/state")
def update_state(
    changes: Dict[str, Any] = Body(...),
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    controller = registry.get(db, session)
    return controller.update_state(db, session, changes).to_message()


@router.post("/{session_id}/navigate", response_model=SessionDetail)
def navigate(
    payload: NavigateRequest,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> SessionDetail:
    subtest = None
    if payload.subtest_id:
        subtest = db.get(Subtest, payload.subtest_id)
        if not subtest:
            raise HTTPException(status_code=404, detail="Subtest not found")
    registry.get(db, session).navigate(db, session, subtest)
    return _detail(db, session)


@router.post("/{session_id}/complete-subtest", response_model=CompleteSubtestResult)
def complete_subtest(
    payload: CompleteSubtestRequest,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> CompleteSubtestResult:
    controller = registry.get(db, session)
    summary = controller.complete_subtest(db, session, payload.action)
    snapshot = controller.snapshot()
    return CompleteSubtestResult(
        summary=SubtestSummaryOut(**summary.to_dict()),
        phase=snapshot["phase"],
        allowed_events=snapshot["allowed_events"],
    )


@router.post("/{session_id}/timer/{action}")
def timer(
    action: str,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    controller = registry.get(db, session)
    state = controller.timer_action(db, session, action)
    return {"state": state.to_message(), "timer": controller.timer_snapshot()}


@router.post("/{session_id}/end", response_model=SessionSummaryOut)
def end_session(
    payload: EndSessionRequest,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> SessionSummary:
    observations = payload.observations.model_dump(exclude_none=True) if payload.observations else None
    summary = registry.get(db, session).end_session(
        db, session, payload.validity_status, payload.validity_notes, observations
    )
    registry.release(session.id)
    return summary


@router.get("/{session_id}/summary", response_model=SessionSummaryOut)
def get_summary(session_id: str, db: Session = Depends(get_db)) -> SessionSummary:
    session = get_session_or_404(db, session_id)
    stored = db.query(SessionSummary).filter(SessionSummary.session_id == session_id).first()
    # live totals until the session ends
    return stored or build_session_summary(db, session)
