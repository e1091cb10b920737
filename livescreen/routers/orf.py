from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from livescreen.database import get_db
from livescreen.models.response import PassageAssessmentResult
from livescreen.models.session import AssessmentSession
from livescreen.models.subtest import Subtest
from livescreen.schemas.orf import OrfPreview, OrfSaveResult, OrfScoreRequest, PassageResultOut
from livescreen.schemas.session import SubtestSummaryOut
from livescreen.utils.auth import get_session_or_404, require_assessor
from livescreen.utils.controller import registry
from livescreen.utils.errors import InvalidTransition
from livescreen.utils.orf import FluencyScores, WordMark, WordStatus

router = APIRouter(prefix="/sessions", tags=["ORF"])


def _current_subtest(session: AssessmentSession) -> Subtest:
    if session.current_subtest is None:
        raise InvalidTransition("No passage subtest is active")
    return session.current_subtest


def _resolve_grade(payload: OrfScoreRequest, session: AssessmentSession, subtest: Subtest) -> Optional[str]:
    if payload.grade:
        return payload.grade
    if subtest.grade:
        return subtest.grade
    return session.student.grade if session.student else None


def _word_marks(payload: OrfScoreRequest) -> List[WordMark]:
    return [WordMark(m.index, WordStatus(m.status)) for m in payload.word_marks]


@router.post("/{session_id}/orf/preview", response_model=OrfPreview)
def preview(
    payload: OrfScoreRequest,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
):
    """Live metrics for the assessor panel; nothing is written."""
    subtest = _current_subtest(session)
    controller = registry.get(db, session)
    return controller.preview_orf(
        subtest,
        _word_marks(payload),
        payload.last_word_index,
        FluencyScores(**payload.fluency.model_dump()),
        _resolve_grade(payload, session, subtest),
    )


@router.post("/{session_id}/orf/save", response_model=OrfSaveResult)
def save(
    payload: OrfScoreRequest,
    session: AssessmentSession = Depends(require_assessor),
    db: Session = Depends(get_db),
) -> OrfSaveResult:
    subtest = _current_subtest(session)
    controller = registry.get(db, session)
    result, summary = controller.save_orf(
        db,
        session,
        subtest,
        _word_marks(payload),
        payload.last_word_index,
        FluencyScores(**payload.fluency.model_dump()),
        _resolve_grade(payload, session, subtest),
    )
    return OrfSaveResult(
        result=PassageResultOut.model_validate(result),
        summary=SubtestSummaryOut(**summary.to_dict()),
    )


@router.get("/{session_id}/orf/results", response_model=List[PassageResultOut])
def list_results(session_id: str, db: Session = Depends(get_db)):
    get_session_or_404(db, session_id)
    return (
        db.query(PassageAssessmentResult)
        .filter(PassageAssessmentResult.session_id == session_id)
        .order_by(PassageAssessmentResult.created_at)
        .all()
    )
