from typing import Any, Dict

from fastapi import APIRouter

from livescreen.schemas.seb import SebBriefResult, SebFullResult, SebRatings
from livescreen.utils.seb_engine import brief_questionnaire, compute_brief, compute_full, full_questionnaire

router = APIRouter(prefix="/seb", tags=["SEB"])


@router.get("/full/questions")
def full_questions() -> Dict[str, Any]:
    return full_questionnaire()


@router.get("/brief/questions")
def brief_questions() -> Dict[str, Any]:
    return brief_questionnaire()


@router.post("/full", response_model=SebFullResult)
def score_full(payload: SebRatings) -> Dict[str, Any]:
    return compute_full(payload.ratings).to_dict()


@router.post("/brief", response_model=SebBriefResult)
def score_brief(payload: SebRatings) -> Dict[str, Any]:
    return compute_brief(payload.ratings).to_dict()
