from typing import Any, Dict, List

from pydantic import BaseModel


class SebRatings(BaseModel):
    # id -> 0..3; checked by the engine so bad ids and values get one error shape
    ratings: Dict[str, Any]


class TopItemOut(BaseModel):
    question: str
    score: int


class SebScoreOut(BaseModel):
    meanScore: float
    riskLevel: str
    topItems: List[TopItemOut]


class SebCategoryOut(SebScoreOut):
    categoryId: str
    categoryTitle: str


class SebFullResult(BaseModel):
    overallRisk: str
    categoryResults: List[SebCategoryOut]
    specificAreaResults: Dict[str, SebScoreOut]
    redFlagTriggered: bool
    redFlagItems: List[str]


class BriefCategoryScore(BaseModel):
    score: int
    risk: str


class SebBriefResult(BaseModel):
    categoryScores: Dict[str, BriefCategoryScore]
    overallRisk: str
    requiresFollowUp: List[str]
