"""
Social-emotional-behavioral (SEB) screener scoring.

Full screener: 14 raw categories -> 6 combined categories -> overall risk.
Brief screener: one likelihood rating per combined category.

Both are pure functions of a rating map {id: 0..3}; question texts, red flags
and category groupings live in config/seb/*.yaml.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import yaml

from livescreen.utils.errors import ValidationError

# --------------------- Constants ---------------------

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_ROOT = BASE_DIR / "config" / "seb"

RATING_MIN = 0
RATING_MAX = 3


class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> "RiskLevel":
        return _RISK_ORDER[max(0, min(rank, len(_RISK_ORDER) - 1))]


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.CRITICAL)


def higher_risk(*levels: RiskLevel) -> RiskLevel:
    return max(levels, key=lambda r: r.rank) if levels else RiskLevel.LOW


# --------------------- YAML loading ---------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"YAML not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@lru_cache(maxsize=1)
def load_full_config() -> Dict[str, Any]:
    return _load_yaml(CONFIG_ROOT / "full.yaml")


@lru_cache(maxsize=1)
def load_brief_config() -> Dict[str, Any]:
    return _load_yaml(CONFIG_ROOT / "brief.yaml")


def _questions_by_id() -> Dict[str, Dict[str, Any]]:
    return {
        q["id"]: q
        for cat in load_full_config()["categories"]
        for q in cat["questions"]
    }


# --------------------- Results ---------------------

@dataclass
class TopItem:
    question: str
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {"question": self.question, "score": self.score}


@dataclass
class SEBScoreResult:
    mean_score: float
    risk_level: RiskLevel
    top_items: List[TopItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meanScore": self.mean_score,
            "riskLevel": self.risk_level.value,
            "topItems": [t.to_dict() for t in self.top_items],
        }


@dataclass
class SEBCategoryResult(SEBScoreResult):
    category_id: str = ""
    category_title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = {"categoryId": self.category_id, "categoryTitle": self.category_title}
        out.update(super().to_dict())
        return out


@dataclass
class SEBOverallResult:
    overall_risk: RiskLevel
    category_results: List[SEBCategoryResult]
    specific_area_results: Dict[str, SEBScoreResult]
    red_flag_triggered: bool
    red_flag_items: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallRisk": self.overall_risk.value,
            "categoryResults": [c.to_dict() for c in self.category_results],
            "specificAreaResults": {k: v.to_dict() for k, v in self.specific_area_results.items()},
            "redFlagTriggered": self.red_flag_triggered,
            "redFlagItems": list(self.red_flag_items),
        }


@dataclass
class BriefResult:
    category_scores: Dict[str, Tuple[int, RiskLevel]]
    overall_risk: RiskLevel
    requires_follow_up: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categoryScores": {
                cid: {"score": score, "risk": risk.value}
                for cid, (score, risk) in self.category_scores.items()
            },
            "overallRisk": self.overall_risk.value,
            "requiresFollowUp": list(self.requires_follow_up),
        }


# --------------------- Primitives ---------------------

def band_risk(mean_score: float) -> RiskLevel:
    """[0,0.5) low, [0.5,1.25) moderate, [1.25,2.25) high, [2.25,3] critical."""
    for band in load_full_config()["bands"]:
        if mean_score < band["max"]:
            return RiskLevel(band["risk"])
    return RiskLevel.CRITICAL


def red_flag_override(current: RiskLevel, rating: int) -> RiskLevel:
    """Raise, never lower: 3 forces critical, 2 lifts to at least high."""
    if rating >= 3:
        return RiskLevel.CRITICAL
    if rating >= 2:
        return higher_risk(current, RiskLevel.HIGH)
    return current


def mean_of(ratings: Mapping[str, int], question_ids: Iterable[str]) -> float:
    present = [ratings[q] for q in question_ids if q in ratings]
    if not present:
        return 0.0
    return sum(present) / len(present)


def top_items(ratings: Mapping[str, int], questions: List[Dict[str, Any]], limit: int) -> List[TopItem]:
    items = [TopItem(q["question"], ratings.get(q["id"], 0)) for q in questions]
    items = [i for i in items if i.score > 0]
    # sorted() is stable, so ties keep question order
    return sorted(items, key=lambda i: i.score, reverse=True)[:limit]


def _check_rating(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"rating for '{key}' must be an integer {RATING_MIN}..{RATING_MAX}")
    if not RATING_MIN <= value <= RATING_MAX:
        raise ValidationError(f"rating for '{key}' must be between {RATING_MIN} and {RATING_MAX}")
    return value


def validate_full_ratings(ratings: Mapping[str, Any]) -> Dict[str, int]:
    known = _questions_by_id()
    unknown = sorted(k for k in ratings if k not in known)
    if unknown:
        raise ValidationError(f"Unknown question id(s): {', '.join(unknown)}")
    return {k: _check_rating(k, v) for k, v in ratings.items()}


def validate_brief_ratings(ratings: Mapping[str, Any]) -> Dict[str, int]:
    known = {c["id"] for c in load_brief_config()["categories"]}
    unknown = sorted(k for k in ratings if k not in known)
    if unknown:
        raise ValidationError(f"Unknown category id(s): {', '.join(unknown)}")
    return {k: _check_rating(k, v) for k, v in ratings.items()}


# --------------------- Full screener ---------------------

def score_specific_areas(ratings: Mapping[str, int]) -> Dict[str, SEBScoreResult]:
    cfg = load_full_config()
    limit = int(cfg.get("top_items_per_category", 2))
    results: Dict[str, SEBScoreResult] = {}
    for category in cfg["categories"]:
        questions = category["questions"]
        mean = mean_of(ratings, (q["id"] for q in questions))
        risk = band_risk(mean)
        for q in questions:
            if q.get("red_flag") and q["id"] in ratings:
                risk = red_flag_override(risk, ratings[q["id"]])
        results[category["id"]] = SEBScoreResult(
            mean_score=round(mean, 2),
            risk_level=risk,
            top_items=top_items(ratings, questions, limit),
        )
    return results


def score_combined(specific: Dict[str, SEBScoreResult]) -> List[SEBCategoryResult]:
    cfg = load_full_config()
    limit = int(cfg.get("top_items_per_combined", 3))
    results: List[SEBCategoryResult] = []
    for combined in cfg["combined_categories"]:
        members = [specific[s] for s in combined["subcategories"] if s in specific]
        mean = sum(m.mean_score for m in members) / len(members) if members else 0.0
        risk = higher_risk(band_risk(mean), *(m.risk_level for m in members))
        pooled = [item for m in members for item in m.top_items]
        results.append(SEBCategoryResult(
            mean_score=round(mean, 2),
            risk_level=risk,
            top_items=sorted(pooled, key=lambda i: i.score, reverse=True)[:limit],
            category_id=combined["id"],
            category_title=combined["title"],
        ))
    return results


def score_overall(
    combined: List[SEBCategoryResult],
    ratings: Mapping[str, int],
) -> Tuple[RiskLevel, bool, List[str]]:
    """
    Base: highest combined risk.
    Breadth: one band up (capped) when >=2 combined categories are high or
    critical, or >=3 are above low.
    Safety: any red-flag item rated 2 lifts to at least high, 3 to critical.
    """
    overall = higher_risk(*(c.risk_level for c in combined))

    high_or_critical = sum(1 for c in combined if c.risk_level.rank >= RiskLevel.HIGH.rank)
    above_low = sum(1 for c in combined if c.risk_level is not RiskLevel.LOW)
    if high_or_critical >= 2 or above_low >= 3:
        overall = RiskLevel.from_rank(overall.rank + 1)

    triggered = False
    flagged: List[str] = []
    for category in load_full_config()["categories"]:
        for q in category["questions"]:
            if not q.get("red_flag"):
                continue
            rating = ratings.get(q["id"])
            if rating is not None and rating >= 2:
                triggered = True
                flagged.append(q["question"])
                overall = red_flag_override(overall, rating)
    return overall, triggered, flagged


def compute_full(ratings: Mapping[str, Any]) -> SEBOverallResult:
    """Score the full screener. The input mapping is never modified."""
    clean = validate_full_ratings(ratings)
    specific = score_specific_areas(clean)
    combined = score_combined(specific)
    overall, triggered, flagged = score_overall(combined, clean)
    return SEBOverallResult(
        overall_risk=overall,
        category_results=combined,
        specific_area_results=specific,
        red_flag_triggered=triggered,
        red_flag_items=flagged,
    )


# --------------------- Brief screener ---------------------

def compute_brief(ratings: Mapping[str, Any]) -> BriefResult:
    cfg = load_brief_config()
    clean = validate_brief_ratings(ratings)
    risk_map = [RiskLevel(r) for r in cfg["risk_map"]]
    threshold = int(cfg.get("follow_up_threshold", 2))
    follow_up_ids = [c["id"] for c in cfg["categories"] if c.get("requires_follow_up")]

    scores: Dict[str, Tuple[int, RiskLevel]] = {}
    for cid, score in clean.items():
        scores[cid] = (score, risk_map[min(score, len(risk_map) - 1)])

    overall = higher_risk(*(risk for _, risk in scores.values()))
    follow_up = [cid for cid in follow_up_ids if cid in clean and clean[cid] >= threshold]
    return BriefResult(category_scores=scores, overall_risk=overall, requires_follow_up=follow_up)


# --------------------- Question catalog ---------------------

def full_questionnaire() -> Dict[str, Any]:
    cfg = load_full_config()
    return {
        "ratingOptions": cfg["rating_options"],
        "categories": [
            {
                "id": c["id"],
                "title": c["title"],
                "description": c.get("description", ""),
                "questions": [
                    {"id": q["id"], "question": q["question"], "isRedFlag": bool(q.get("red_flag"))}
                    for q in c["questions"]
                ],
            }
            for c in cfg["categories"]
        ],
        "combinedCategories": cfg["combined_categories"],
    }


def brief_questionnaire() -> Dict[str, Any]:
    cfg = load_brief_config()
    return {"ratingOptions": cfg["rating_options"], "categories": cfg["categories"]}
