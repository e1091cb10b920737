from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from livescreen.models.enums import ScoreCode
from livescreen.utils.errors import ValidationError

ERROR_TYPES = ("substitution", "omission", "insertion", "hesitation", "reversal")
STRATEGY_TAGS = ("automatic", "sounded_out", "blended", "guessed")


@dataclass(frozen=True)
class Correct:
    code: ClassVar[ScoreCode] = ScoreCode.CORRECT
    strategy_tag: Optional[str] = None


@dataclass(frozen=True)
class Incorrect:
    code: ClassVar[ScoreCode] = ScoreCode.INCORRECT
    error_type: Optional[str] = None


@dataclass(frozen=True)
class SelfCorrect:
    code: ClassVar[ScoreCode] = ScoreCode.SELF_CORRECT


@dataclass(frozen=True)
class Prompted:
    code: ClassVar[ScoreCode] = ScoreCode.PROMPTED


@dataclass(frozen=True)
class NoResponse:
    code: ClassVar[ScoreCode] = ScoreCode.NO_RESPONSE


ScoredResponse = Union[Correct, Incorrect, SelfCorrect, Prompted, NoResponse]

_SIMPLE = {
    ScoreCode.SELF_CORRECT: SelfCorrect,
    ScoreCode.PROMPTED: Prompted,
    ScoreCode.NO_RESPONSE: NoResponse,
}


def build_scored_response(
    code: ScoreCode | str,
    error_type: Optional[str] = None,
    strategy_tag: Optional[str] = None,
) -> ScoredResponse:
    """
    Turn the loose (code, error_type, strategy_tag) triple into a variant.

    Only Incorrect carries an error type and only Correct carries a strategy
    tag; any other combination is rejected.
    """
    try:
        code = ScoreCode(code)
    except ValueError as e:
        raise ValidationError(f"Unknown score code: {code}") from e

    if error_type is not None and error_type not in ERROR_TYPES:
        raise ValidationError(f"error_type must be one of {list(ERROR_TYPES)}")
    if strategy_tag is not None and strategy_tag not in STRATEGY_TAGS:
        raise ValidationError(f"strategy_tag must be one of {list(STRATEGY_TAGS)}")

    if code is ScoreCode.CORRECT:
        if error_type is not None:
            raise ValidationError("error_type is only allowed with score code 'incorrect'")
        return Correct(strategy_tag=strategy_tag)
    if code is ScoreCode.INCORRECT:
        if strategy_tag is not None:
            raise ValidationError("strategy_tag is only allowed with score code 'correct'")
        return Incorrect(error_type=error_type)

    if error_type is not None or strategy_tag is not None:
        raise ValidationError(f"score code '{code.value}' takes no error_type or strategy_tag")
    return _SIMPLE[code]()


def counts_as_correct(response: ScoredResponse | ScoreCode) -> bool:
    code = response if isinstance(response, ScoreCode) else response.code
    return code in (ScoreCode.CORRECT, ScoreCode.SELF_CORRECT)
