from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from livescreen.utils.errors import ValidationError

# Wire names of the ephemeral fields, in the order they are broadcast
STATE_FIELDS = ("currentItemIndex", "pointerPosition", "timerSeconds", "isTimerRunning")


@dataclass(frozen=True)
class Pointer:
    """Pointer location as percentages of the stimulus area."""
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class SessionState:
    """
    Ephemeral per-session interaction state.
    Broadcast as a full value every time; receivers keep the last one they saw.
    """
    current_item_index: int = 0
    pointer_position: Optional[Pointer] = None
    timer_seconds: int = 0
    is_timer_running: bool = False

    def to_message(self) -> Dict[str, Any]:
        return {
            "currentItemIndex": self.current_item_index,
            "pointerPosition": self.pointer_position.to_dict() if self.pointer_position else None,
            "timerSeconds": self.timer_seconds,
            "isTimerRunning": self.is_timer_running,
        }

    def merge(self, changes: Dict[str, Any]) -> "SessionState":
        """Apply a partial update given in wire names. Unknown keys are rejected."""
        unknown = set(changes) - set(STATE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown session-state fields: {', '.join(sorted(unknown))}")

        updated = self
        if "currentItemIndex" in changes:
            updated = replace(updated, current_item_index=_as_int(changes["currentItemIndex"], "currentItemIndex"))
        if "pointerPosition" in changes:
            updated = replace(updated, pointer_position=_as_pointer(changes["pointerPosition"]))
        if "timerSeconds" in changes:
            updated = replace(updated, timer_seconds=_as_int(changes["timerSeconds"], "timerSeconds"))
        if "isTimerRunning" in changes:
            value = changes["isTimerRunning"]
            if not isinstance(value, bool):
                raise ValidationError("isTimerRunning must be a boolean")
            updated = replace(updated, is_timer_running=value)
        return updated

    @classmethod
    def from_message(cls, payload: Dict[str, Any], previous: Optional["SessionState"] = None) -> "SessionState":
        """
        Receiver side: overlay a broadcast onto the last known state.
        Fields missing from the payload keep their previous value.
        """
        base = previous or cls()
        return base.merge({k: v for k, v in payload.items() if k in STATE_FIELDS})


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must not be negative")
    return value


def _as_pointer(value: Any) -> Optional[Pointer]:
    if value is None:
        return None
    if isinstance(value, Pointer):
        return value
    if not isinstance(value, dict) or "x" not in value or "y" not in value:
        raise ValidationError("pointerPosition must be null or {x, y}")
    try:
        x, y = float(value["x"]), float(value["y"])
    except (TypeError, ValueError) as e:
        raise ValidationError("pointerPosition coordinates must be numbers") from e
    if not (0.0 <= x <= 100.0 and 0.0 <= y <= 100.0):
        raise ValidationError("pointerPosition coordinates must be within 0..100")
    return Pointer(x=x, y=y)
