"""
Navigation and scoring state machine for one assessment session.

    NoSubtestSelected -> SubtestActive -> SubtestComplete -> NoSubtestSelected
                                                          -> SessionEnded

SessionEnded is reachable from every other phase. `reduce()` is pure: it takes
the current Machine and an event and returns the next Machine, or raises
InvalidTransition / ValidationError. Persistence and broadcasting are the
controller's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Tuple, Type, Union

from livescreen.models.enums import ValidityStatus
from livescreen.utils.errors import InvalidTransition, ValidationError
from livescreen.utils.session_state import SessionState


# --------------------- Phases ---------------------

@dataclass(frozen=True)
class NoSubtestSelected:
    name = "no_subtest_selected"


@dataclass(frozen=True)
class SubtestActive:
    subtest_id: str
    total_items: int
    name = "subtest_active"


@dataclass(frozen=True)
class SubtestComplete:
    subtest_id: str
    reason: str  # submitted | discontinued
    name = "subtest_complete"


@dataclass(frozen=True)
class SessionEnded:
    validity: ValidityStatus
    name = "session_ended"


Phase = Union[NoSubtestSelected, SubtestActive, SubtestComplete, SessionEnded]


# --------------------- Events ---------------------

@dataclass(frozen=True)
class SelectSubtest:
    subtest_id: str
    total_items: int


@dataclass(frozen=True)
class ScoreItem:
    item_index: int


@dataclass(frozen=True)
class UpdateState:
    changes: Dict[str, Any]


@dataclass(frozen=True)
class Discontinue:
    pass


@dataclass(frozen=True)
class Submit:
    pass


@dataclass(frozen=True)
class AddAnother:
    pass


@dataclass(frozen=True)
class EndSession:
    validity: ValidityStatus


Event = Union[SelectSubtest, ScoreItem, UpdateState, Discontinue, Submit, AddAnother, EndSession]


@dataclass(frozen=True)
class Machine:
    phase: Phase = field(default_factory=NoSubtestSelected)
    state: SessionState = field(default_factory=SessionState)
    completed_subtest_ids: Tuple[str, ...] = ()


# --------------------- Transitions ---------------------

def _select(machine: Machine, event: SelectSubtest) -> Machine:
    if event.total_items < 0:
        raise ValidationError("total_items must not be negative")
    state = replace(machine.state, current_item_index=0, timer_seconds=0, is_timer_running=False)
    return replace(machine, phase=SubtestActive(event.subtest_id, event.total_items), state=state)


def _active(machine: Machine) -> SubtestActive:
    phase = machine.phase
    if not isinstance(phase, SubtestActive):
        raise InvalidTransition(f"No subtest is active while {phase.name}")
    return phase


def _score(machine: Machine, event: ScoreItem) -> Machine:
    phase = _active(machine)
    if not 0 <= event.item_index < phase.total_items:
        raise ValidationError(
            f"item_index {event.item_index} is outside 0..{max(phase.total_items - 1, 0)}"
        )
    # auto-advance, never past the last item
    if event.item_index < phase.total_items - 1:
        state = replace(machine.state, current_item_index=event.item_index + 1)
        return replace(machine, state=state)
    return machine


def _update_state(machine: Machine, event: UpdateState) -> Machine:
    state = machine.state.merge(event.changes)
    if "currentItemIndex" in event.changes:
        phase = machine.phase
        limit = phase.total_items if isinstance(phase, SubtestActive) else 1
        if not 0 <= state.current_item_index < max(limit, 1):
            raise ValidationError(
                f"currentItemIndex {state.current_item_index} is outside 0..{max(limit - 1, 0)}"
            )
    return replace(machine, state=state)


def _finish(reason: str) -> Callable[[Machine, Any], Machine]:
    def handler(machine: Machine, event: Any) -> Machine:
        phase = _active(machine)
        completed = machine.completed_subtest_ids
        if phase.subtest_id not in completed:
            completed = completed + (phase.subtest_id,)
        return replace(
            machine,
            phase=SubtestComplete(phase.subtest_id, reason),
            state=replace(machine.state, is_timer_running=False),
            completed_subtest_ids=completed,
        )
    return handler


def _add_another(machine: Machine, event: AddAnother) -> Machine:
    return replace(machine, phase=NoSubtestSelected())


def _end(machine: Machine, event: EndSession) -> Machine:
    try:
        validity = ValidityStatus(event.validity)
    except ValueError as e:
        raise ValidationError(f"Unknown validity status: {event.validity}") from e
    return replace(
        machine,
        phase=SessionEnded(validity),
        state=replace(machine.state, is_timer_running=False),
    )


TRANSITIONS: Dict[Tuple[Type, Type], Callable[[Machine, Any], Machine]] = {
    (NoSubtestSelected, SelectSubtest): _select,
    (NoSubtestSelected, UpdateState): _update_state,
    (NoSubtestSelected, EndSession): _end,

    (SubtestActive, SelectSubtest): _select,
    (SubtestActive, ScoreItem): _score,
    (SubtestActive, UpdateState): _update_state,
    (SubtestActive, Discontinue): _finish("discontinued"),
    (SubtestActive, Submit): _finish("submitted"),
    (SubtestActive, EndSession): _end,

    (SubtestComplete, AddAnother): _add_another,
    (SubtestComplete, SelectSubtest): _select,
    (SubtestComplete, UpdateState): _update_state,
    (SubtestComplete, EndSession): _end,
}


def reduce(machine: Machine, event: Event) -> Machine:
    handler = TRANSITIONS.get((type(machine.phase), type(event)))
    if handler is None:
        raise InvalidTransition(
            f"{type(event).__name__} is not allowed while {machine.phase.name}"
        )
    return handler(machine, event)


def allowed_events(phase: Phase) -> list[str]:
    """Event names the operator can issue next (drives the assessor UI)."""
    return [ev.__name__ for (ph, ev) in TRANSITIONS if ph is type(phase)]
