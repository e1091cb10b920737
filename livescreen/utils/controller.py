"""
Assessor write path.

One SessionController per session, kept in an in-process registry. Every
command takes the controller lock, runs the pure navigation reducer, writes
what is durable and broadcasts the result on the session channel.

Scoring and state updates are optimistic: the new item index is kept and
broadcast even if the database write fails (the caller gets a
PersistenceError and can retry). Navigation, completion and session end only
take effect once committed.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass, replace
from functools import partial
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from livescreen.models.enums import ModuleType, ScoreCode, SessionStatus, ValidityStatus
from livescreen.models.response import PassageAssessmentResult, Response
from livescreen.models.session import AssessmentSession, SessionSummary
from livescreen.models.subtest import Subtest
from livescreen.schemas.session import SessionOut
from livescreen.settings import settings
from livescreen.utils import navigation as nav
from livescreen.utils.channel import SessionChannelHub, hub as default_hub
from livescreen.utils.errors import InvalidTransition, PersistenceError, ValidationError
from livescreen.utils.orf import (
    FluencyScores,
    OrfAttempt,
    WordMark,
    classify_benchmark,
    extract_passage,
    round_half_up,
    split_words,
)
from livescreen.utils.scored_response import ScoredResponse, counts_as_correct
from livescreen.utils.session_state import SessionState
from livescreen.utils.timer import SessionTimer, TimerDriver

logger = logging.getLogger(__name__)

TIMER_ACTIONS = ("start", "pause", "reset")


# --------------------- Helpers ---------------------

def session_row(session: AssessmentSession) -> Dict[str, Any]:
    """Durable session row as broadcast on the channel."""
    return SessionOut.model_validate(session).model_dump(mode="json")


def duration_for(subtest: Subtest) -> Optional[int]:
    if subtest.duration_seconds:
        return subtest.duration_seconds
    if subtest.module_type == ModuleType.ORF:
        return settings.orf_max_seconds
    return None


def commit_or_raise(db: Session, what: str, session_id: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Could not save %s", what, extra={"session_id": session_id})
        raise PersistenceError(f"Could not save {what}; retry the action") from e


def session_responses(db: Session, session_id: str) -> List[Response]:
    return (
        db.query(Response)
        .filter(Response.session_id == session_id)
        .order_by(Response.created_at)
        .all()
    )


# --------------------- Summaries ---------------------

@dataclass
class SubtestSummary:
    subtest_id: str
    total_items: int
    items_scored: int
    correct: int
    accuracy: int
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize_subtest(
    responses: List[Response],
    subtest_id: str,
    total_items: int,
    reason: Optional[str] = None,
) -> SubtestSummary:
    """
    items_scored: distinct item indices with at least one response.
    correct: distinct items whose latest response is correct or self_correct.
    """
    latest: Dict[int, ScoreCode] = {}
    for r in responses:  # oldest first, so later rows win
        if r.subtest_id == subtest_id:
            latest[r.item_index] = ScoreCode(r.score_code)
    correct = sum(1 for code in latest.values() if counts_as_correct(code))
    accuracy = round_half_up(correct / total_items * 100) if total_items > 0 else 0
    return SubtestSummary(
        subtest_id=subtest_id,
        total_items=total_items,
        items_scored=len(latest),
        correct=correct,
        accuracy=accuracy,
        reason=reason,
    )


def build_session_summary(db: Session, session: AssessmentSession) -> SessionSummary:
    responses = session_responses(db, session.id)
    subtest_ids = list(dict.fromkeys(r.subtest_id for r in responses))
    per_subtest = []
    for subtest_id in subtest_ids:
        subtest = db.get(Subtest, subtest_id)
        total = subtest.total_items if subtest else 0
        per_subtest.append(summarize_subtest(responses, subtest_id, total))
    return SessionSummary(
        id=str(uuid4()),
        session_id=session.id,
        total_items=sum(s.items_scored for s in per_subtest),
        total_correct=sum(s.correct for s in per_subtest),
        subtests=[s.to_dict() for s in per_subtest],
        created_at=datetime.utcnow(),
    )


# --------------------- Controller ---------------------

class SessionController:
    def __init__(
        self,
        session_id: str,
        machine: Optional[nav.Machine] = None,
        timer: Optional[SessionTimer] = None,
        hub: Optional[SessionChannelHub] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.session_id = session_id
        self.machine = machine or nav.Machine()
        self.timer = timer or SessionTimer()
        self.hub = hub or default_hub
        self.loop = loop
        self._lock = threading.Lock()
        self._driver: Optional[TimerDriver] = None

    @classmethod
    def rehydrate(cls, db: Session, session: AssessmentSession, **kwargs) -> "SessionController":
        """
        Rebuild the machine from the durable row after a restart.
        A timer never comes back running and the pointer is not restored.
        """
        state = SessionState(
            current_item_index=session.current_item_index or 0,
            timer_seconds=session.timer_seconds or 0,
        )
        completed = tuple(dict.fromkeys(r.subtest_id for r in session_responses(db, session.id)))
        timer = SessionTimer()

        if session.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
            phase: nav.Phase = nav.SessionEnded(session.validity_status or ValidityStatus.INVALID)
        elif session.current_subtest is not None:
            subtest = session.current_subtest
            phase = nav.SubtestActive(subtest.id, subtest.total_items)
            completed = tuple(s for s in completed if s != subtest.id)
            timer = SessionTimer(max_seconds=duration_for(subtest), elapsed=state.timer_seconds)
            state = replace(state, timer_seconds=timer.elapsed)
        else:
            phase = nav.NoSubtestSelected()

        machine = nav.Machine(phase=phase, state=state, completed_subtest_ids=completed)
        logger.info("Rehydrated session %s in %s", session.id, phase.name, extra={"session_id": session.id})
        return cls(session.id, machine=machine, timer=timer, **kwargs)

    # ---------- read ----------

    @property
    def phase(self) -> nav.Phase:
        return self.machine.phase

    @property
    def state(self) -> SessionState:
        return self.machine.state

    def snapshot(self) -> Dict[str, Any]:
        machine = self.machine
        return {
            "state": machine.state.to_message(),
            "phase": machine.phase.name,
            "allowed_events": nav.allowed_events(machine.phase),
            "completed_subtest_ids": list(machine.completed_subtest_ids),
        }

    def timer_snapshot(self) -> Dict[str, Any]:
        return {
            "elapsed": self.timer.elapsed,
            "remaining": self.timer.remaining,
            "max_seconds": self.timer.max_seconds,
            "running": self.timer.running,
            "complete": self.timer.complete,
        }

    # ---------- internals ----------

    def _log(self, message: str, *args: Any, event: str, **extra: Any) -> None:
        logger.info(message, *args, extra={"session_id": self.session_id, "event": event, **extra})

    def _persist_state(self, session: AssessmentSession, state: SessionState) -> None:
        session.current_item_index = state.current_item_index
        session.timer_seconds = state.timer_seconds
        session.is_timer_running = state.is_timer_running

    def _publish(self, session: Optional[AssessmentSession] = None) -> None:
        if session is not None:
            self.hub.publish_row(self.session_id, session_row(session))
        self.hub.publish_state(self.session_id, self.machine.state)

    def _call_on_loop(self, fn: Callable[[], None]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            loop = self.loop
            if loop is None or loop.is_closed():
                logger.warning("No event loop available; timer for session %s will not tick", self.session_id)
                return
            loop.call_soon_threadsafe(fn)
        else:
            fn()

    def _run_timer(self) -> None:
        if self._driver is None or self._driver.timer is not self.timer:
            self._cancel_driver()
            self._driver = TimerDriver(
                self.timer,
                self._on_tick,
                settings.timer_tick_seconds,
                step=partial(self._tick, self.timer),
            )
        self._call_on_loop(self._driver.start)

    def _cancel_driver(self) -> None:
        if self._driver is not None:
            driver, self._driver = self._driver, None
            self._call_on_loop(driver.stop)

    def _stop_driver(self) -> None:
        self.timer.pause()
        self._cancel_driver()

    def _sync_state_from_timer(self) -> None:
        state = replace(
            self.machine.state,
            timer_seconds=self.timer.elapsed,
            is_timer_running=self.timer.running,
        )
        self.machine = replace(self.machine, state=state)

    def _tick(self, timer: SessionTimer) -> bool:
        """Advance the timer and the replicated state in one critical section."""
        with self._lock:
            if timer is not self.timer:
                return False
            completed = timer.tick()
            self._sync_state_from_timer()
            return completed

    def _on_tick(self, timer: SessionTimer, completed: bool) -> None:
        if timer is not self.timer:
            return
        self.hub.publish_state(self.session_id, self.machine.state)
        if completed:
            self._log("Timer complete at %ss", timer.elapsed, event="timer_complete")

    def shutdown(self) -> None:
        with self._lock:
            self._stop_driver()

    # ---------- commands ----------

    def navigate(self, db: Session, session: AssessmentSession, subtest: Optional[Subtest]) -> None:
        with self._lock:
            if subtest is None:
                self.machine = nav.reduce(self.machine, nav.AddAnother())
                self._log("Returned to subtest selection", event="add_another")
                return

            machine = nav.reduce(self.machine, nav.SelectSubtest(subtest.id, subtest.total_items))
            session.current_subtest_id = subtest.id
            session.status = SessionStatus.IN_PROGRESS
            self._persist_state(session, machine.state)
            commit_or_raise(db, "subtest selection", self.session_id)
            db.refresh(session)

            self._stop_driver()
            self.timer = SessionTimer(max_seconds=duration_for(subtest))
            self.machine = machine
            self._log("Selected subtest %s (%d items)", subtest.id, subtest.total_items,
                      event="select_subtest", subtest_id=subtest.id)
            self._publish(session)

    def record_response(
        self,
        db: Session,
        session: AssessmentSession,
        item_index: int,
        scored: ScoredResponse,
        response_time_ms: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Response:
        with self._lock:
            before = self.machine.state
            machine = nav.reduce(self.machine, nav.ScoreItem(item_index))
            subtest_id = machine.phase.subtest_id
            self.machine = machine
            self._publish()

            if response_time_ms is None and before.is_timer_running:
                response_time_ms = before.timer_seconds * 1000
            response = Response(
                id=str(uuid4()),
                session_id=self.session_id,
                subtest_id=subtest_id,
                item_index=item_index,
                score_code=scored.code,
                error_type=getattr(scored, "error_type", None),
                strategy_tag=getattr(scored, "strategy_tag", None),
                response_time_ms=response_time_ms,
                notes=notes,
            )
            db.add(response)
            self._persist_state(session, machine.state)
            commit_or_raise(db, "response", self.session_id)
            db.refresh(response)
            self._log("Scored item %d as %s", item_index, scored.code.value, event="score_item",
                      subtest_id=subtest_id, item_index=item_index)
            return response

    def update_state(self, db: Session, session: AssessmentSession, changes: Dict[str, Any]) -> SessionState:
        if not isinstance(changes, dict) or not changes:
            raise ValidationError("State update must be a non-empty object")
        with self._lock:
            timer_fields = {"timerSeconds", "isTimerRunning"} & set(changes)
            if timer_fields and not isinstance(self.machine.phase, nav.SubtestActive):
                raise InvalidTransition(f"The timer is not available while {self.machine.phase.name}")
            self.machine = nav.reduce(self.machine, nav.UpdateState(changes))
            if timer_fields:
                state = self.machine.state
                self.timer.set(state.timer_seconds, state.is_timer_running)
                if self.timer.running:
                    self._run_timer()
                else:
                    self._stop_driver()
                self._sync_state_from_timer()
            self._publish()

            # pointer-only updates are never written
            if set(changes) - {"pointerPosition"}:
                self._persist_state(session, self.machine.state)
                commit_or_raise(db, "session state", self.session_id)
            return self.machine.state

    def timer_action(self, db: Session, session: AssessmentSession, action: str) -> SessionState:
        if action not in TIMER_ACTIONS:
            raise ValidationError(f"Timer action must be one of {list(TIMER_ACTIONS)}")
        with self._lock:
            if not isinstance(self.machine.phase, nav.SubtestActive):
                raise InvalidTransition(f"The timer is not available while {self.machine.phase.name}")
            if action == "start":
                self.timer.start()
                self._run_timer()
            elif action == "pause":
                self._stop_driver()
            else:
                self._stop_driver()
                self.timer.reset()
            self._sync_state_from_timer()
            self._publish()
            self._persist_state(session, self.machine.state)
            commit_or_raise(db, "timer", self.session_id)
            self._log("Timer %s at %ss", action, self.timer.elapsed, event=f"timer_{action}")
            return self.machine.state

    def complete_subtest(self, db: Session, session: AssessmentSession, action: str) -> SubtestSummary:
        event = nav.Discontinue() if action == "discontinue" else nav.Submit()
        with self._lock:
            phase = self.machine.phase
            machine = nav.reduce(self.machine, event)
            session.current_subtest_id = None
            self._persist_state(session, machine.state)
            commit_or_raise(db, "subtest completion", self.session_id)
            db.refresh(session)

            self._stop_driver()
            self.machine = machine
            reason = machine.phase.reason
            summary = summarize_subtest(
                session_responses(db, self.session_id), phase.subtest_id, phase.total_items, reason
            )
            self._log("Subtest %s %s", phase.subtest_id, reason, event="complete_subtest",
                      subtest_id=phase.subtest_id)
            self._publish(session)
            return summary

    def update_session(
        self,
        db: Session,
        session: AssessmentSession,
        observations: Optional[Dict[str, Any]] = None,
        validity_notes: Optional[str] = None,
    ) -> AssessmentSession:
        with self._lock:
            if observations:
                merged = dict(session.observations or {})
                merged.update(observations)
                session.observations = merged
            if validity_notes is not None:
                session.validity_notes = validity_notes
            commit_or_raise(db, "session", self.session_id)
            db.refresh(session)
            self._publish(session)
            return session

    def end_session(
        self,
        db: Session,
        session: AssessmentSession,
        validity: ValidityStatus,
        validity_notes: Optional[str] = None,
        observations: Optional[Dict[str, Any]] = None,
    ) -> SessionSummary:
        with self._lock:
            machine = nav.reduce(self.machine, nav.EndSession(validity))
            session.status = SessionStatus.COMPLETED
            session.ended_at = datetime.utcnow()
            session.validity_status = machine.phase.validity
            if validity_notes is not None:
                session.validity_notes = validity_notes
            if observations:
                merged = dict(session.observations or {})
                merged.update(observations)
                session.observations = merged
            session.current_subtest_id = None
            self._persist_state(session, machine.state)
            summary = build_session_summary(db, session)
            db.add(summary)
            commit_or_raise(db, "session end", self.session_id)
            db.refresh(session)
            db.refresh(summary)

            self._stop_driver()
            self.machine = machine
            self._log("Session ended as %s", machine.phase.validity.value, event="end_session")
            self._publish(session)
            return summary

    # ---------- ORF ----------

    def _orf_attempt(
        self,
        subtest: Subtest,
        word_marks: List[WordMark],
        last_word_index: Optional[int],
    ) -> OrfAttempt:
        phase = self.machine.phase
        if not isinstance(phase, nav.SubtestActive) or phase.subtest_id != subtest.id:
            raise InvalidTransition("ORF scoring needs the passage subtest to be active")
        if subtest.module_type != ModuleType.ORF:
            raise ValidationError(f"Subtest {subtest.id} is not an ORF passage")
        passage = extract_passage(subtest.stimulus_data, self.machine.state.current_item_index)
        return OrfAttempt.restore(split_words(passage), word_marks, last_word_index)

    def preview_orf(
        self,
        subtest: Subtest,
        word_marks: List[WordMark],
        last_word_index: Optional[int],
        fluency: FluencyScores,
        grade: Optional[str],
    ) -> Dict[str, Any]:
        with self._lock:
            attempt = self._orf_attempt(subtest, word_marks, last_word_index)
            elapsed = self.timer.elapsed
        payload = attempt.to_payload(elapsed, fluency)
        payload["elapsed_seconds"] = elapsed
        payload["total_words"] = attempt.total_words
        payload["benchmark_status"] = classify_benchmark(payload["wcpm"], grade).value
        return payload

    def save_orf(
        self,
        db: Session,
        session: AssessmentSession,
        subtest: Subtest,
        word_marks: List[WordMark],
        last_word_index: Optional[int],
        fluency: FluencyScores,
        grade: Optional[str],
    ) -> Tuple[PassageAssessmentResult, SubtestSummary]:
        """Recompute from the stored passage and the server timer, store, submit."""
        with self._lock:
            attempt = self._orf_attempt(subtest, word_marks, last_word_index)
            elapsed = self.timer.elapsed
            payload = attempt.to_payload(elapsed, fluency)
            item_index = self.machine.state.current_item_index
            machine = nav.reduce(self.machine, nav.Submit())

            result = (
                db.query(PassageAssessmentResult)
                .filter_by(session_id=self.session_id, subtest_id=subtest.id)
                .first()
            )
            if result is None:
                result = PassageAssessmentResult(id=str(uuid4()), session_id=self.session_id, subtest_id=subtest.id)
                db.add(result)
            for key, value in payload.items():
                setattr(result, key, value)
            result.elapsed_seconds = elapsed
            result.benchmark_status = classify_benchmark(payload["wcpm"], grade).value

            # per-item accounting sees the passage as one scored item
            db.add(Response(
                id=str(uuid4()),
                session_id=self.session_id,
                subtest_id=subtest.id,
                item_index=item_index,
                score_code=ScoreCode.CORRECT,
                response_time_ms=elapsed * 1000,
            ))
            session.current_subtest_id = None
            self._persist_state(session, machine.state)
            commit_or_raise(db, "ORF result", self.session_id)
            db.refresh(result)
            db.refresh(session)

            self._stop_driver()
            self.machine = machine
            summary = summarize_subtest(
                session_responses(db, self.session_id), subtest.id, subtest.total_items, machine.phase.reason
            )
            self._log("Saved ORF result: %s WCPM, %s%% accuracy", result.wcpm, result.accuracy,
                      event="orf_save", subtest_id=subtest.id)
            self._publish(session)
            return result, summary


# --------------------- Registry ---------------------

class ControllerRegistry:
    def __init__(self, hub: Optional[SessionChannelHub] = None):
        self.hub = hub or default_hub
        # event loop that runs timer tasks; set at application startup
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._controllers: Dict[str, SessionController] = {}
        self._lock = threading.Lock()

    def get(self, db: Session, session: AssessmentSession) -> SessionController:
        with self._lock:
            controller = self._controllers.get(session.id)
            if controller is None:
                controller = SessionController.rehydrate(db, session, hub=self.hub, loop=self.loop)
                self._controllers[session.id] = controller
            return controller

    def peek(self, session_id: str) -> Optional[SessionController]:
        with self._lock:
            return self._controllers.get(session_id)

    def release(self, session_id: str) -> None:
        """Forget an ended session; a later lookup rehydrates it from its row."""
        with self._lock:
            controller = self._controllers.pop(session_id, None)
        if controller is not None:
            controller.shutdown()

    def clear(self) -> None:
        with self._lock:
            controllers = list(self._controllers.values())
            self._controllers.clear()
        for controller in controllers:
            controller.shutdown()


registry = ControllerRegistry()
