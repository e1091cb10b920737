"""
Read-only student surface: an HTML page, a JSON frame snapshot and the
WebSocket that streams frames as the assessor drives the session.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from livescreen.database import get_db, get_session_factory
from livescreen.models.session import AssessmentSession
from livescreen.models.subtest import Subtest
from livescreen.schemas.subtest import SubtestOut
from livescreen.settings import PACKAGE_DIR
from livescreen.utils.auth import get_session_or_404
from livescreen.utils.controller import registry, session_row
from livescreen.utils.errors import PersistenceError
from livescreen.utils.session_state import SessionState
from livescreen.utils.student_display import StudentDisplay
from livescreen.utils.student_view import render_frame

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

router = APIRouter(tags=["Student"])


def subtest_payload(subtest: Subtest) -> Dict[str, Any]:
    return SubtestOut.model_validate(subtest).model_dump(mode="json")


def _load_session_row(factory: sessionmaker, session_id: str) -> Optional[Dict[str, Any]]:
    with factory() as db:
        try:
            session = db.get(AssessmentSession, session_id)
            return session_row(session) if session else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load session {session_id}") from e


def _load_subtest(factory: sessionmaker, subtest_id: str) -> Optional[Dict[str, Any]]:
    with factory() as db:
        try:
            subtest = db.get(Subtest, subtest_id)
            return subtest_payload(subtest) if subtest else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load subtest {subtest_id}") from e


def _current_state(factory: sessionmaker, session_id: str) -> Optional[SessionState]:
    with factory() as db:
        session = db.get(AssessmentSession, session_id)
        return registry.get(db, session).state if session is not None else None


def _snapshot(db: Session, session: AssessmentSession) -> Dict[str, Any]:
    state = registry.get(db, session).state
    subtest = subtest_payload(session.current_subtest) if session.current_subtest else None
    frame = render_frame(session_row(session), subtest, state)
    frame["state"] = state.to_message()
    return frame


@router.get("/student/{session_id}/frame")
def student_frame(session_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _snapshot(db, get_session_or_404(db, session_id))


@router.get("/student/{session_id}", response_class=HTMLResponse)
def student_page(request: Request, session_id: str, db: Session = Depends(get_db)):
    session = get_session_or_404(db, session_id)
    return templates.TemplateResponse(
        request,
        "student.html",
        {"session_id": session_id, "frame": _snapshot(db, session)},
    )


@router.websocket("/ws/sessions/{session_id}/student")
async def student_socket(
    websocket: WebSocket,
    session_id: str,
    factory: sessionmaker = Depends(get_session_factory),
):
    await websocket.accept()

    async def fetch_session(sid: str) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(_load_session_row, factory, sid)

    async def fetch_subtest(subtest_id: str) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(_load_subtest, factory, subtest_id)

    state = await run_in_threadpool(_current_state, factory, session_id)

    display = StudentDisplay(
        session_id,
        fetch_session=fetch_session,
        fetch_subtest=fetch_subtest,
        on_frame=websocket.send_json,
        state=state,
    )
    task = asyncio.create_task(display.run())
    logger.info("Student display connected to session %s", session_id, extra={"session_id": session_id})
    try:
        # the student surface never writes; drain whatever the client sends
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Student display left session %s", session_id, extra={"session_id": session_id})
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Frame stream for session %s stopped: %r", session_id, e)
