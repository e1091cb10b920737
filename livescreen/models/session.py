from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from livescreen.database import Base
from livescreen.models.enums import SessionStatus, ValidityStatus, db_enum
from datetime import datetime

class AssessmentSession(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=True)
    student = relationship("Student")

    current_subtest_id = Column(String, ForeignKey("subtests.id"), nullable=True)
    current_subtest = relationship("Subtest")

    status = Column(db_enum(SessionStatus, "session_status"), default=SessionStatus.SCHEDULED, nullable=False)
    validity_status = Column(db_enum(ValidityStatus, "validity_status"), nullable=True)
    validity_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    observations = Column(JSON, nullable=True)

    # only the hash is stored; the plain token is handed out once on creation
    assessor_token_hash = Column(String, nullable=False)

    # Session-state fields kept for rehydration after a restart.
    # The pointer position is never persisted.
    current_item_index = Column(Integer, default=0, nullable=False)
    timer_seconds = Column(Integer, default=0, nullable=False)
    is_timer_running = Column(Boolean, default=False, nullable=False)

    responses = relationship("Response", back_populates="session", order_by="Response.created_at")


class SessionSummary(Base):
    __tablename__ = "session_summaries"

    id = Column(String, primary_key=True)
    session_id = Column(String, ForeignKey("sessions.id"), unique=True, nullable=False)

    total_items = Column(Integer, nullable=False, default=0)
    total_correct = Column(Integer, nullable=False, default=0)
    subtests = Column(JSON, nullable=True)  # per-subtest breakdown

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
