from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from livescreen.database import Base
from livescreen.models.enums import ScoreCode, db_enum
from datetime import datetime

class Response(Base):
    """One scored item. Append-only: re-scoring inserts another row."""
    __tablename__ = "responses"

    id = Column(String, primary_key=True)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    session = relationship("AssessmentSession", back_populates="responses")
    subtest_id = Column(String, ForeignKey("subtests.id"), nullable=False, index=True)

    item_index = Column(Integer, nullable=False)
    score_code = Column(db_enum(ScoreCode, "response_code"), nullable=False)
    error_type = Column(String, nullable=True)
    strategy_tag = Column(String, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PassageAssessmentResult(Base):
    """Passage-level ORF aggregate, one per (session, subtest)."""
    __tablename__ = "passage_assessment_results"

    id = Column(String, primary_key=True)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False)
    subtest_id = Column(String, ForeignKey("subtests.id"), nullable=False)

    wcpm = Column(Integer, nullable=False)
    words_attempted = Column(Integer, nullable=False)
    words_correct = Column(Integer, nullable=False)
    error_count = Column(Integer, nullable=False)
    self_correct_count = Column(Integer, nullable=False)
    accuracy = Column(Integer, nullable=False)
    elapsed_seconds = Column(Integer, nullable=False)
    last_word_index = Column(Integer, nullable=True)
    benchmark_status = Column(String, nullable=False, default="unknown")

    fluency_scores = Column(JSON, nullable=False)
    word_marks = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", "subtest_id", name="uq_passage_result"),
    )
