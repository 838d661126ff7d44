from ..db import Base
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Uuid, JSON, Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict
import uuid
import enum


class GradingStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


class StudentResponse(Base):
    """
    Gradable snapshot of a completed session.

    `answers` maps question id (str) ->
    {type, question_number, answer, version_number, is_correct, marks_obtained, max_marks, graded, feedback}
    """
    __tablename__ = "student_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id = Column(Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(Uuid, ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, unique=True)
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    student_email = Column(String, nullable=False)

    # MutableDict so SQLAlchemy detects in-place changes to JSON fields
    answers = Column(MutableDict.as_mutable(JSON().with_variant(JSONB, "postgresql")), nullable=False, default=dict)
    total_score = Column(Float, nullable=False, default=0.0)
    auto_graded_score = Column(Float, nullable=False, default=0.0)
    manual_graded_score = Column(Float, nullable=False, default=0.0)
    max_possible_score = Column(Float, nullable=False, default=0.0)
    grading_status = Column(SAEnum(GradingStatus), default=GradingStatus.PENDING, nullable=False)

    submitted_at = Column(DateTime, nullable=False)
    graded_at = Column(DateTime, nullable=True)
    graded_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
