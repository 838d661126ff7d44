from ..db import Base
from sqlalchemy import Column, Boolean, DateTime, ForeignKey, Uuid, UniqueConstraint
import uuid


class QuestionFlag(Base):
    """A student's "review later" mark on one question of a running attempt."""

    __tablename__ = "question_flags"
    __table_args__ = (
        UniqueConstraint('session_id', 'question_id', name='uq_flag_session_question'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id"), nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
