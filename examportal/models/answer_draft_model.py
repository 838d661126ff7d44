from ..db import Base
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, Uuid, UniqueConstraint
import uuid


class AnswerDraft(Base):
    """One immutable autosaved version of a student's answer to one question."""

    __tablename__ = "answer_drafts"
    __table_args__ = (
        UniqueConstraint('session_id', 'question_id', 'version_number', name='uq_draft_version'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    text = Column(Text, nullable=False, default="")
    saved_at = Column(DateTime, nullable=False)
