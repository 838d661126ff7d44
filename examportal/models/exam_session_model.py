from ..db import Base
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Uuid, Enum as SAEnum, UniqueConstraint
from sqlalchemy.orm import relationship, backref
import uuid
from datetime import datetime, timezone

from ..services.session_states import SessionStatus


class ExamSession(Base):
    __tablename__ = "exam_sessions"
    __table_args__ = (
        UniqueConstraint('exam_id', 'student_id', 'attempt_number', name='uq_exam_student_attempt'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # exam_id is a proper foreign key so DB-level ON DELETE CASCADE can remove sessions
    exam_id = Column(Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    attempt_number = Column(Integer, nullable=False, default=1)

    status = Column(SAEnum(SessionStatus), default=SessionStatus.NOT_STARTED, nullable=False)
    # set by start / by completion or expiry
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    violation_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    # passive_deletes so SQLAlchemy will not try to nullify the FK when deleting the parent
    exam = relationship("Exam", backref=backref("sessions", passive_deletes=True))
