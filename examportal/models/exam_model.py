from ..db import Base


"""
Exams Model and ExamQuestions Junction Table
| Column | Type | Notes |
| :--- | :--- | :--- |
| `id` | UUID | Primary Key |
| `title` | VARCHAR | |
| `start_time` | TIMESTAMP | naive UTC, window opens |
| `end_time` | TIMESTAMP | naive UTC, window closes (hard cutoff) |
| `duration` | INTEGER | In minutes, per attempt |
| `access_type` | ENUM | code / invitation / open |
| `exam_code` | VARCHAR | Upper-case, only for `code` access |
| `max_attempts` | INTEGER | Default 1 |
| `max_violations` | INTEGER | Auto-submit threshold, default 3 |
| `is_published` | BOOLEAN | Default `false` |
| `created_by` | UUID | FK -> users (owning teacher) |

### ExamQuestions (Junction)
| Column | Type | Notes |
| :--- | :--- | :--- |
| `exam_id` | UUID | FK -> Exams |
| `question_id` | UUID | FK -> Questions |
| `order` | INTEGER | To maintain sequence in exam |
"""

from sqlalchemy import Column, String, Boolean, Integer, DateTime, ForeignKey, Table, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship, backref
import enum
import uuid


class AccessType(str, enum.Enum):
    CODE = "code"
    INVITATION = "invitation"
    OPEN = "open"


# Association (junction) table between exams and questions
exam_questions = Table(
    "exam_questions",
    Base.metadata,
    Column("exam_id", Uuid, ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True),
    Column("question_id", Uuid, ForeignKey("questions.id"), primary_key=True),
    Column("order", Integer, nullable=False),
)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # in minutes
    access_type = Column(SAEnum(AccessType), default=AccessType.CODE, nullable=False)
    exam_code = Column(String, nullable=True, unique=True)
    max_attempts = Column(Integer, default=1, nullable=False)
    max_violations = Column(Integer, default=3, nullable=False)
    is_published = Column(Boolean, default=False)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    questions = relationship(
        "QuestionDB",
        secondary=exam_questions,
        backref=backref("exams"),
        order_by=exam_questions.c.order,
    )
