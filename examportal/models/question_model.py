from ..db import Base
import enum
import uuid
from sqlalchemy import Column, Integer, String, Uuid, JSON, Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB


class QuestionType(str, enum.Enum):
    MCQ = "mcq"
    SAQ = "saq"
    CODING = "coding"


class QuestionDB(Base):
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    type = Column(SAEnum(QuestionType, name="question_type"), nullable=False)
    options = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    # mcq: the correct option as stored in `options`
    correct_answers = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    max_score = Column(Integer, default=1, nullable=False)
    language = Column(String, nullable=True)  # coding only
