from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional, List, Union
from datetime import datetime
from uuid import UUID

from ..models.exam_model import AccessType
from ..models.question_model import QuestionType

AnswerContent = Union[int, float, str]


class QuestionData(BaseModel):
    """
    One inline question of a new exam.

    mcq questions carry `options` and the `correct_answers` auto-grading
    compares the student's latest draft against.
    """
    title: str = Field(..., description="The main title or text of the question.")
    description: Optional[str] = None
    type: QuestionType
    options: List[AnswerContent] = Field(default_factory=list)
    correct_answers: Optional[Union[AnswerContent, List[AnswerContent]]] = None
    max_score: int = Field(..., gt=0, description="The maximum score awarded for the question.")
    language: Optional[str] = None

    @model_validator(mode="after")
    def validate_answers_based_on_type(self):
        if self.type == QuestionType.MCQ:
            if not self.options:
                raise ValueError("mcq questions need options")
            answers = self.correct_answers if isinstance(self.correct_answers, list) else [self.correct_answers]
            if not answers or any(a is None or a not in self.options for a in answers):
                raise ValueError("mcq correct answers must be among the options")
        return self


class ExamCreate(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime
    duration: int
    access_type: AccessType = AccessType.CODE
    # generated when omitted for code-access exams
    exam_code: Optional[str] = None
    max_attempts: int = Field(1, ge=1, le=10)
    max_violations: int = Field(3, ge=1, le=20)
    is_published: bool = False
    # the order in the list defines the exam order
    questions: List[QuestionData] = Field(default_factory=list)

    @field_validator("duration")
    @classmethod
    def duration_must_be_positive(cls, v):
        if v is None or v <= 0:
            raise ValueError("duration must be a positive integer (minutes)")
        return v

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ExamRead(BaseModel):
    id: UUID
    title: str
    start_time: datetime
    end_time: datetime
    duration: int
    access_type: AccessType
    exam_code: Optional[str] = None
    max_attempts: int
    max_violations: int
    is_published: bool
    # ordered question ids
    questions: List[UUID] = []

    model_config = ConfigDict(from_attributes=True)


class QuestionRead(BaseModel):
    """Question as shown to a student: no correct answers."""
    id: UUID
    title: str
    description: Optional[str] = None
    type: str
    options: Optional[List[AnswerContent]] = None
    max_score: int
    language: Optional[str] = None
