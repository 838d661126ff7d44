from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from .exam_schema import QuestionRead
from .grading_schema import ResponseRead


class ExamAccessRequest(BaseModel):
    exam_id: UUID
    exam_code: Optional[str] = None
    invitation_token: Optional[str] = None


class ExamAccessResult(BaseModel):
    can_access: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    session_id: Optional[UUID] = None


class JoinExamRequest(BaseModel):
    exam_code: Optional[str] = None
    invitation_token: Optional[str] = None


class TimerRead(BaseModel):
    session_id: UUID
    status: str
    time_remaining_seconds: int
    deadline: datetime
    is_expired: bool
    warning_type: Optional[str] = None
    warning_message: Optional[str] = None


class SessionRead(BaseModel):
    id: UUID
    exam_id: UUID
    student_id: UUID
    attempt_number: int
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    violation_count: int
    timer: Optional[TimerRead] = None
    questions: List[QuestionRead] = []


class SessionCompletion(SessionRead):
    response: Optional[ResponseRead] = None


class SessionAutoSave(BaseModel):
    question_id: UUID
    text: str = Field("", max_length=100_000)


class ViolationPayload(BaseModel):
    violation_type: str = "unknown"


class DraftRead(BaseModel):
    id: UUID
    session_id: UUID
    question_id: UUID
    version_number: int
    text: str
    saved_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FlagPayload(BaseModel):
    question_id: UUID
    is_flagged: bool = True


class FlagRead(BaseModel):
    id: UUID
    session_id: UUID
    question_id: UUID
    is_flagged: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProgressRead(BaseModel):
    session_id: UUID
    status: str
    total_questions: int
    answered_questions: int
    flagged_questions: int
    time_remaining_seconds: int
