from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime

from ..models.response_model import GradingStatus


class GradeEntry(BaseModel):
    marks_obtained: float = Field(..., ge=0, allow_inf_nan=False)
    feedback: Optional[str] = None


class ApplyGradesPayload(BaseModel):
    # question id -> grade
    grades: Dict[UUID, GradeEntry]


class ResponseRead(BaseModel):
    id: UUID
    exam_id: UUID
    session_id: UUID
    student_id: UUID
    student_email: str
    answers: Dict[str, Dict[str, Any]]
    total_score: float
    auto_graded_score: float
    manual_graded_score: float
    max_possible_score: float
    grading_status: GradingStatus
    submitted_at: datetime
    graded_at: Optional[datetime] = None
    graded_by: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class GradingStats(BaseModel):
    exam_id: UUID
    total_responses: int
    pending: int
    partial: int
    completed: int
    average_score: float
    highest_score: float
    lowest_score: float
