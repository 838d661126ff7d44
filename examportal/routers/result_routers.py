from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..db import get_async_session
from ..dependencies import current_teacher, get_clock
from ..models.user_model import User
from ..schemas.grading_schema import ApplyGradesPayload, ResponseRead, GradingStats
from ..services.grading_service import GradeReconciler

router = APIRouter(tags=["Results"])


@router.get("/exams/{exam_id}/responses", response_model=List[ResponseRead])
async def list_responses(exam_id: UUID, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await GradeReconciler(session, clock).list_responses(exam_id, user)


@router.get("/exams/{exam_id}/grading/stats", response_model=GradingStats)
async def grading_stats(exam_id: UUID, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await GradeReconciler(session, clock).response_stats(exam_id, user)


@router.get("/responses/{response_id}", response_model=ResponseRead)
async def get_response(response_id: UUID, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await GradeReconciler(session, clock).get_response(response_id, user)


@router.put("/responses/{response_id}/grades", response_model=ResponseRead)
async def apply_grades(response_id: UUID, payload: ApplyGradesPayload, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    """
    Grade several questions of one response at once.
    Expected payload: { "grades": { <question_id>: { "marks_obtained": <number>, "feedback": <str?> } } }
    Nothing is written unless every entry is within its question's maximum.
    """
    grades = {str(qid): entry.model_dump() for qid, entry in payload.grades.items()}
    return await GradeReconciler(session, clock).apply_grades(response_id, user, grades)
