from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID
import logging
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..db import get_async_session
from ..dependencies import current_student, get_clock
from ..models.exam_session_model import ExamSession
from ..models.user_model import User
from ..schemas.exam_session_schema import (
    ExamAccessRequest,
    ExamAccessResult,
    JoinExamRequest,
    SessionRead,
    SessionCompletion,
    SessionAutoSave,
    ViolationPayload,
    TimerRead,
    DraftRead,
    FlagPayload,
    FlagRead,
    ProgressRead,
)
from ..schemas.grading_schema import ResponseRead
from ..services.access_service import AccessValidator
from ..services.draft_service import AnswerDraftVersioner
from ..services.flag_service import QuestionFlagService
from ..services.exam_service import _get_exam, _get_questions_for_exam, _sanitize_question
from ..services.grading_service import GradeReconciler
from ..services.session_service import SessionStateMachine, timer_info
from ..services.session_states import SessionStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student")


async def _session_out(session: AsyncSession, clock: Clock, exam_session: ExamSession) -> dict:
    exam = await _get_exam(session, exam_session.exam_id)
    questions = []
    # questions are only handed out while the attempt is running
    if exam_session.status == SessionStatus.IN_PROGRESS:
        questions = [_sanitize_question(q) for q in await _get_questions_for_exam(session, exam.id)]
    return {
        "id": exam_session.id,
        "exam_id": exam_session.exam_id,
        "student_id": exam_session.student_id,
        "attempt_number": exam_session.attempt_number,
        "status": exam_session.status.value,
        "start_time": exam_session.start_time,
        "end_time": exam_session.end_time,
        "violation_count": exam_session.violation_count,
        "timer": timer_info(exam, exam_session, clock.now()),
        "questions": questions,
    }


@router.post("/exam-access", response_model=ExamAccessResult)
async def check_exam_access(payload: ExamAccessRequest, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    decision = await AccessValidator(session, clock).check_access(
        user, payload.exam_id, exam_code=payload.exam_code, invitation_token=payload.invitation_token
    )
    return {
        "can_access": decision.can_access,
        "reason": decision.reason.value if decision.reason else None,
        "message": decision.message,
        "session_id": decision.session.id if decision.session else None,
    }


@router.post("/join-exam", response_model=SessionRead)
async def join_exam(payload: JoinExamRequest, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    exam_session = await AccessValidator(session, clock).join_exam(
        user, exam_code=payload.exam_code, invitation_token=payload.invitation_token
    )
    return await _session_out(session, clock, exam_session)


@router.get("/sessions/{session_id}", response_model=SessionRead)
async def get_session(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    exam_session = await SessionStateMachine(session, clock).get_session(session_id, user)
    return await _session_out(session, clock, exam_session)


@router.post("/sessions/{session_id}/start", response_model=SessionRead)
async def start_session(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    exam_session = await SessionStateMachine(session, clock).start(session_id, user)
    return await _session_out(session, clock, exam_session)


@router.post("/sessions/{session_id}/heartbeat", response_model=TimerRead)
async def heartbeat(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await SessionStateMachine(session, clock).heartbeat(session_id, user)


@router.get("/sessions/{session_id}/timer", response_model=TimerRead)
async def get_timer(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await SessionStateMachine(session, clock).timer(session_id, user)


@router.post("/sessions/{session_id}/violations", response_model=SessionRead)
async def record_violation(session_id: UUID, payload: ViolationPayload, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    exam_session = await SessionStateMachine(session, clock).record_violation(session_id, user, payload.violation_type)
    return await _session_out(session, clock, exam_session)


@router.post("/sessions/{session_id}/complete", response_model=SessionCompletion)
async def complete_session(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    completion = await SessionStateMachine(session, clock).complete(session_id, user)
    out = await _session_out(session, clock, completion.session)
    out["response"] = ResponseRead.model_validate(completion.response) if completion.response else None
    return out


@router.put("/sessions/{session_id}/answers", response_model=DraftRead)
async def autosave_answer(session_id: UUID, payload: SessionAutoSave, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await AnswerDraftVersioner(session, clock).autosave(session_id, user, payload.question_id, payload.text)


@router.get("/sessions/{session_id}/answers/{question_id}/versions", response_model=List[DraftRead])
async def list_answer_versions(session_id: UUID, question_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await AnswerDraftVersioner(session, clock).list_versions(session_id, user, question_id)


@router.get("/results", response_model=List[ResponseRead])
async def get_student_results(user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await GradeReconciler(session, clock).student_results(user)


@router.get("/sessions/{session_id}/flags", response_model=List[FlagRead])
async def list_flags(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await QuestionFlagService(session, clock).flagged_questions(session_id, user)


@router.post("/sessions/{session_id}/flags", response_model=FlagRead)
async def set_flag(session_id: UUID, payload: FlagPayload, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await QuestionFlagService(session, clock).set_flag(session_id, user, payload.question_id, payload.is_flagged)


@router.get("/sessions/{session_id}/progress", response_model=ProgressRead)
async def get_progress(session_id: UUID, user: User = Depends(current_student), session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    return await SessionStateMachine(session, clock).progress(session_id, user)
