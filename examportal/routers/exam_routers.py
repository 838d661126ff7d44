from fastapi import APIRouter, Depends, status
from uuid import UUID
import secrets
import string
import logging
from sqlalchemy import select, insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import to_naive_utc
from ..db import get_async_session
from ..dependencies import current_teacher
from ..errors import ExamNotFound, NotExamOwner, InvalidExamCode
from ..models.exam_model import Exam, AccessType, exam_questions
from ..models.question_model import QuestionDB
from ..models.user_model import User, UserRole
from ..schemas.exam_schema import ExamCreate, ExamRead
from ..services.exam_service import _get_exam, _get_ordered_question_ids, _exam_to_read_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exams", tags=["Exams"])

EXAM_CODE_ALPHABET = string.ascii_uppercase + string.digits


async def _generate_exam_code(session: AsyncSession, length: int = 8) -> str:
    while True:
        code = "".join(secrets.choice(EXAM_CODE_ALPHABET) for _ in range(length))
        res = await session.execute(select(Exam.id).where(Exam.exam_code == code))
        if res.first() is None:
            return code


async def _owned_exam(session: AsyncSession, exam_id: UUID, user: User) -> Exam:
    exam = await _get_exam(session, exam_id)
    if not exam:
        raise ExamNotFound()
    if user.role != UserRole.ADMIN and exam.created_by != user.id:
        raise NotExamOwner()
    return exam


@router.post("/", response_model=ExamRead, status_code=status.HTTP_201_CREATED)
async def create_exam(payload: ExamCreate, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session)):
    # create exam with its inline questions, linked in the order provided
    exam_code = None
    if payload.access_type == AccessType.CODE:
        if payload.exam_code:
            exam_code = payload.exam_code.strip().upper()
            res = await session.execute(select(Exam.id).where(Exam.exam_code == exam_code))
            if res.first() is not None:
                raise InvalidExamCode("Exam code already in use")
        else:
            exam_code = await _generate_exam_code(session)

    exam = Exam(
        title=payload.title,
        # Normalize times to naive UTC to match DB
        start_time=to_naive_utc(payload.start_time),
        end_time=to_naive_utc(payload.end_time),
        duration=payload.duration,
        access_type=payload.access_type,
        exam_code=exam_code,
        max_attempts=payload.max_attempts,
        max_violations=payload.max_violations,
        is_published=payload.is_published,
        created_by=user.id,
    )
    session.add(exam)
    await session.flush()

    rows = []
    for idx, q in enumerate(payload.questions):
        question = QuestionDB(
            title=q.title,
            description=q.description,
            type=q.type,
            options=q.options or None,
            correct_answers=q.correct_answers,
            max_score=q.max_score,
            language=q.language,
        )
        session.add(question)
        await session.flush()
        rows.append({"exam_id": exam.id, "question_id": question.id, "order": idx})
    if rows:
        await session.execute(insert(exam_questions), rows)

    await session.commit()
    await session.refresh(exam)
    logger.info("Exam %s created by %s with %d questions", exam.id, user.id, len(rows))

    qids = await _get_ordered_question_ids(session, exam.id)
    return _exam_to_read_dict(exam, qids)


@router.get("/{exam_id}", response_model=ExamRead)
async def get_exam(exam_id: UUID, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session)):
    exam = await _owned_exam(session, exam_id, user)
    qids = await _get_ordered_question_ids(session, exam.id)
    return _exam_to_read_dict(exam, qids)


@router.post("/{exam_id}/publish", response_model=ExamRead)
async def publish_exam(exam_id: UUID, user: User = Depends(current_teacher), session: AsyncSession = Depends(get_async_session)):
    exam = await _owned_exam(session, exam_id, user)
    exam.is_published = True
    await session.commit()
    await session.refresh(exam)
    logger.info("Exam %s published", exam.id)

    qids = await _get_ordered_question_ids(session, exam.id)
    return _exam_to_read_dict(exam, qids)
