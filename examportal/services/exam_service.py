from typing import List, Dict
from uuid import UUID
from datetime import datetime, timedelta
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.exam_model import Exam, exam_questions
from ..models.question_model import QuestionDB
from ..models.exam_session_model import ExamSession
from ..models.answer_draft_model import AnswerDraft


async def _get_exam(session: AsyncSession, exam_id) -> Exam | None:
    res = await session.execute(select(Exam).where(Exam.id == exam_id))
    return res.scalar_one_or_none()


async def _get_ordered_question_ids(session: AsyncSession, exam_id: UUID) -> List[UUID]:
    stmt = select(exam_questions.c.question_id).where(exam_questions.c.exam_id == exam_id).order_by(exam_questions.c.order)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def _get_questions_for_exam(session: AsyncSession, exam_id: UUID) -> List[QuestionDB]:
    qids = await _get_ordered_question_ids(session, exam_id)
    if not qids:
        return []
    qres = await session.execute(select(QuestionDB).where(QuestionDB.id.in_(qids)))
    # Preserve exam order
    qmap = {str(q.id): q for q in qres.scalars().all()}
    return [qmap[str(qid)] for qid in qids if str(qid) in qmap]


async def _get_question_max_marks(session: AsyncSession, exam_id: UUID) -> Dict[str, float]:
    """Max marks for every question of the exam, all kinds merged by id."""
    questions = await _get_questions_for_exam(session, exam_id)
    return {str(q.id): float(q.max_score or 0) for q in questions}


async def _exam_has_question(session: AsyncSession, exam_id: UUID, question_id: UUID) -> bool:
    stmt = select(exam_questions.c.question_id).where(
        exam_questions.c.exam_id == exam_id,
        exam_questions.c.question_id == question_id,
    )
    res = await session.execute(stmt)
    return res.first() is not None


async def _get_student_sessions(session: AsyncSession, exam_id: UUID, student_id: UUID) -> List[ExamSession]:
    stmt = (
        select(ExamSession)
        .where(ExamSession.exam_id == exam_id, ExamSession.student_id == student_id)
        .order_by(ExamSession.attempt_number)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def _get_latest_drafts(session: AsyncSession, session_id: UUID) -> Dict[str, AnswerDraft]:
    """Highest version per question, keyed by question id (str)."""
    latest = (
        select(AnswerDraft.question_id, func.max(AnswerDraft.version_number).label("version_number"))
        .where(AnswerDraft.session_id == session_id)
        .group_by(AnswerDraft.question_id)
        .subquery()
    )
    stmt = select(AnswerDraft).join(
        latest,
        and_(
            AnswerDraft.question_id == latest.c.question_id,
            AnswerDraft.version_number == latest.c.version_number,
        ),
    ).where(AnswerDraft.session_id == session_id)
    res = await session.execute(stmt)
    return {str(d.question_id): d for d in res.scalars().all()}


def attempt_deadline(exam: Exam, started_at: datetime | None) -> datetime:
    """An attempt ends at the exam window close or after `duration` minutes, whichever is first."""
    if started_at is None or not exam.duration:
        return exam.end_time
    return min(exam.end_time, started_at + timedelta(minutes=exam.duration))


def _exam_to_read_dict(exam: Exam, question_ids: List[UUID]) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
        "duration": exam.duration,
        "access_type": exam.access_type.value if exam.access_type else None,
        "exam_code": exam.exam_code,
        "max_attempts": exam.max_attempts,
        "max_violations": exam.max_violations,
        "is_published": exam.is_published,
        "questions": question_ids or [],
    }


def _sanitize_question(q: QuestionDB):
    # remove correct_answers field to prevent leaking
    return {
        'id': q.id,
        'title': q.title,
        'description': q.description,
        'type': q.type.value,
        'options': q.options,
        'max_score': q.max_score,
        'language': q.language,
    }
