r"""
Lifecycle of one exam attempt.

    not_started -> in_progress -> completed
         \______________\______> expired

Every operation loads the session through ``checked_session`` which applies
time-based expiry before anything else happens:

* past ``exam.end_time`` an open session is forced to ``expired`` and any
  mutating call fails with ``SessionExpired``;
* past ``start_time + duration`` (window still open) an in-progress session
  is auto-completed and mutating calls fail with ``ExamTimeExpired``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..errors import (
    AttemptLimitExceeded,
    ExamTimeExpired,
    SessionAlreadyStarted,
    SessionConflict,
    SessionExpired,
    SessionNotActive,
    SessionNotFound,
)
from ..models.exam_model import Exam
from ..models.exam_session_model import ExamSession
from ..models.question_flag_model import QuestionFlag
from ..models.response_model import StudentResponse
from ..models.user_model import User
from .exam_service import _get_exam, _get_latest_drafts, _get_ordered_question_ids, attempt_deadline
from .grading_service import build_response
from .session_states import SessionStatus, is_terminal, transition

logger = logging.getLogger(__name__)

# (seconds left, warning_type, message), tightest first
TIMER_WARNINGS = [
    (60, "critical", "Less than 1 minute remaining"),
    (300, "warning", "5 minutes remaining"),
    (600, "info", "10 minutes remaining"),
]


def timer_warning(remaining_seconds: int) -> Tuple[Optional[str], Optional[str]]:
    if remaining_seconds <= 0:
        return "critical", "Time is up"
    for threshold, warning_type, message in TIMER_WARNINGS:
        if remaining_seconds <= threshold:
            return warning_type, message
    return None, None


def timer_info(exam: Exam, exam_session: ExamSession, now: datetime) -> dict:
    if is_terminal(exam_session.status):
        deadline = exam_session.end_time or exam.end_time
        remaining = 0
        warning_type, warning_message = None, None
    else:
        # a not-started session would get its full duration if started now
        deadline = attempt_deadline(exam, exam_session.start_time or now)
        remaining = max(0, int((deadline - now).total_seconds()))
        warning_type, warning_message = timer_warning(remaining)

    return {
        "session_id": exam_session.id,
        "status": exam_session.status.value,
        "time_remaining_seconds": remaining,
        "deadline": deadline,
        "is_expired": remaining <= 0,
        "warning_type": warning_type,
        "warning_message": warning_message,
    }


@dataclass
class Completion:
    session: ExamSession
    response: Optional[StudentResponse]


class SessionStateMachine:

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def _load(self, session_id: UUID, user: User) -> ExamSession:
        res = await self.db.execute(
            select(ExamSession)
            .where(ExamSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        exam_session = res.scalar_one_or_none()
        # someone else's session is indistinguishable from a missing one
        if exam_session is None or exam_session.student_id != user.id:
            raise SessionNotFound()
        return exam_session

    async def get_response(self, session_id: UUID) -> Optional[StudentResponse]:
        res = await self.db.execute(select(StudentResponse).where(StudentResponse.session_id == session_id))
        return res.scalar_one_or_none()

    async def _expire(self, exam_session: ExamSession, now: datetime) -> None:
        transition(exam_session.status, SessionStatus.EXPIRED)
        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == exam_session.id, ExamSession.status == exam_session.status)
            .values(status=SessionStatus.EXPIRED, end_time=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(exam_session)
        if result.rowcount:
            logger.info("Session %s expired at exam end", exam_session.id)

    async def _finish(self, exam_session: ExamSession, exam: Exam, user: User, now: datetime) -> Optional[StudentResponse]:
        """in_progress -> completed plus the response snapshot, in one unit of work."""
        transition(exam_session.status, SessionStatus.COMPLETED)
        session_id = exam_session.id
        student_email = user.email

        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == session_id, ExamSession.status == SessionStatus.IN_PROGRESS)
            .values(status=SessionStatus.COMPLETED, end_time=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # a concurrent request finished it first
            await self.db.rollback()
            await self.db.refresh(exam_session)
            await self.db.refresh(exam)
            return await self.get_response(session_id)

        response = await build_response(self.db, exam_session, exam, student_email, now)
        await self.db.commit()
        await self.db.refresh(exam_session)
        await self.db.refresh(response)
        logger.info("Session %s completed, score %.2f/%.2f", session_id, response.total_score, response.max_possible_score)
        return response

    async def checked_session(
        self,
        session_id: UUID,
        user: User,
        mutating: bool = True,
        allow_completed: bool = False,
    ) -> Tuple[ExamSession, Exam]:
        """
        Load a caller-owned session with time-based expiry applied.

        `allow_completed` lets a mutating caller see a session that was just
        auto-completed on duration instead of failing.
        """
        exam_session = await self._load(session_id, user)
        exam = await _get_exam(self.db, exam_session.exam_id)
        now = self.clock.now()

        if now > exam.end_time:
            if not is_terminal(exam_session.status):
                await self._expire(exam_session, now)
            if mutating:
                logger.warning("Rejected operation on session %s after exam end", session_id)
                raise SessionExpired()
            return exam_session, exam

        if exam_session.status == SessionStatus.IN_PROGRESS and now > attempt_deadline(exam, exam_session.start_time):
            logger.info("Session %s ran out of time, auto-completing", session_id)
            await self._finish(exam_session, exam, user, now)
            if mutating and not allow_completed:
                raise ExamTimeExpired()

        return exam_session, exam

    async def _count_sessions(self, exam_id: UUID, student_id: UUID) -> int:
        res = await self.db.execute(
            select(func.count(ExamSession.id)).where(
                ExamSession.exam_id == exam_id,
                ExamSession.student_id == student_id,
            )
        )
        return res.scalar_one()

    async def create_session(self, user: User, grant) -> ExamSession:
        """
        Open a new attempt for a granted user. `grant` is an AccessDecision;
        a denied one raises its typed error.
        """
        grant.raise_for_denial()
        exam_id = grant.exam.id
        max_attempts = grant.exam.max_attempts
        student_id = user.id

        for _ in range(2):
            count = await self._count_sessions(exam_id, student_id)
            if count >= max_attempts:
                raise AttemptLimitExceeded()

            new_session = ExamSession(
                exam_id=exam_id,
                student_id=student_id,
                attempt_number=count + 1,
                status=SessionStatus.NOT_STARTED,
                violation_count=0,
                created_at=self.clock.now(),
            )
            self.db.add(new_session)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("Attempt %d for exam %s student %s taken concurrently, retrying", count + 1, exam_id, student_id)
                continue

            await self.db.refresh(new_session)
            logger.info("Session %s created (attempt %d) for exam %s", new_session.id, new_session.attempt_number, exam_id)
            return new_session

        raise SessionConflict()

    async def get_session(self, session_id: UUID, user: User) -> ExamSession:
        exam_session, _ = await self.checked_session(session_id, user, mutating=False)
        return exam_session

    async def start(self, session_id: UUID, user: User) -> ExamSession:
        exam_session, _ = await self.checked_session(session_id, user)
        if exam_session.status != SessionStatus.NOT_STARTED:
            raise SessionAlreadyStarted()

        now = self.clock.now()
        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == exam_session.id, ExamSession.status == SessionStatus.NOT_STARTED)
            .values(status=SessionStatus.IN_PROGRESS, start_time=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise SessionAlreadyStarted()

        await self.db.commit()
        await self.db.refresh(exam_session)
        logger.info("Session %s started", exam_session.id)
        return exam_session

    async def heartbeat(self, session_id: UUID, user: User) -> dict:
        exam_session, exam = await self.checked_session(session_id, user)
        return timer_info(exam, exam_session, self.clock.now())

    async def timer(self, session_id: UUID, user: User) -> dict:
        exam_session, exam = await self.checked_session(session_id, user, mutating=False)
        return timer_info(exam, exam_session, self.clock.now())

    async def record_violation(self, session_id: UUID, user: User, violation_type: str = "unknown") -> ExamSession:
        exam_session, exam = await self.checked_session(session_id, user)
        if exam_session.status != SessionStatus.IN_PROGRESS:
            raise SessionNotActive()

        res = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == exam_session.id, ExamSession.status == SessionStatus.IN_PROGRESS)
            .values(violation_count=ExamSession.violation_count + 1)
            .returning(ExamSession.violation_count)
            .execution_options(synchronize_session=False)
        )
        count = res.scalar_one_or_none()
        if count is None:
            await self.db.rollback()
            raise SessionNotActive()
        await self.db.commit()
        await self.db.refresh(exam_session)

        logger.warning("Violation '%s' on session %s (%d/%d)", violation_type, exam_session.id, count, exam.max_violations)
        if count >= exam.max_violations:
            logger.warning("Session %s reached the violation limit, auto-submitting", exam_session.id)
            await self._finish(exam_session, exam, user, self.clock.now())
        return exam_session

    async def complete(self, session_id: UUID, user: User) -> Completion:
        """Finish an attempt. Completing an already completed session returns the stored result."""
        exam_session, exam = await self.checked_session(session_id, user, allow_completed=True)
        if exam_session.status == SessionStatus.COMPLETED:
            return Completion(session=exam_session, response=await self.get_response(exam_session.id))

        # not_started / expired -> completed is not an edge
        transition(exam_session.status, SessionStatus.COMPLETED)
        response = await self._finish(exam_session, exam, user, self.clock.now())
        return Completion(session=exam_session, response=response)

    async def progress(self, session_id: UUID, user: User) -> dict:
        """Answered / flagged / total question counts plus the time left."""
        exam_session, exam = await self.checked_session(session_id, user, mutating=False)
        question_ids = {str(qid) for qid in await _get_ordered_question_ids(self.db, exam.id)}
        drafts = await _get_latest_drafts(self.db, exam_session.id)
        answered = sum(1 for qid, d in drafts.items() if qid in question_ids and (d.text or "").strip())

        res = await self.db.execute(
            select(func.count(QuestionFlag.id)).where(
                QuestionFlag.session_id == exam_session.id,
                QuestionFlag.is_flagged.is_(True),
            )
        )
        timer = timer_info(exam, exam_session, self.clock.now())
        return {
            "session_id": exam_session.id,
            "status": exam_session.status.value,
            "total_questions": len(question_ids),
            "answered_questions": answered,
            "flagged_questions": res.scalar_one(),
            "time_remaining_seconds": timer["time_remaining_seconds"],
        }
