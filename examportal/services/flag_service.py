import logging
from typing import List
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..errors import QuestionNotFound, SessionConflict, SessionNotActive
from ..models.question_flag_model import QuestionFlag
from ..models.user_model import User
from .exam_service import _exam_has_question
from .session_service import SessionStateMachine
from .session_states import SessionStatus

logger = logging.getLogger(__name__)


class QuestionFlagService:
    """Review-later marks. One row per (session, question), toggled in place."""

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock
        self.sessions = SessionStateMachine(db, clock)

    async def _get_flag(self, session_id: UUID, question_id: UUID) -> QuestionFlag | None:
        res = await self.db.execute(
            select(QuestionFlag)
            .where(QuestionFlag.session_id == session_id, QuestionFlag.question_id == question_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def set_flag(self, session_id: UUID, user: User, question_id: UUID, is_flagged: bool = True) -> QuestionFlag:
        exam_session, exam = await self.sessions.checked_session(session_id, user)
        if exam_session.status != SessionStatus.IN_PROGRESS:
            raise SessionNotActive()
        if not await _exam_has_question(self.db, exam.id, question_id):
            raise QuestionNotFound()

        sid = exam_session.id
        for attempt in range(2):
            now = self.clock.now()
            flag = await self._get_flag(sid, question_id)
            try:
                if flag is None:
                    flag = QuestionFlag(
                        session_id=sid,
                        question_id=question_id,
                        is_flagged=is_flagged,
                        created_at=now,
                        updated_at=now,
                    )
                    self.db.add(flag)
                else:
                    await self.db.execute(
                        update(QuestionFlag)
                        .where(QuestionFlag.id == flag.id)
                        .values(is_flagged=is_flagged, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                await self.db.commit()
                break
            except IntegrityError:
                # the first flag for this question was inserted concurrently
                await self.db.rollback()
                logger.warning("Flag clash on session %s question %s (attempt %d)", sid, question_id, attempt + 1)
        else:
            raise SessionConflict()

        flag = await self._get_flag(sid, question_id)
        logger.debug("Question %s on session %s flagged=%s", question_id, sid, is_flagged)
        return flag

    async def flagged_questions(self, session_id: UUID, user: User) -> List[QuestionFlag]:
        exam_session, _ = await self.sessions.checked_session(session_id, user, mutating=False)
        res = await self.db.execute(
            select(QuestionFlag)
            .where(QuestionFlag.session_id == exam_session.id, QuestionFlag.is_flagged.is_(True))
            .order_by(QuestionFlag.created_at)
        )
        return list(res.scalars().all())
