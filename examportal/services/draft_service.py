import logging
import uuid
from datetime import datetime
from typing import Dict, List
from uuid import UUID

from sqlalchemy import select, insert, func, literal, Uuid, Integer, Text, DateTime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..errors import QuestionNotFound, SessionConflict, SessionNotActive
from ..models.answer_draft_model import AnswerDraft
from ..models.user_model import User
from .exam_service import _exam_has_question, _get_latest_drafts
from .session_service import SessionStateMachine
from .session_states import SessionStatus

logger = logging.getLogger(__name__)


class AnswerDraftVersioner:
    """
    Append-only answer history. Each autosave adds version max+1 for its
    (session, question); the highest version is the current answer.
    """

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock
        self.sessions = SessionStateMachine(db, clock)

    async def _append(self, session_id: UUID, question_id: UUID, text: str, saved_at: datetime) -> UUID:
        draft_id = uuid.uuid4()
        drafts = AnswerDraft.__table__
        # next version is computed inside the INSERT so two writers can't both read the same max
        next_version = select(
            literal(draft_id, Uuid),
            literal(session_id, Uuid),
            literal(question_id, Uuid),
            func.coalesce(func.max(drafts.c.version_number), 0) + literal(1, Integer),
            literal(text, Text),
            literal(saved_at, DateTime),
        ).where(drafts.c.session_id == session_id, drafts.c.question_id == question_id)

        await self.db.execute(
            insert(drafts).from_select(
                ["id", "session_id", "question_id", "version_number", "text", "saved_at"],
                next_version,
            )
        )
        return draft_id

    async def autosave(self, session_id: UUID, user: User, question_id: UUID, text: str) -> AnswerDraft:
        exam_session, exam = await self.sessions.checked_session(session_id, user)
        if exam_session.status != SessionStatus.IN_PROGRESS:
            raise SessionNotActive()
        if not await _exam_has_question(self.db, exam.id, question_id):
            raise QuestionNotFound()

        sid = exam_session.id
        for attempt in range(2):
            try:
                draft_id = await self._append(sid, question_id, text or "", self.clock.now())
                await self.db.commit()
                break
            except IntegrityError:
                await self.db.rollback()
                logger.warning("Version clash on session %s question %s (attempt %d)", sid, question_id, attempt + 1)
        else:
            raise SessionConflict()

        res = await self.db.execute(select(AnswerDraft).where(AnswerDraft.id == draft_id))
        draft = res.scalar_one()
        logger.debug("Saved v%d for session %s question %s", draft.version_number, sid, question_id)
        return draft

    async def list_versions(self, session_id: UUID, user: User, question_id: UUID) -> List[AnswerDraft]:
        exam_session, _ = await self.sessions.checked_session(session_id, user, mutating=False)
        res = await self.db.execute(
            select(AnswerDraft)
            .where(AnswerDraft.session_id == exam_session.id, AnswerDraft.question_id == question_id)
            .order_by(AnswerDraft.version_number)
        )
        return list(res.scalars().all())

    async def current_answers(self, session_id: UUID) -> Dict[str, AnswerDraft]:
        return await _get_latest_drafts(self.db, session_id)
