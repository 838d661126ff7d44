"""
Who may enter an exam, and when.

Rules run in a fixed order and the first failing one decides the denial
reason: existence/publication, time window, access mode, attempt count.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..errors import (
    AttemptLimitExceeded,
    ExamNotActive,
    ExamNotFound,
    ExamNotPublished,
    InvalidExamCode,
    InvalidInvitation,
    InvalidInvitationRequest,
    NotInvited,
    TokenExpired,
)
from ..models.exam_model import Exam, AccessType
from ..models.exam_session_model import ExamSession
from ..models.invitation_model import InvitationStatus
from ..models.user_model import User
from .exam_service import _get_exam, _get_student_sessions
from .invitation_service import InvitationStore
from .session_service import SessionStateMachine
from .session_states import OPEN_STATES

logger = logging.getLogger(__name__)


class AccessDenialReason(str, enum.Enum):
    EXAM_NOT_FOUND = "EXAM_NOT_FOUND"
    EXAM_NOT_PUBLISHED = "EXAM_NOT_PUBLISHED"
    EXAM_NOT_STARTED = "EXAM_NOT_STARTED"
    EXAM_ENDED = "EXAM_ENDED"
    EXAM_CODE_REQUIRED = "EXAM_CODE_REQUIRED"
    INVALID_EXAM_CODE = "INVALID_EXAM_CODE"
    NOT_INVITED = "NOT_INVITED"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    ATTEMPT_LIMIT_REACHED = "ATTEMPT_LIMIT_REACHED"


_DENIALS = {
    AccessDenialReason.EXAM_NOT_FOUND: (ExamNotFound, "Exam not found"),
    AccessDenialReason.EXAM_NOT_PUBLISHED: (ExamNotPublished, "Exam is not published"),
    AccessDenialReason.EXAM_NOT_STARTED: (ExamNotActive, "Exam has not started yet"),
    AccessDenialReason.EXAM_ENDED: (ExamNotActive, "Exam has ended"),
    AccessDenialReason.EXAM_CODE_REQUIRED: (InvalidExamCode, "Exam code is required"),
    AccessDenialReason.INVALID_EXAM_CODE: (InvalidExamCode, "Invalid exam code"),
    AccessDenialReason.NOT_INVITED: (NotInvited, "You are not invited to this exam"),
    AccessDenialReason.INVITATION_EXPIRED: (TokenExpired, "Your invitation has expired"),
    AccessDenialReason.ATTEMPT_LIMIT_REACHED: (AttemptLimitExceeded, "No attempts remaining for this exam"),
}


@dataclass
class AccessDecision:
    can_access: bool
    reason: Optional[AccessDenialReason] = None
    message: Optional[str] = None
    exam: Optional[Exam] = None
    # an open attempt the caller can continue instead of starting a new one
    session: Optional[ExamSession] = None

    @classmethod
    def deny(cls, reason: AccessDenialReason, exam: Optional[Exam] = None) -> "AccessDecision":
        return cls(can_access=False, reason=reason, message=_DENIALS[reason][1], exam=exam)

    def raise_for_denial(self) -> None:
        if self.can_access:
            return
        error_cls, message = _DENIALS[self.reason]
        raise error_cls(message)


class AccessValidator:

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock
        self.invitations = InvitationStore(db, clock)

    async def check_access(
        self,
        user: User,
        exam_id: UUID,
        exam_code: Optional[str] = None,
        invitation_token: Optional[str] = None,
    ) -> AccessDecision:
        exam = await _get_exam(self.db, exam_id)
        if exam is None:
            return AccessDecision.deny(AccessDenialReason.EXAM_NOT_FOUND)
        if not exam.is_published:
            return AccessDecision.deny(AccessDenialReason.EXAM_NOT_PUBLISHED, exam)

        now = self.clock.now()
        if now < exam.start_time:
            return AccessDecision.deny(AccessDenialReason.EXAM_NOT_STARTED, exam)
        if now > exam.end_time:
            return AccessDecision.deny(AccessDenialReason.EXAM_ENDED, exam)

        if exam.access_type == AccessType.CODE:
            if not exam_code or not exam_code.strip():
                return AccessDecision.deny(AccessDenialReason.EXAM_CODE_REQUIRED, exam)
            if (exam.exam_code or "").upper() != exam_code.strip().upper():
                return AccessDecision.deny(AccessDenialReason.INVALID_EXAM_CODE, exam)
        elif exam.access_type == AccessType.INVITATION:
            invitation = await self.invitations.find_bound_invitation(exam.id, user.email, invitation_token)
            if invitation is None:
                return AccessDecision.deny(AccessDenialReason.NOT_INVITED, exam)
            if invitation.status == InvitationStatus.EXPIRED or (
                invitation.status == InvitationStatus.PENDING and now >= invitation.expires_at
            ):
                return AccessDecision.deny(AccessDenialReason.INVITATION_EXPIRED, exam)

        sessions = await _get_student_sessions(self.db, exam.id, user.id)
        resumable = next((s for s in sessions if s.status in OPEN_STATES), None)
        if resumable is None and len(sessions) >= exam.max_attempts:
            return AccessDecision.deny(AccessDenialReason.ATTEMPT_LIMIT_REACHED, exam)

        return AccessDecision(can_access=True, exam=exam, session=resumable)

    async def join_exam(
        self,
        user: User,
        exam_code: Optional[str] = None,
        invitation_token: Optional[str] = None,
    ) -> ExamSession:
        """Resolve the exam from a code or token, check access, then resume or open an attempt."""
        if exam_code and exam_code.strip():
            res = await self.db.execute(select(Exam).where(func.upper(Exam.exam_code) == exam_code.strip().upper()))
            exam = res.scalar_one_or_none()
            if exam is None:
                raise InvalidExamCode()
            exam_id = exam.id
        elif invitation_token and invitation_token.strip():
            invitation = await self.invitations._get_by_token(invitation_token)
            if invitation is None:
                raise InvalidInvitation()
            exam_id = invitation.exam_id
        else:
            raise InvalidInvitationRequest("Either exam code or invitation token is required")

        decision = await self.check_access(user, exam_id, exam_code=exam_code, invitation_token=invitation_token)
        if not decision.can_access:
            logger.warning("Join denied for %s on exam %s: %s", user.email, exam_id, decision.reason.value)
        decision.raise_for_denial()

        sessions = SessionStateMachine(self.db, self.clock)
        if decision.session is not None:
            return await sessions.get_session(decision.session.id, user)
        return await sessions.create_session(user, decision)
