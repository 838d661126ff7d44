"""
Invitation tokens: issue, validate and single-use redeem.

Redemption is a compare-and-swap on ``status = pending``; whichever request
flips the row wins, every other concurrent request sees
``TokenAlreadyRedeemed``.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from fastapi_users.password import PasswordHelper
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..config import INVITATION_TTL_HOURS
from ..errors import (
    DuplicateInvitation,
    ExamNotFound,
    InvalidInvitationRequest,
    InvitationRoleMismatch,
    NotExamOwner,
    TokenAlreadyRedeemed,
    TokenExpired,
    TokenNotFound,
)
from ..models.exam_model import Exam
from ..models.invitation_model import StudentInvitation, InvitationStatus
from ..models.user_model import User, UserRole
from .exam_service import _get_exam

logger = logging.getLogger(__name__)

MAX_TTL_HOURS = 8760

_email_adapter = TypeAdapter(EmailStr)


def generate_token() -> str:
    return secrets.token_hex(32)


def generate_temp_password() -> str:
    return secrets.token_urlsafe(9) + "A1!"


@dataclass
class ValidatedInvitation:
    invitation: StudentInvitation
    exam: Exam
    student_email: str


@dataclass
class Redemption:
    exam_id: UUID
    student_email: str
    user: User
    # only set when a new account was provisioned
    temporary_password: Optional[str] = None


class InvitationStore:

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def _get_by_token(self, token: str) -> StudentInvitation | None:
        if not token or not token.strip():
            return None
        res = await self.db.execute(select(StudentInvitation).where(StudentInvitation.token == token.strip()))
        return res.scalar_one_or_none()

    async def _get_user_by_email(self, email: str) -> User | None:
        res = await self.db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return res.scalar_one_or_none()

    async def _mark_expired(self, invitation_id) -> None:
        result = await self.db.execute(
            update(StudentInvitation)
            .where(StudentInvitation.id == invitation_id, StudentInvitation.status == InvitationStatus.PENDING)
            .values(status=InvitationStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Invitation %s marked expired", invitation_id)

    async def validate(self, token: str) -> ValidatedInvitation:
        """Check a token without consuming it. Repeatable."""
        invitation = await self._get_by_token(token)
        if invitation is None:
            raise TokenNotFound()

        if invitation.status == InvitationStatus.REDEEMED:
            raise TokenAlreadyRedeemed()

        if invitation.status == InvitationStatus.EXPIRED or self.clock.now() >= invitation.expires_at:
            await self._mark_expired(invitation.id)
            raise TokenExpired()

        exam = await _get_exam(self.db, invitation.exam_id)
        if exam is None:
            raise TokenNotFound()

        return ValidatedInvitation(invitation=invitation, exam=exam, student_email=invitation.student_email)

    async def redeem(self, token: str) -> Redemption:
        validated = await self.validate(token)
        invitation = validated.invitation
        # a rollback expires loaded rows, keep plain values
        invitation_id = invitation.id
        exam_id = invitation.exam_id
        email = invitation.student_email
        full_name = " ".join(p for p in (invitation.first_name, invitation.last_name) if p) or email.split("@")[0]

        user = await self._get_user_by_email(email)
        if user is not None and user.role != UserRole.STUDENT:
            raise InvitationRoleMismatch()

        result = await self.db.execute(
            update(StudentInvitation)
            .where(StudentInvitation.id == invitation_id, StudentInvitation.status == InvitationStatus.PENDING)
            .values(status=InvitationStatus.REDEEMED, redeemed_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning("Lost redemption race for invitation %s, re-validating", invitation_id)
            # surfaces TokenAlreadyRedeemed / TokenExpired with the current row state
            await self.validate(token)
            raise TokenAlreadyRedeemed()

        temporary_password = None
        if user is None:
            temporary_password = generate_temp_password()
            user = User(
                email=email,
                hashed_password=PasswordHelper().hash(temporary_password),
                is_active=True,
                is_verified=True,
                is_superuser=False,
                full_name=full_name,
                role=UserRole.STUDENT,
            )
            self.db.add(user)
            await self.db.flush()
            logger.info("Provisioned student account for %s from invitation %s", email, invitation_id)

        await self.db.execute(
            update(StudentInvitation)
            .where(StudentInvitation.id == invitation_id)
            .values(student_id=user.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Invitation %s redeemed by %s", invitation_id, email)

        return Redemption(
            exam_id=exam_id,
            student_email=email,
            user=user,
            temporary_password=temporary_password,
        )

    async def create_invitation(
        self,
        teacher: User,
        exam_id: UUID,
        student_email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        expires_in_hours: Optional[int] = None,
    ) -> StudentInvitation:
        email = (student_email or "").strip().lower()
        if not email:
            raise InvalidInvitationRequest("Student email is required")
        try:
            email = _email_adapter.validate_python(email).lower()
        except ValidationError:
            raise InvalidInvitationRequest("Invalid email format")

        hours = expires_in_hours if expires_in_hours is not None else INVITATION_TTL_HOURS
        if hours < 1 or hours > MAX_TTL_HOURS:
            raise InvalidInvitationRequest("Expiration time must be between 1 hour and 1 year")

        exam = await _get_exam(self.db, exam_id)
        if exam is None:
            raise ExamNotFound()
        if teacher.role != UserRole.ADMIN and exam.created_by != teacher.id:
            raise NotExamOwner()

        existing = await self.db.execute(
            select(StudentInvitation.id).where(
                StudentInvitation.exam_id == exam.id,
                StudentInvitation.student_email == email,
                StudentInvitation.status == InvitationStatus.PENDING,
            )
        )
        if existing.first() is not None:
            raise DuplicateInvitation()

        now = self.clock.now()
        invitation = StudentInvitation(
            token=generate_token(),
            exam_id=exam.id,
            teacher_id=teacher.id,
            student_email=email,
            first_name=first_name,
            last_name=last_name,
            status=InvitationStatus.PENDING,
            expires_at=now + timedelta(hours=hours),
            created_at=now,
        )
        self.db.add(invitation)
        await self.db.commit()
        await self.db.refresh(invitation)
        return invitation

    async def expire_stale(self) -> int:
        """Cleanup job: flip every pending invitation past its expiry to expired."""
        result = await self.db.execute(
            update(StudentInvitation)
            .where(
                StudentInvitation.status == InvitationStatus.PENDING,
                StudentInvitation.expires_at <= self.clock.now(),
            )
            .values(status=InvitationStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def find_bound_invitation(self, exam_id: UUID, email: str, token: Optional[str] = None) -> StudentInvitation | None:
        """
        The invitation that lets `email` into `exam_id`: the presented token if it
        belongs to them, else any pending or redeemed one for that exam.
        """
        email = (email or "").lower()
        if token:
            invitation = await self._get_by_token(token)
            if invitation is None or invitation.exam_id != exam_id or invitation.student_email != email:
                return None
            return invitation

        res = await self.db.execute(
            select(StudentInvitation).where(
                StudentInvitation.exam_id == exam_id,
                StudentInvitation.student_email == email,
                StudentInvitation.status.in_([InvitationStatus.PENDING, InvitationStatus.REDEEMED]),
            )
        )
        rows = res.scalars().all()
        redeemed = [r for r in rows if r.status == InvitationStatus.REDEEMED]
        if redeemed:
            return redeemed[0]
        return rows[0] if rows else None
