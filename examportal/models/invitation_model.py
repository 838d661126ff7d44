from ..db import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid, Enum as SAEnum, Index
import uuid
import enum
from datetime import datetime, timezone


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class StudentInvitation(Base):
    __tablename__ = "student_invitations"
    __table_args__ = (Index("ix_invitation_exam_email", "exam_id", "student_email"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    token = Column(String, nullable=False, unique=True, index=True)
    exam_id = Column(Uuid, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    # stored lower-case
    student_email = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    status = Column(SAEnum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    redeemed_at = Column(DateTime, nullable=True)
    # set on redemption to the account that was provisioned or reused
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))
