from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime
from uuid import UUID

from ..models.invitation_model import InvitationStatus


class InvitationCreate(BaseModel):
    exam_id: UUID
    student_email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    # defaults to INVITATION_TTL_HOURS
    expires_in_hours: Optional[int] = None


class InvitationRead(BaseModel):
    id: UUID
    token: str
    exam_id: UUID
    student_email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: InvitationStatus
    expires_at: datetime
    redeemed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InvitationSummary(BaseModel):
    exam_id: UUID
    exam_title: str
    student_email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    expires_at: datetime


class InvitationValidation(BaseModel):
    valid: bool
    invitation: Optional[InvitationSummary] = None
    redirect_to_login: bool = False
    detail: Optional[str] = None


class RedemptionRead(BaseModel):
    exam_id: UUID
    student_email: str
    credential: str
    token_type: str = "bearer"
    temporary_password: Optional[str] = None


class ExpiredCount(BaseModel):
    expired: int = Field(..., ge=0)
