from fastapi import APIRouter, Depends, HTTPException, status
import asyncio
import logging
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..db import get_async_session
from ..dependencies import current_admin, current_teacher, get_clock
from ..errors import ExamError, TokenAlreadyRedeemed
from ..models.user_model import User
from ..schemas.invitation_schema import (
    InvitationCreate,
    InvitationRead,
    InvitationSummary,
    InvitationValidation,
    RedemptionRead,
    ExpiredCount,
)
from ..security import get_jwt_strategy
from ..services.invitation_service import InvitationStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invitations"])


@router.get("/student-invitation/{token}", response_model=InvitationValidation)
async def validate_invitation(token: str, session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    try:
        validated = await InvitationStore(session, clock).validate(token)
    except TokenAlreadyRedeemed as err:
        # account already exists: the frontend sends the student to the login page
        return {"valid": False, "redirect_to_login": True, "detail": err.message}
    except ExamError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err.message)

    invitation = validated.invitation
    return {
        "valid": True,
        "invitation": InvitationSummary(
            exam_id=invitation.exam_id,
            exam_title=validated.exam.title,
            student_email=invitation.student_email,
            first_name=invitation.first_name,
            last_name=invitation.last_name,
            expires_at=invitation.expires_at,
        ),
    }


@router.post("/student-invitation/{token}", response_model=RedemptionRead)
async def redeem_invitation(token: str, session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    try:
        redemption = await InvitationStore(session, clock).redeem(token)
    except ExamError as err:
        # every redemption failure is a bad request for this endpoint
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err.message)

    #  JWT token so the student lands logged in
    strategy = get_jwt_strategy()
    maybe_token = strategy.write_token(redemption.user)
    if asyncio.iscoroutine(maybe_token):
        credential = await maybe_token
    else:
        credential = maybe_token

    return {
        "exam_id": redemption.exam_id,
        "student_email": redemption.student_email,
        "credential": credential,
        "temporary_password": redemption.temporary_password,
    }


@router.post("/invitations", response_model=InvitationRead, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    payload: InvitationCreate,
    user: User = Depends(current_teacher),
    session: AsyncSession = Depends(get_async_session),
    clock: Clock = Depends(get_clock),
):
    invitation = await InvitationStore(session, clock).create_invitation(
        user,
        payload.exam_id,
        payload.student_email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        expires_in_hours=payload.expires_in_hours,
    )
    logger.info("Invitation %s created for %s", invitation.id, invitation.student_email)
    return invitation


@router.post("/invitations/expire", response_model=ExpiredCount, dependencies=[Depends(current_admin)])
async def expire_invitations(session: AsyncSession = Depends(get_async_session), clock: Clock = Depends(get_clock)):
    count = await InvitationStore(session, clock).expire_stale()
    logger.info("Expired %d stale invitations", count)
    return {"expired": count}
