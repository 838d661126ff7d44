import uuid
from datetime import timedelta

import pytest

from examportal.errors import (
    AttemptLimitExceeded,
    ExamNotActive,
    InvalidExamCode,
    InvalidInvitation,
    InvalidInvitationRequest,
    NotInvited,
    TokenExpired,
)
from examportal.models.exam_model import AccessType
from examportal.models.invitation_model import InvitationStatus
from examportal.services.access_service import AccessValidator, AccessDenialReason
from examportal.services.session_service import SessionStateMachine
from examportal.services.session_states import SessionStatus

from .factories import T, make_exam, make_invitation

pytestmark = pytest.mark.anyio


async def test_code_exam_grants_with_matching_code(db, clock, student, exam_with_questions):
    exam, _ = exam_with_questions
    decision = await AccessValidator(db, clock).check_access(student, exam.id, exam_code=" abc123 ")

    assert decision.can_access
    assert decision.reason is None
    assert decision.exam.id == exam.id
    assert decision.session is None


async def test_code_exam_denials(db, clock, student, exam_with_questions):
    exam, _ = exam_with_questions
    validator = AccessValidator(db, clock)

    missing = await validator.check_access(student, exam.id)
    assert missing.reason == AccessDenialReason.EXAM_CODE_REQUIRED
    wrong = await validator.check_access(student, exam.id, exam_code="ZZZ999")
    assert wrong.reason == AccessDenialReason.INVALID_EXAM_CODE

    with pytest.raises(InvalidExamCode):
        wrong.raise_for_denial()


async def test_unpublished_and_missing_exam(db, clock, session_maker, teacher, student):
    draft, _ = await make_exam(session_maker, teacher, exam_code="DRAFT1", is_published=False)
    validator = AccessValidator(db, clock)

    assert (await validator.check_access(student, uuid.uuid4())).reason == AccessDenialReason.EXAM_NOT_FOUND
    assert (await validator.check_access(student, draft.id, exam_code="DRAFT1")).reason == AccessDenialReason.EXAM_NOT_PUBLISHED


async def test_time_window(db, clock, student, exam_with_questions):
    exam, _ = exam_with_questions
    validator = AccessValidator(db, clock)

    clock.set(T - timedelta(seconds=1))
    early = await validator.check_access(student, exam.id, exam_code="ABC123")
    assert early.reason == AccessDenialReason.EXAM_NOT_STARTED

    # both edges of the window are inside it
    clock.set(T)
    assert (await validator.check_access(student, exam.id, exam_code="ABC123")).can_access
    clock.set(T + timedelta(hours=1))
    assert (await validator.check_access(student, exam.id, exam_code="ABC123")).can_access

    clock.set(T + timedelta(hours=1, seconds=1))
    late = await validator.check_access(student, exam.id, exam_code="ABC123")
    assert late.reason == AccessDenialReason.EXAM_ENDED
    with pytest.raises(ExamNotActive):
        late.raise_for_denial()


async def test_invitation_exam(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher, access_type=AccessType.INVITATION, exam_code=None)
    validator = AccessValidator(db, clock)

    uninvited = await validator.check_access(student, exam.id)
    assert uninvited.reason == AccessDenialReason.NOT_INVITED
    with pytest.raises(NotInvited):
        uninvited.raise_for_denial()

    invitation = await make_invitation(session_maker, exam, student.email)
    assert (await validator.check_access(student, exam.id)).can_access
    assert (await validator.check_access(student, exam.id, invitation_token=invitation.token)).can_access
    # an unknown token doesn't fall back to the email lookup
    assert (await validator.check_access(student, exam.id, invitation_token="bogus")).reason == AccessDenialReason.NOT_INVITED


async def test_redeemed_invitation_still_grants(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher, access_type=AccessType.INVITATION, exam_code=None)
    await make_invitation(session_maker, exam, student.email, status=InvitationStatus.REDEEMED, expires_at=T)

    assert (await AccessValidator(db, clock).check_access(student, exam.id)).can_access


async def test_expired_invitation(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher, access_type=AccessType.INVITATION, exam_code=None)
    await make_invitation(session_maker, exam, student.email, expires_at=T)

    decision = await AccessValidator(db, clock).check_access(student, exam.id)
    assert decision.reason == AccessDenialReason.INVITATION_EXPIRED
    with pytest.raises(TokenExpired):
        decision.raise_for_denial()


async def test_open_exam_needs_nothing(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher, access_type=AccessType.OPEN, exam_code=None)
    assert (await AccessValidator(db, clock).check_access(student, exam.id)).can_access


async def test_attempt_limit_and_resume(db, clock, student, exam_with_questions):
    exam, _ = exam_with_questions
    validator = AccessValidator(db, clock)
    sessions = SessionStateMachine(db, clock)

    grant = await validator.check_access(student, exam.id, exam_code="ABC123")
    created = await sessions.create_session(student, grant)

    # an open attempt is handed back instead of counting against the limit
    resume = await validator.check_access(student, exam.id, exam_code="ABC123")
    assert resume.can_access
    assert resume.session.id == created.id

    await sessions.start(created.id, student)
    await sessions.complete(created.id, student)

    done = await validator.check_access(student, exam.id, exam_code="ABC123")
    assert done.reason == AccessDenialReason.ATTEMPT_LIMIT_REACHED
    with pytest.raises(AttemptLimitExceeded):
        done.raise_for_denial()


async def test_join_exam_by_code_creates_then_resumes(db, clock, student, exam_with_questions):
    exam, _ = exam_with_questions
    validator = AccessValidator(db, clock)

    first = await validator.join_exam(student, exam_code="abc123")
    assert first.status == SessionStatus.NOT_STARTED
    assert first.attempt_number == 1

    again = await validator.join_exam(student, exam_code="ABC123")
    assert again.id == first.id


async def test_join_exam_by_invitation_token(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher, access_type=AccessType.INVITATION, exam_code=None)
    invitation = await make_invitation(session_maker, exam, student.email)

    joined = await AccessValidator(db, clock).join_exam(student, invitation_token=invitation.token)
    assert joined.exam_id == exam.id


async def test_join_exam_input_errors(db, clock, student, exam_with_questions):
    validator = AccessValidator(db, clock)

    with pytest.raises(InvalidInvitationRequest):
        await validator.join_exam(student)
    with pytest.raises(InvalidExamCode):
        await validator.join_exam(student, exam_code="NOPE00")
    with pytest.raises(InvalidInvitation):
        await validator.join_exam(student, invitation_token="missing")
