import uuid
from datetime import timedelta

import pytest

from examportal.errors import QuestionNotFound, SessionExpired, SessionNotActive, SessionNotFound
from examportal.services.access_service import AccessValidator
from examportal.services.draft_service import AnswerDraftVersioner
from examportal.services.flag_service import QuestionFlagService
from examportal.services.session_service import SessionStateMachine

from .factories import make_exam, make_user

pytestmark = pytest.mark.anyio


async def _open_session(db, clock, student, exam):
    grant = await AccessValidator(db, clock).check_access(student, exam.id, exam_code="ABC123")
    return await SessionStateMachine(db, clock).create_session(student, grant)


async def test_flag_toggles_in_place(db, clock, student, exam_with_questions):
    exam, (mcq, saq, _) = exam_with_questions
    created = await _open_session(db, clock, student, exam)
    await SessionStateMachine(db, clock).start(created.id, student)
    flags = QuestionFlagService(db, clock)

    first = await flags.set_flag(created.id, student, saq.id)
    await flags.set_flag(created.id, student, mcq.id)
    clock.advance(seconds=20)
    cleared = await flags.set_flag(created.id, student, mcq.id, is_flagged=False)

    assert first.is_flagged is True
    assert cleared.is_flagged is False
    assert cleared.updated_at == clock.now()
    assert [f.question_id for f in await flags.flagged_questions(created.id, student)] == [saq.id]

    # flagging again reuses the same row
    again = await flags.set_flag(created.id, student, mcq.id)
    assert again.id == cleared.id
    assert {f.question_id for f in await flags.flagged_questions(created.id, student)} == {saq.id, mcq.id}


async def test_flags_need_a_running_session(db, clock, student, exam_with_questions):
    exam, questions = exam_with_questions
    created = await _open_session(db, clock, student, exam)
    sessions = SessionStateMachine(db, clock)
    flags = QuestionFlagService(db, clock)

    with pytest.raises(SessionNotActive):
        await flags.set_flag(created.id, student, questions[0].id)

    await sessions.start(created.id, student)
    await flags.set_flag(created.id, student, questions[0].id)
    await sessions.complete(created.id, student)

    with pytest.raises(SessionNotActive):
        await flags.set_flag(created.id, student, questions[1].id)
    # reading still works after submission
    assert len(await flags.flagged_questions(created.id, student)) == 1

    clock.set(exam.end_time + timedelta(seconds=1))
    with pytest.raises(SessionExpired):
        await flags.set_flag(created.id, student, questions[0].id, is_flagged=False)


async def test_flag_rejects_foreign_question_and_session(db, clock, session_maker, student, exam_with_questions):
    exam, _ = exam_with_questions
    created = await _open_session(db, clock, student, exam)
    await SessionStateMachine(db, clock).start(created.id, student)
    flags = QuestionFlagService(db, clock)

    with pytest.raises(QuestionNotFound):
        await flags.set_flag(created.id, student, uuid.uuid4())

    stranger = await make_user(session_maker, "stranger@example.com")
    with pytest.raises(SessionNotFound):
        await flags.flagged_questions(created.id, stranger)


async def test_progress_counts(db, clock, student, exam_with_questions):
    exam, (mcq, saq, coding) = exam_with_questions
    created = await _open_session(db, clock, student, exam)
    sessions = SessionStateMachine(db, clock)

    before = await sessions.progress(created.id, student)
    assert before["status"] == "not_started"
    assert before["total_questions"] == 3
    assert before["answered_questions"] == 0
    assert before["flagged_questions"] == 0

    await sessions.start(created.id, student)
    drafts = AnswerDraftVersioner(db, clock)
    await drafts.autosave(created.id, student, mcq.id, "B")
    await drafts.autosave(created.id, student, saq.id, "first try")
    # a cleared answer no longer counts
    await drafts.autosave(created.id, student, saq.id, "   ")
    await drafts.autosave(created.id, student, coding.id, "print(1)")
    await QuestionFlagService(db, clock).set_flag(created.id, student, coding.id)

    clock.advance(minutes=10)
    progress = await sessions.progress(created.id, student)
    assert progress["answered_questions"] == 2
    assert progress["flagged_questions"] == 1
    assert progress["time_remaining_seconds"] == 50 * 60


async def test_progress_after_window_is_a_read(db, clock, session_maker, teacher, student):
    exam, _ = await make_exam(session_maker, teacher)
    created = await _open_session(db, clock, student, exam)
    sessions = SessionStateMachine(db, clock)
    await sessions.start(created.id, student)

    clock.set(exam.end_time + timedelta(minutes=1))
    progress = await sessions.progress(created.id, student)
    assert progress["status"] == "expired"
    assert progress["time_remaining_seconds"] == 0
