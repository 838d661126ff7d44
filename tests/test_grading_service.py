import uuid

import pytest

from examportal.errors import InvalidGrade, MarksExceedMaximum, NotExamOwner, ResponseNotFound
from examportal.models.response_model import GradingStatus
from examportal.models.user_model import UserRole
from examportal.services.access_service import AccessValidator
from examportal.services.draft_service import AnswerDraftVersioner
from examportal.services.grading_service import grade_submission, GradeReconciler
from examportal.services.session_service import SessionStateMachine

from .factories import make_user


class DummyQuestion:
    def __init__(self, id, type, correct_answers, max_score=1):
        self.id = id
        self.type = type
        self.correct_answers = correct_answers
        self.max_score = max_score


def test_mcq_correct_and_incorrect():
    q = DummyQuestion(id=1, type="mcq", correct_answers="A", max_score=2)

    # correct answer
    qscores, total = grade_submission({"1": "A"}, [q])
    assert qscores["1"] == 2.0
    assert total == 2.0

    # surrounding whitespace from the editor is ignored
    qscores, total = grade_submission({"1": " A "}, [q])
    assert qscores["1"] == 2.0

    # incorrect answer
    qscores, total = grade_submission({"1": "B"}, [q])
    assert qscores["1"] == 0.0
    assert total == 0.0

    # missing answer
    qscores, total = grade_submission({}, [q])
    assert qscores["1"] == 0.0
    assert total == 0.0


def test_mcq_multi_select_order_irrelevant():
    q = DummyQuestion(id="abc", type="mcq", correct_answers=["A", "C"], max_score=3)

    qscores, total = grade_submission({"abc": ["C", "A"]}, [q])
    assert qscores["abc"] == 3.0
    assert total == 3.0

    # partial match -> zero
    qscores, total = grade_submission({"abc": ["A"]}, [q])
    assert qscores["abc"] == 0.0

    # a single answer can't satisfy two correct options
    qscores, total = grade_submission({"abc": "A"}, [q])
    assert qscores["abc"] == 0.0


def test_long_form_questions_are_none_and_not_counted():
    q1 = DummyQuestion(id=uuid.uuid4(), type="saq", correct_answers=None, max_score=5)
    q2 = DummyQuestion(id=uuid.uuid4(), type="coding", correct_answers=None, max_score=10)
    q3 = DummyQuestion(id=2, type="mcq", correct_answers="1", max_score=2)

    answers = {str(q1.id): "Some text", str(q2.id): "print(1)", str(q3.id): 1}
    qscores, total = grade_submission(answers, [q1, q2, q3])

    assert qscores[str(q1.id)] is None
    assert qscores[str(q2.id)] is None
    assert qscores[str(q3.id)] == 2.0
    assert total == 2.0


async def _submitted_response(db, clock, student, exam, questions):
    mcq, saq, coding = questions
    grant = await AccessValidator(db, clock).check_access(student, exam.id, exam_code="ABC123")
    sessions = SessionStateMachine(db, clock)
    created = await sessions.create_session(student, grant)
    await sessions.start(created.id, student)
    drafts = AnswerDraftVersioner(db, clock)
    await drafts.autosave(created.id, student, mcq.id, "B")
    await drafts.autosave(created.id, student, saq.id, "an answer")
    await drafts.autosave(created.id, student, coding.id, "def f(): pass")
    return (await sessions.complete(created.id, student)).response


@pytest.mark.anyio
async def test_apply_grades_completes_response(db, clock, teacher, student, exam_with_questions):
    exam, questions = exam_with_questions
    _, saq, coding = questions
    response = await _submitted_response(db, clock, student, exam, questions)
    assert response.grading_status == GradingStatus.PARTIAL

    graded = await GradeReconciler(db, clock).apply_grades(response.id, teacher, {
        str(saq.id): {"marks_obtained": 4, "feedback": "Good"},
        str(coding.id): {"marks_obtained": 7.5},
    })

    assert graded.answers[str(saq.id)]["marks_obtained"] == 4.0
    assert graded.answers[str(saq.id)]["feedback"] == "Good"
    assert graded.answers[str(coding.id)]["graded"] is True
    assert graded.manual_graded_score == 11.5
    assert graded.auto_graded_score == 2.0
    assert graded.total_score == 13.5
    assert graded.grading_status == GradingStatus.COMPLETED
    assert graded.graded_by == teacher.id
    assert graded.graded_at == clock.now()


@pytest.mark.anyio
async def test_over_max_rejects_whole_batch(db, clock, session_maker, teacher, student, exam_with_questions):
    exam, questions = exam_with_questions
    _, saq, coding = questions
    response = await _submitted_response(db, clock, student, exam, questions)
    reconciler = GradeReconciler(db, clock)
    await reconciler.apply_grades(response.id, teacher, {str(saq.id): {"marks_obtained": 3}})

    with pytest.raises(MarksExceedMaximum) as exc:
        await reconciler.apply_grades(response.id, teacher, {
            str(saq.id): {"marks_obtained": 5},
            str(coding.id): {"marks_obtained": 11},
        })
    assert [v[0] for v in exc.value.violations] == [str(coding.id)]

    # nothing from the rejected batch was written
    async with session_maker() as session:
        stored = await GradeReconciler(session, clock).get_response(response.id, teacher)
    assert stored.answers[str(saq.id)]["marks_obtained"] == 3.0
    assert stored.answers[str(coding.id)]["marks_obtained"] is None
    assert stored.total_score == 5.0
    assert stored.grading_status == GradingStatus.PARTIAL


@pytest.mark.anyio
async def test_grade_validation(db, clock, teacher, student, exam_with_questions):
    exam, questions = exam_with_questions
    _, saq, _ = questions
    response = await _submitted_response(db, clock, student, exam, questions)
    reconciler = GradeReconciler(db, clock)

    with pytest.raises(InvalidGrade):
        await reconciler.apply_grades(response.id, teacher, {str(uuid.uuid4()): {"marks_obtained": 1}})
    with pytest.raises(InvalidGrade):
        await reconciler.apply_grades(response.id, teacher, {str(saq.id): {"marks_obtained": -1}})
    with pytest.raises(InvalidGrade):
        await reconciler.apply_grades(response.id, teacher, {str(saq.id): {"marks_obtained": "lots"}})
    with pytest.raises(InvalidGrade):
        await reconciler.apply_grades(response.id, teacher, {})
    with pytest.raises(ResponseNotFound):
        await reconciler.apply_grades(uuid.uuid4(), teacher, {str(saq.id): {"marks_obtained": 1}})


@pytest.mark.anyio
@pytest.mark.parametrize("marks", [float("nan"), float("inf"), "NaN"])
async def test_non_finite_marks_are_rejected(db, clock, session_maker, teacher, student, exam_with_questions, marks):
    exam, questions = exam_with_questions
    _, saq, coding = questions
    response = await _submitted_response(db, clock, student, exam, questions)

    with pytest.raises(InvalidGrade):
        await GradeReconciler(db, clock).apply_grades(response.id, teacher, {
            str(coding.id): {"marks_obtained": 6},
            str(saq.id): {"marks_obtained": marks},
        })

    async with session_maker() as session:
        stored = await GradeReconciler(session, clock).get_response(response.id, teacher)
    assert stored.answers[str(coding.id)]["marks_obtained"] is None
    assert stored.answers[str(saq.id)]["marks_obtained"] is None
    assert stored.total_score == 2.0


@pytest.mark.anyio
async def test_grading_requires_exam_owner(db, clock, session_maker, teacher, student, exam_with_questions):
    exam, questions = exam_with_questions
    _, saq, _ = questions
    response = await _submitted_response(db, clock, student, exam, questions)
    other = await make_user(session_maker, "other@example.com", UserRole.TEACHER)
    admin = await make_user(session_maker, "admin@example.com", UserRole.ADMIN)
    reconciler = GradeReconciler(db, clock)

    with pytest.raises(NotExamOwner):
        await reconciler.apply_grades(response.id, other, {str(saq.id): {"marks_obtained": 1}})
    graded = await reconciler.apply_grades(response.id, admin, {str(saq.id): {"marks_obtained": 1}})
    assert graded.graded_by == admin.id


@pytest.mark.anyio
async def test_response_stats(db, clock, session_maker, teacher, student, exam_with_questions):
    exam, questions = exam_with_questions
    _, saq, coding = questions
    first = await _submitted_response(db, clock, student, exam, questions)
    second_student = await make_user(session_maker, "second@example.com")
    second = await _submitted_response(db, clock, second_student, exam, questions)

    reconciler = GradeReconciler(db, clock)
    await reconciler.apply_grades(first.id, teacher, {
        str(saq.id): {"marks_obtained": 5},
        str(coding.id): {"marks_obtained": 10},
    })

    stats = await reconciler.response_stats(exam.id, teacher)
    assert stats["total_responses"] == 2
    assert stats["completed"] == 1
    assert stats["partial"] == 1
    assert stats["pending"] == 0
    assert stats["highest_score"] == 17.0
    assert stats["lowest_score"] == 2.0
    assert stats["average_score"] == 9.5

    results = await reconciler.student_results(second_student)
    assert [r.id for r in results] == [second.id]
