import logging
import math
from collections.abc import Mapping
from datetime import datetime
from typing import Dict, Any, Tuple, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import Clock
from ..errors import ExamNotFound, InvalidGrade, MarksExceedMaximum, NotExamOwner, ResponseNotFound
from ..models.exam_model import Exam
from ..models.exam_session_model import ExamSession
from ..models.question_model import QuestionType
from ..models.response_model import StudentResponse, GradingStatus
from ..models.user_model import User, UserRole
from .exam_service import _get_exam, _get_questions_for_exam, _get_question_max_marks, _get_latest_drafts

logger = logging.getLogger(__name__)


def _is_mcq(q) -> bool:
    qtype = q.type.value if hasattr(q.type, "value") else q.type
    return qtype == QuestionType.MCQ.value


def _mcq_matches(ans: Any, correct: Any) -> bool:
    if ans is None or correct is None:
        return False
    if isinstance(correct, (list, tuple)):
        # multi-select: order doesn't matter
        if isinstance(ans, (list, tuple)):
            return set(map(str, ans)) == set(map(str, correct))
        return len(correct) == 1 and str(ans).strip() == str(correct[0]).strip()
    if isinstance(ans, (list, tuple)):
        return False
    return str(ans).strip() == str(correct).strip()


def grade_submission(answers: Dict[str, Any], questions: List[Any]) -> Tuple[Dict[str, float | None], float]:
    """
    Grade the given answers against the provided questions.
    - answers: mapping question_id (str) -> answer value (the latest draft text)
    - questions: list of ORM Question objects (must have id, type, correct_answers, max_score)

    Returns (question_scores: dict, total_score: float)
    For saq/coding questions, score will be None (to be graded later).
    """
    question_scores: Dict[str, float | None] = {}
    total = 0.0

    qmap = {str(q.id): q for q in questions}

    for qid_str, q in qmap.items():
        if _is_mcq(q):
            score = float(q.max_score or 0) if _mcq_matches(answers.get(qid_str), q.correct_answers) else 0.0
            question_scores[qid_str] = score
            total += score
        else:
            question_scores[qid_str] = None

    return question_scores, total


def recompute_totals(response: StudentResponse) -> None:
    """Derive the score split and grading status from the per-question entries."""
    auto = 0.0
    manual = 0.0
    graded = 0
    for entry in response.answers.values():
        marks = float(entry.get("marks_obtained") or 0)
        if entry.get("type") == QuestionType.MCQ.value:
            auto += marks
        else:
            manual += marks
        if entry.get("graded"):
            graded += 1

    response.auto_graded_score = auto
    response.manual_graded_score = manual
    response.total_score = auto + manual

    if graded == len(response.answers):
        response.grading_status = GradingStatus.COMPLETED
    elif graded == 0:
        response.grading_status = GradingStatus.PENDING
    else:
        response.grading_status = GradingStatus.PARTIAL


async def build_response(
    db: AsyncSession,
    exam_session: ExamSession,
    exam: Exam,
    student_email: str,
    submitted_at: datetime,
) -> StudentResponse:
    """
    Snapshot the latest draft of every exam question into a StudentResponse.
    The caller owns the transaction.
    """
    questions = await _get_questions_for_exam(db, exam.id)
    drafts = await _get_latest_drafts(db, exam_session.id)
    scores, _ = grade_submission({qid: d.text for qid, d in drafts.items()}, questions)

    answers = {}
    for number, q in enumerate(questions, start=1):
        qid = str(q.id)
        draft = drafts.get(qid)
        entry = {
            "type": q.type.value,
            "question_number": number,
            "answer": draft.text if draft else None,
            "version_number": draft.version_number if draft else None,
            "max_marks": float(q.max_score or 0),
            "feedback": None,
        }
        if _is_mcq(q):
            entry["is_correct"] = draft is not None and _mcq_matches(draft.text, q.correct_answers)
            entry["marks_obtained"] = scores[qid]
            entry["graded"] = True
        elif draft is None or not (draft.text or "").strip():
            # nothing to read: zero without waiting for a teacher
            entry["marks_obtained"] = 0.0
            entry["graded"] = True
        else:
            entry["marks_obtained"] = None
            entry["graded"] = False
        answers[qid] = entry

    response = StudentResponse(
        exam_id=exam.id,
        session_id=exam_session.id,
        student_id=exam_session.student_id,
        student_email=student_email,
        answers=answers,
        max_possible_score=sum(e["max_marks"] for e in answers.values()),
        submitted_at=submitted_at,
    )
    recompute_totals(response)
    db.add(response)
    return response


def _unpack_grade(grade: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(grade, Mapping):
        return grade.get("marks_obtained"), grade.get("feedback")
    return grade, None


class GradeReconciler:
    """Applies teacher marks to submitted responses."""

    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def _get_response(self, response_id: UUID) -> StudentResponse:
        res = await self.db.execute(
            select(StudentResponse)
            .where(StudentResponse.id == response_id)
            .execution_options(populate_existing=True)
        )
        response = res.scalar_one_or_none()
        if response is None:
            raise ResponseNotFound()
        return response

    async def _owned_exam(self, exam_id: UUID, grader: User) -> Exam:
        exam = await _get_exam(self.db, exam_id)
        if exam is None:
            raise ExamNotFound()
        if grader.role != UserRole.ADMIN and exam.created_by != grader.id:
            raise NotExamOwner()
        return exam

    async def get_response(self, response_id: UUID, grader: User) -> StudentResponse:
        response = await self._get_response(response_id)
        await self._owned_exam(response.exam_id, grader)
        return response

    async def list_responses(self, exam_id: UUID, grader: User) -> List[StudentResponse]:
        await self._owned_exam(exam_id, grader)
        res = await self.db.execute(
            select(StudentResponse).where(StudentResponse.exam_id == exam_id).order_by(StudentResponse.submitted_at)
        )
        return list(res.scalars().all())

    async def apply_grades(self, response_id: UUID, grader: User, grades: Dict[str, Any]) -> StudentResponse:
        """
        Apply `{question_id: {marks_obtained, feedback?}}` to a response.

        Every entry is checked against the exam's per-question maximum before
        anything is written; one bad entry rejects the whole batch.
        """
        response = await self._get_response(response_id)
        await self._owned_exam(response.exam_id, grader)

        if not grades:
            raise InvalidGrade("No grades supplied")

        max_marks = await _get_question_max_marks(self.db, response.exam_id)

        validated: Dict[str, Tuple[float, Optional[str]]] = {}
        over_max = []
        for qid, grade in grades.items():
            key = str(qid)
            marks, feedback = _unpack_grade(grade)
            if key not in max_marks or key not in response.answers:
                raise InvalidGrade(f"Question {key} is not part of this exam")
            try:
                marks = float(marks)
            except (TypeError, ValueError):
                raise InvalidGrade(f"Marks for question {key} must be a number")
            if not math.isfinite(marks):
                raise InvalidGrade(f"Marks for question {key} must be a finite number")
            if marks < 0:
                raise InvalidGrade(f"Marks for question {key} cannot be negative")
            if marks > max_marks[key]:
                over_max.append((key, marks, max_marks[key]))
            validated[key] = (marks, feedback)

        if over_max:
            logger.warning("Rejected grades for response %s: %d entries over maximum", response_id, len(over_max))
            raise MarksExceedMaximum(over_max)

        for key, (marks, feedback) in validated.items():
            # replace the entry so MutableDict sees the change
            entry = dict(response.answers[key])
            entry["marks_obtained"] = marks
            entry["graded"] = True
            if feedback is not None:
                entry["feedback"] = feedback
            response.answers[key] = entry

        recompute_totals(response)
        response.graded_by = grader.id
        response.graded_at = self.clock.now()

        await self.db.commit()
        await self.db.refresh(response)
        logger.info("Response %s graded by %s (%s)", response.id, grader.id, response.grading_status.value)
        return response

    async def response_stats(self, exam_id: UUID, grader: User) -> dict:
        responses = await self.list_responses(exam_id, grader)
        scores = [r.total_score for r in responses]
        by_status = {s: 0 for s in GradingStatus}
        for r in responses:
            by_status[r.grading_status] += 1

        return {
            "exam_id": exam_id,
            "total_responses": len(responses),
            "pending": by_status[GradingStatus.PENDING],
            "partial": by_status[GradingStatus.PARTIAL],
            "completed": by_status[GradingStatus.COMPLETED],
            "average_score": round(sum(scores) / len(scores), 2) if scores else 0.0,
            "highest_score": max(scores) if scores else 0.0,
            "lowest_score": min(scores) if scores else 0.0,
        }

    async def student_results(self, student: User) -> List[StudentResponse]:
        res = await self.db.execute(
            select(StudentResponse)
            .where(StudentResponse.student_id == student.id)
            .order_by(StudentResponse.submitted_at)
        )
        return list(res.scalars().all())
