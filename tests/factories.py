import uuid
from datetime import datetime, timedelta

from sqlalchemy import insert

from examportal.models.exam_model import Exam, AccessType, exam_questions
from examportal.models.invitation_model import StudentInvitation, InvitationStatus
from examportal.models.question_model import QuestionDB, QuestionType
from examportal.models.user_model import User, UserRole

# exam window opens at T
T = datetime(2030, 1, 1, 9, 0, 0)


async def make_user(session_maker, email, role=UserRole.STUDENT) -> User:
    async with session_maker() as session:
        user = User(
            email=email,
            hashed_password="not-a-real-hash",
            is_active=True,
            is_verified=True,
            is_superuser=False,
            full_name=email.split("@")[0],
            role=role,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


def default_questions():
    return [
        QuestionDB(title="Pick B", type=QuestionType.MCQ, options=["A", "B", "C"], correct_answers="B", max_score=2),
        QuestionDB(title="Explain", type=QuestionType.SAQ, max_score=5),
        QuestionDB(title="Implement", type=QuestionType.CODING, max_score=10, language="python"),
    ]


async def make_exam(session_maker, owner: User, questions=None, **overrides):
    """Published code-access exam with window [T, T+1h] and a 60 minute duration."""
    fields = dict(
        title="Midterm",
        start_time=T,
        end_time=T + timedelta(hours=1),
        duration=60,
        access_type=AccessType.CODE,
        exam_code="ABC123",
        max_attempts=1,
        max_violations=3,
        is_published=True,
        created_by=owner.id,
    )
    fields.update(overrides)
    questions = default_questions() if questions is None else questions

    async with session_maker() as session:
        exam = Exam(**fields)
        session.add(exam)
        session.add_all(questions)
        await session.flush()
        if questions:
            await session.execute(
                insert(exam_questions),
                [{"exam_id": exam.id, "question_id": q.id, "order": i} for i, q in enumerate(questions)],
            )
        await session.commit()
        await session.refresh(exam)
        for q in questions:
            await session.refresh(q)
        return exam, questions


async def make_invitation(session_maker, exam: Exam, email, expires_at=None, status=InvitationStatus.PENDING, token=None):
    async with session_maker() as session:
        invitation = StudentInvitation(
            token=token or uuid.uuid4().hex,
            exam_id=exam.id,
            teacher_id=exam.created_by,
            student_email=email.lower(),
            first_name="Ada",
            last_name="Lovelace",
            status=status,
            expires_at=expires_at or T + timedelta(days=7),
            created_at=T - timedelta(days=1),
        )
        session.add(invitation)
        await session.commit()
        await session.refresh(invitation)
        return invitation


