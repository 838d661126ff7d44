"""
Domain errors for the exam session engine.

Every error carries a fixed ``kind`` from a closed enumeration and a stable
machine ``code``. The HTTP layer maps ``kind`` to a status code through
``STATUS_BY_KIND``; it never inspects messages.
"""
import enum
from typing import Iterable, Optional

from fastapi import status


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    VALIDATION_FAILED = "validation_failed"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
}


class ExamError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    code: str = "EXAM_ERROR"
    message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


# --- not found ---------------------------------------------------------------

class ExamNotFound(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "EXAM_NOT_FOUND"
    message = "Exam not found"


class ExamNotPublished(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "EXAM_NOT_PUBLISHED"
    message = "Exam is not published"


class TokenNotFound(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "TOKEN_NOT_FOUND"
    message = "Invalid invitation token"


class SessionNotFound(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "SESSION_NOT_FOUND"
    message = "Session not found"


class QuestionNotFound(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "QUESTION_NOT_FOUND"
    message = "Question not found"


class ResponseNotFound(ExamError):
    kind = ErrorKind.NOT_FOUND
    code = "RESPONSE_NOT_FOUND"
    message = "Response not found"


# --- forbidden ---------------------------------------------------------------

class NotInvited(ExamError):
    kind = ErrorKind.FORBIDDEN
    code = "NOT_INVITED"
    message = "You are not invited to this exam"


class NotExamOwner(ExamError):
    kind = ErrorKind.FORBIDDEN
    code = "NOT_EXAM_OWNER"
    message = "Exam not found or access denied"


class InvitationRoleMismatch(ExamError):
    kind = ErrorKind.FORBIDDEN
    code = "INVITATION_ROLE_MISMATCH"
    message = "This email belongs to a non-student account"


class SessionNotActive(ExamError):
    kind = ErrorKind.FORBIDDEN
    code = "SESSION_NOT_ACTIVE"
    message = "Session is not active"


# --- conflict ----------------------------------------------------------------

class TokenAlreadyRedeemed(ExamError):
    kind = ErrorKind.CONFLICT
    code = "TOKEN_ALREADY_REDEEMED"
    message = "Invitation already accepted"
    # the student already has an account: send them to the normal login
    redirect_to_login = True


class DuplicateInvitation(ExamError):
    kind = ErrorKind.CONFLICT
    code = "DUPLICATE_INVITATION"
    message = "Student is already invited"


class AttemptLimitExceeded(ExamError):
    kind = ErrorKind.CONFLICT
    code = "ATTEMPT_LIMIT_EXCEEDED"
    message = "No attempts remaining for this exam"


class SessionAlreadyStarted(ExamError):
    kind = ErrorKind.CONFLICT
    code = "SESSION_ALREADY_STARTED"
    message = "Session has already been started"


class InvalidTransition(ExamError):
    kind = ErrorKind.CONFLICT
    code = "INVALID_TRANSITION"
    message = "Session cannot move to the requested state"


class SessionConflict(ExamError):
    kind = ErrorKind.CONFLICT
    code = "SESSION_CONFLICT"
    message = "Concurrent update detected, please retry"


# --- expired -----------------------------------------------------------------

class TokenExpired(ExamError):
    kind = ErrorKind.EXPIRED
    code = "TOKEN_EXPIRED"
    message = "Invitation has expired"


class ExamNotActive(ExamError):
    kind = ErrorKind.EXPIRED
    code = "EXAM_NOT_ACTIVE"
    message = "Exam is not active"


class ExamTimeExpired(ExamError):
    kind = ErrorKind.EXPIRED
    code = "EXAM_TIME_EXPIRED"
    message = "Exam time has expired"


class SessionExpired(ExamTimeExpired):
    code = "SESSION_EXPIRED"
    message = "Exam session has expired"


# --- validation --------------------------------------------------------------

class InvalidExamCode(ExamError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "INVALID_EXAM_CODE"
    message = "Invalid exam code"


class InvalidInvitation(ExamError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "INVALID_INVITATION"
    message = "Invalid invitation token"


class InvalidGrade(ExamError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "INVALID_GRADE"
    message = "Invalid grade"


class MarksExceedMaximum(ExamError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "MARKS_EXCEED_MAXIMUM"

    def __init__(self, violations: Iterable[tuple]):
        # violations: (question_id, marks_obtained, max_marks)
        self.violations = list(violations)
        parts = [f"{qid}: {marks} > {max_marks}" for qid, marks, max_marks in self.violations]
        super().__init__("Marks exceed question maximum (" + ", ".join(parts) + ")")


class InvalidInvitationRequest(ExamError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "VALIDATION_ERROR"
