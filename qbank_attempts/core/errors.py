"""
Typed failures of the attempt lifecycle.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer answers with. Clients should treat ``ATTEMPT_ALREADY_COMPLETED`` and
``ATTEMPT_TIMED_OUT`` as "refresh state and show results", not as retryable.
"""
from typing import Any, Dict, Optional


class QuizError(Exception):
    code = "QUIZ_ERROR"
    status_code = 400
    message = "The request could not be completed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message, "type": "quiz_error", "status_code": self.status_code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(QuizError):
    """Missing resource, or an attempt owned by someone else. Both look the same."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class BankNotAvailable(QuizError):
    code = "BANK_NOT_AVAILABLE"
    status_code = 403
    message = "This quiz is not currently available"


class NoQuestions(QuizError):
    code = "NO_QUESTIONS"
    status_code = 400
    message = "This quiz has no questions"


class MaxAttemptsReached(QuizError):
    code = "MAX_ATTEMPTS_REACHED"
    status_code = 403

    def __init__(self, max_attempts: int):
        super().__init__(
            f"You have reached the maximum number of attempts ({max_attempts}) for this quiz",
            {"max_attempts": max_attempts},
        )


class AttemptInProgressConflict(QuizError):
    code = "ATTEMPT_IN_PROGRESS"
    status_code = 409
    message = "You already have an in-progress attempt for this quiz"


class AttemptNotInProgress(QuizError):
    code = "ATTEMPT_NOT_IN_PROGRESS"
    status_code = 409
    message = "This attempt is no longer in progress"


class AttemptTimedOut(QuizError):
    code = "ATTEMPT_TIMED_OUT"
    status_code = 409
    message = "This attempt has timed out"


class AttemptAlreadyCompleted(AttemptNotInProgress):
    code = "ATTEMPT_ALREADY_COMPLETED"
    status_code = 409
    message = "This attempt has already been submitted"


class AttemptNotCompleted(QuizError):
    code = "ATTEMPT_NOT_COMPLETED"
    status_code = 400
    message = "This attempt has not been completed yet"


class InvalidPagination(QuizError):
    code = "INVALID_PAGINATION"
    status_code = 400
    message = "Invalid page or page size"
