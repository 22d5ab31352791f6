"""Exception hierarchy for the quiz attempt pipeline.

Every error that can reach the presentation layer carries the quiz id, the
user id and the session phase so that a recovery screen can be built without
re-deriving context.
"""

from __future__ import annotations


class QuizAttemptError(Exception):
    """Base class for all quiz attempt errors."""

    def __init__(
        self,
        message: str,
        *,
        quiz_id: str | None = None,
        user_id: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.quiz_id = quiz_id
        self.user_id = user_id
        self.phase = phase

    def context(self) -> dict[str, str | None]:
        return {"quiz_id": self.quiz_id, "user_id": self.user_id, "phase": self.phase}


class AnswerValidationError(QuizAttemptError, ValueError):
    """Raised when an answer cannot be normalized for its question."""

    def __init__(self, message: str, *, question_id: str | None = None, **context: str | None) -> None:
        super().__init__(message, **context)
        self.question_id = question_id


class AlreadyAttempted(QuizAttemptError):
    """Raised when the user already holds an attempt for the quiz."""


class IndexOutOfRange(QuizAttemptError, IndexError):
    """Raised when navigating or flagging outside the question list."""


class InvalidPhase(QuizAttemptError, RuntimeError):
    """Raised when an operation is not allowed in the current session phase."""


class QuizNotFound(QuizAttemptError, LookupError):
    """Raised when a quiz definition does not exist."""


class QuizExpired(QuizAttemptError):
    """Raised when a quiz is loaded after its end time."""


class PersistenceError(QuizAttemptError):
    """Transient failure talking to the document store."""


class WriteConflict(QuizAttemptError):
    """Raised by a conditional write whose expected version is stale."""


class SubmissionFailed(QuizAttemptError):
    """Raised when the attempt could not be saved after all retries."""


class LeaderboardConflict(QuizAttemptError):
    """Raised when the leaderboard could not be updated after all retries."""
