"""Domain models for the quiz attempt pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union

from quiz_attempt.constants.quiz_constants import SECONDS_PER_MINUTE


class QuestionType(str, Enum):
    MCQ = "mcq"
    BOOLEAN = "boolean"
    TEXT = "text"
    NUMBER = "number"


class QuizKind(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETED, SessionPhase.FAILED, SessionPhase.ABANDONED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Option:
    """A selectable answer of a multiple-choice or true/false question."""

    text: str
    is_correct: bool = False


@dataclass(frozen=True, slots=True)
class McqQuestion:
    """Multiple-choice question with exactly one correct option."""

    type: ClassVar[QuestionType] = QuestionType.MCQ

    id: str
    text: str
    options: tuple[Option, ...]
    points: int = 1

    @property
    def correct_option(self) -> Option:
        return next(option for option in self.options if option.is_correct)


@dataclass(frozen=True, slots=True)
class BooleanQuestion:
    """True/false question; options are the literal texts ``True`` and ``False``."""

    type: ClassVar[QuestionType] = QuestionType.BOOLEAN

    id: str
    text: str
    options: tuple[Option, ...]
    points: int = 1

    @property
    def correct_option(self) -> Option:
        return next(option for option in self.options if option.is_correct)


@dataclass(frozen=True, slots=True)
class TextQuestion:
    type: ClassVar[QuestionType] = QuestionType.TEXT

    id: str
    text: str
    correct_answer: str
    case_sensitive: bool = False
    points: int = 1


@dataclass(frozen=True, slots=True)
class NumberQuestion:
    """Numeric question graded with a relative tolerance."""

    type: ClassVar[QuestionType] = QuestionType.NUMBER

    id: str
    text: str
    correct_answer: str
    tolerance: float = 0.01
    points: int = 1


Question = Union[McqQuestion, BooleanQuestion, TextQuestion, NumberQuestion]


@dataclass(frozen=True, slots=True)
class Quiz:
    """Immutable quiz definition handed to a session."""

    id: str
    title: str
    duration_minutes: int
    questions: tuple[Question, ...]
    end_time: datetime | None = None
    kind: QuizKind = QuizKind.INTERNAL

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * SECONDS_PER_MINUTE

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def get_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)

    def is_expired(self, now: datetime) -> bool:
        return self.end_time is not None and self.end_time < now


@dataclass(frozen=True, slots=True)
class Answer:
    """A normalized answer value and the client time it was given."""

    value: str
    answered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "answered_at": self.answered_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Answer":
        return cls(value=str(data["value"]), answered_at=datetime.fromisoformat(data["answered_at"]))


@dataclass(frozen=True, slots=True)
class Attempt:
    """One user's submitted run through a quiz."""

    quiz_id: str
    user_id: str
    user_name: str
    answers: dict[str, Answer]
    time_spent: int
    score: int
    submitted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "quiz_id": self.quiz_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "answers": {qid: answer.to_dict() for qid, answer in self.answers.items()},
            "time_spent": self.time_spent,
            "score": self.score,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attempt":
        return cls(
            quiz_id=data["quiz_id"],
            user_id=data["user_id"],
            user_name=data["user_name"],
            answers={qid: Answer.from_dict(raw) for qid, raw in data["answers"].items()},
            time_spent=int(data["time_spent"]),
            score=int(data["score"]),
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
        )


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    user_id: str
    user_name: str
    score: int
    time_spent: int
    submitted_at: datetime
    sort_timestamp: int

    @classmethod
    def from_attempt(cls, attempt: Attempt) -> "LeaderboardEntry":
        return cls(
            user_id=attempt.user_id,
            user_name=attempt.user_name,
            score=attempt.score,
            time_spent=attempt.time_spent,
            submitted_at=attempt.submitted_at,
            sort_timestamp=int(attempt.submitted_at.timestamp() * 1000),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "score": self.score,
            "time_spent": self.time_spent,
            "submitted_at": self.submitted_at.isoformat(),
            "sort_timestamp": self.sort_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaderboardEntry":
        return cls(
            user_id=data["user_id"],
            user_name=data["user_name"],
            score=int(data["score"]),
            time_spent=int(data["time_spent"]),
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
            sort_timestamp=int(data["sort_timestamp"]),
        )


@dataclass(frozen=True, slots=True)
class LeaderboardDocument:
    """Ranked, capped leaderboard for one quiz.

    ``version`` is assigned by the store and used for conditional writes; a
    freshly merged document keeps the version it was derived from.
    """

    quiz_id: str
    entries: tuple[LeaderboardEntry, ...]
    last_updated: datetime
    version: int = 0

    def rank_of(self, user_id: str) -> int | None:
        """Return the 1-based rank of a user or None when not ranked."""
        for index, entry in enumerate(self.entries):
            if entry.user_id == user_id:
                return index + 1
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "quiz_id": self.quiz_id,
            "entries": [entry.to_dict() for entry in self.entries],
            "last_updated": self.last_updated.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaderboardDocument":
        return cls(
            quiz_id=data["quiz_id"],
            entries=tuple(LeaderboardEntry.from_dict(raw) for raw in data["entries"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True, slots=True)
class QuestionResult:
    question_id: str
    correct: bool
    points_awarded: int


@dataclass(frozen=True, slots=True)
class ScoreReport:
    total: int
    per_question: tuple[QuestionResult, ...]

    def result_for(self, question_id: str) -> QuestionResult | None:
        return next((r for r in self.per_question if r.question_id == question_id), None)


@dataclass(slots=True)
class SessionState:
    """Mutable state of one live session, owned by the session machine."""

    remaining_seconds: int
    phase: SessionPhase = SessionPhase.NOT_STARTED
    current_question_index: int = 0
    answers: dict[str, Answer] = field(default_factory=dict)
    flagged: set[int] = field(default_factory=set)


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Counts shown before the user confirms a submission."""

    question_count: int
    answered_count: int
    flagged_count: int

    @property
    def unanswered_count(self) -> int:
        return self.question_count - self.answered_count


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    """Outcome of a completed submission.

    ``leaderboard`` is None when the leaderboard update failed; the error is
    kept in ``leaderboard_error`` and never turns the submission into a failure.
    """

    attempt: Attempt
    attempt_id: str
    report: ScoreReport
    leaderboard: LeaderboardDocument | None = None
    leaderboard_error: Exception | None = None
