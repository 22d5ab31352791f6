"""Service for reviewing a submitted attempt."""

from __future__ import annotations

from dataclasses import dataclass

from quiz_attempt.core.models import Attempt, LeaderboardDocument, Quiz, ScoreReport
from quiz_attempt.core.score_calculator import score
from quiz_attempt.core.services.countdown_scheduler import format_clock


@dataclass(frozen=True, slots=True)
class AttemptReview:
    """Result screen data recomputed from the stored answers."""

    quiz_id: str
    user_id: str
    report: ScoreReport
    total_points: int
    time_spent: int
    rank: int | None
    score_matches: bool

    @property
    def time_spent_display(self) -> str:
        return format_clock(self.time_spent)


def review_attempt(quiz: Quiz, attempt: Attempt, leaderboard: LeaderboardDocument | None) -> AttemptReview:
    """Rescore ``attempt`` and place it on the leaderboard.

    ``score_matches`` is False only when the stored score no longer agrees
    with a recomputation, which means the quiz definition changed after the
    attempt was taken.
    """
    if attempt.quiz_id != quiz.id:
        raise ValueError(f"Attempt belongs to quiz {attempt.quiz_id}, not {quiz.id}.")
    report = score(quiz, attempt.answers)
    return AttemptReview(
        quiz_id=quiz.id,
        user_id=attempt.user_id,
        report=report,
        total_points=quiz.total_points,
        time_spent=attempt.time_spent,
        rank=leaderboard.rank_of(attempt.user_id) if leaderboard is not None else None,
        score_matches=report.total == attempt.score,
    )
