"""Aggregate per-question correctness into a quiz score."""

from __future__ import annotations

from collections.abc import Mapping

from quiz_attempt.core.answer_validator import is_correct
from quiz_attempt.core.models import Answer, QuestionResult, Quiz, ScoreReport


def score(quiz: Quiz, answers: Mapping[str, Answer]) -> ScoreReport:
    """Score stored answers against a quiz.

    This is the only scoring routine: the submit path and the result review
    both call it, so recomputing from stored answers reproduces the original
    score exactly. Unanswered questions score zero and count as incorrect.
    """
    results: list[QuestionResult] = []
    for question in quiz.questions:
        answer = answers.get(question.id)
        correct = answer is not None and is_correct(question, answer.value)
        results.append(
            QuestionResult(
                question_id=question.id,
                correct=correct,
                points_awarded=question.points if correct else 0,
            )
        )

    total = sum(result.points_awarded for result in results)
    return ScoreReport(total=min(total, quiz.total_points), per_question=tuple(results))
