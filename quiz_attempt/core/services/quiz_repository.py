"""Service for validating and storing quiz definitions."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from quiz_attempt.constants.quiz_constants import BOOLEAN_OPTION_TEXTS
from quiz_attempt.core.models import (
    BooleanQuestion,
    McqQuestion,
    NumberQuestion,
    Question,
    Quiz,
    TextQuestion,
)


class QuizRepository:
    """In-memory catalogue of validated quiz definitions."""

    def __init__(self) -> None:
        self._quizzes: dict[str, Quiz] = {}

    def add_quiz(self, quiz: Quiz) -> Quiz:
        """Validate and store a quiz, replacing any previous definition with the same id."""
        validate_quiz(quiz)
        self._quizzes[quiz.id] = quiz
        return quiz

    def get_quiz(self, quiz_id: str) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    def has_quiz(self, quiz_id: str) -> bool:
        return quiz_id in self._quizzes

    def get_quiz_ids(self) -> list[str]:
        return sorted(self._quizzes)

    def remove_quiz(self, quiz_id: str) -> None:
        if quiz_id not in self._quizzes:
            raise KeyError(f"Quiz {quiz_id!r} is not loaded")
        del self._quizzes[quiz_id]

    def clear(self) -> None:
        self._quizzes.clear()


def validate_quiz(quiz: Quiz) -> None:
    """Raise ValueError describing the first problem found in a quiz definition."""
    if not quiz.id.strip():
        raise ValueError("Quiz id must not be empty.")
    if not quiz.title.strip():
        raise ValueError("Quiz title must not be empty.")
    if isinstance(quiz.duration_minutes, bool) or not isinstance(quiz.duration_minutes, int):
        raise ValueError("Duration must be an integer number of minutes.")
    if quiz.duration_minutes <= 0:
        raise ValueError("Duration must be a positive number of minutes.")
    if not quiz.questions:
        raise ValueError("Quiz must contain at least one question.")

    seen_ids: set[str] = set()
    for question in quiz.questions:
        if question.id in seen_ids:
            raise ValueError(f"Duplicate question id {question.id!r}.")
        seen_ids.add(question.id)
        validate_question(question)


def validate_question(question: Question) -> None:
    if not question.id.strip():
        raise ValueError("Question id must not be empty.")
    if not question.text.strip():
        raise ValueError("Question text must not be empty.")
    if isinstance(question.points, bool) or not isinstance(question.points, int) or question.points <= 0:
        raise ValueError(f"Question {question.id!r} must be worth a positive integer of points.")

    if isinstance(question, McqQuestion):
        _validate_options(question)
        if len(question.options) < 2:
            raise ValueError(f"Question {question.id!r} needs at least two options.")
    elif isinstance(question, BooleanQuestion):
        _validate_options(question)
        if tuple(option.text for option in question.options) != BOOLEAN_OPTION_TEXTS:
            raise ValueError(f"Question {question.id!r} must offer exactly the options True and False.")
    elif isinstance(question, TextQuestion):
        if not question.correct_answer.strip():
            raise ValueError(f"Question {question.id!r} needs a correct answer.")
    elif isinstance(question, NumberQuestion):
        _validate_number_question(question)
    else:
        raise TypeError(f"Unsupported question type: {type(question).__name__}")


def _validate_options(question: McqQuestion | BooleanQuestion) -> None:
    texts = [option.text for option in question.options]
    if any(not text.strip() for text in texts):
        raise ValueError(f"Option text cannot be empty (question {question.id!r}).")
    if len(set(texts)) != len(texts):
        raise ValueError(f"Option texts must be distinct (question {question.id!r}).")
    correct_count = sum(1 for option in question.options if option.is_correct)
    if correct_count != 1:
        raise ValueError(f"Question {question.id!r} must have exactly one correct option.")


def _validate_number_question(question: NumberQuestion) -> None:
    try:
        correct = Decimal(question.correct_answer.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Question {question.id!r} needs a numeric correct answer.") from exc
    if not correct.is_finite():
        raise ValueError(f"Question {question.id!r} needs a finite correct answer.")
    if not 0 < question.tolerance <= 1:
        raise ValueError(f"Tolerance of question {question.id!r} must be in (0, 1].")
