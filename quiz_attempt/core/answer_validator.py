"""Normalization and correctness rules for single answers.

Each question type defines the canonical representation stored in a session
and the rule used later to decide correctness. All functions are pure: the
question is never modified and no state outside the arguments is read.

Numbers are compared with :class:`decimal.Decimal` built from the canonical
strings, so ``value == correct * (1 + tolerance)`` is accepted exactly instead
of depending on binary floating point rounding.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import math
import re
from typing import Any

from quiz_attempt.core.models import (
    BooleanQuestion,
    McqQuestion,
    NumberQuestion,
    Question,
    TextQuestion,
)

_NUMBER_PATTERN = re.compile(r"^-?(\d+\.?\d*|\.\d+)$")


@dataclass(frozen=True, slots=True)
class ValidationResult:
    normalized: str | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def validate_answer(question: Question, raw_value: Any) -> ValidationResult:
    """Normalize ``raw_value`` for ``question`` or report why it is rejected."""
    if isinstance(question, (McqQuestion, BooleanQuestion)):
        return _validate_choice(question, raw_value)
    if isinstance(question, TextQuestion):
        return _validate_text(raw_value)
    if isinstance(question, NumberQuestion):
        return _validate_number(raw_value)
    raise TypeError(f"Unsupported question type: {type(question).__name__}")


def is_correct(question: Question, normalized: str | None) -> bool:
    """Return True when a stored (normalized) answer matches the question."""
    if normalized is None:
        return False
    if isinstance(question, (McqQuestion, BooleanQuestion)):
        return normalized == question.correct_option.text
    if isinstance(question, TextQuestion):
        return _text_matches(normalized, question.correct_answer, question.case_sensitive)
    if isinstance(question, NumberQuestion):
        return _number_within_tolerance(normalized, question.correct_answer, question.tolerance)
    raise TypeError(f"Unsupported question type: {type(question).__name__}")


def sanitize_number_input(raw_value: str) -> str | None:
    """Return the trimmed input when it is a well-formed number entry, else None.

    Accepted: digits, at most one leading ``-`` and at most one ``.``, with at
    least one digit.
    """
    candidate = raw_value.strip()
    if not _NUMBER_PATTERN.match(candidate):
        return None
    return candidate


def canonical_number(value: float) -> str:
    """Canonical decimal string of a parsed float (``3.0`` -> ``"3"``)."""
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def _validate_choice(question: McqQuestion | BooleanQuestion, raw_value: Any) -> ValidationResult:
    if not isinstance(raw_value, str):
        return ValidationResult(None, "Choose one of the listed options.")
    if raw_value not in {option.text for option in question.options}:
        return ValidationResult(None, f"'{raw_value}' is not an option of this question.")
    return ValidationResult(raw_value)


def _validate_text(raw_value: Any) -> ValidationResult:
    if not isinstance(raw_value, str):
        return ValidationResult(None, "Text answers must be strings.")
    return ValidationResult(raw_value)


def _validate_number(raw_value: Any) -> ValidationResult:
    if isinstance(raw_value, bool):
        return ValidationResult(None, "Enter a number.")
    if isinstance(raw_value, (int, float)):
        try:
            parsed = float(raw_value)
        except OverflowError:
            return ValidationResult(None, "Enter a finite number.")
    elif isinstance(raw_value, str):
        sanitized = sanitize_number_input(raw_value)
        if sanitized is None:
            return ValidationResult(None, "Only digits, one leading '-' and one '.' are allowed.")
        parsed = float(sanitized)
    else:
        return ValidationResult(None, "Enter a number.")
    if not math.isfinite(parsed):
        return ValidationResult(None, "Enter a finite number.")
    return ValidationResult(canonical_number(parsed))


def _text_matches(given: str, expected: str, case_sensitive: bool) -> bool:
    given = given.strip()
    expected = expected.strip()
    if not case_sensitive:
        given = given.casefold()
        expected = expected.casefold()
    return given == expected


def _number_within_tolerance(given: str, expected: str, tolerance: float) -> bool:
    try:
        value = Decimal(given)
        correct = Decimal(expected.strip())
    except InvalidOperation:
        return False
    allowed = Decimal(repr(tolerance))
    if correct == 0:
        return abs(value) <= allowed
    return abs(value - correct) <= allowed * abs(correct)
