"""Utilities for reading quiz definitions from a human-friendly text file.

File format: a header block followed by question blocks, separated by blank
lines or '---'.

    TITLE: Unit 3 check
    DURATION: 10                         (minutes)
    ENDTIME: 2030-01-01T00:00:00+00:00   (optional ISO timestamp)
    KIND: internal|external              (optional, default internal)

    ID: q1                               (optional, default q<n>)
    TYPE: mcq|boolean|text|number        (optional, default mcq)
    POINTS: 2                            (optional, default 1)
    Q: Question text. Additional lines until the next marker are treated as
       part of the question.
    A: First option                      (mcq; A-H)
    B: Second option
    CORRECT: B                           (mcq letter, boolean TRUE/FALSE)
    ANSWER: expected text or number      (text/number)
    CASESENSITIVE: yes|no                (text, default no)
    TOLERANCE: 0.05                      (number, default 0.01)

The quiz id is the file stem. Parsed quizzes are validated with the same
rules the repository applies, so a file that loads is a quiz that can be run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from quiz_attempt.constants.quiz_constants import (
    BOOLEAN_OPTION_TEXTS,
    DEFAULT_NUMBER_TOLERANCE,
    DEFAULT_POINTS,
)
from quiz_attempt.core.models import (
    BooleanQuestion,
    McqQuestion,
    NumberQuestion,
    Option,
    Question,
    QuestionType,
    Quiz,
    QuizKind,
    TextQuestion,
)
from quiz_attempt.core.services.quiz_repository import validate_quiz


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


_OPTION_ORDER = ["A", "B", "C", "D", "E", "F", "G", "H"]
_HEADER_KEYS = {"TITLE", "DURATION", "ENDTIME", "KIND"}
_QUESTION_KEYS = {"ID", "TYPE", "POINTS", "CORRECT", "ANSWER", "CASESENSITIVE", "TOLERANCE"}
_TRUE_WORDS = {"yes", "true", "1", "on"}
_FALSE_WORDS = {"no", "false", "0", "off"}


def load_quiz_from_file(file_path: Path) -> Quiz:
    text = file_path.read_text(encoding="utf-8")
    return parse_quiz_text(text, quiz_id=file_path.stem)


def parse_quiz_text(text: str, quiz_id: str) -> Quiz:
    blocks = _split_blocks(text)
    if not blocks:
        raise QuizImportError("Quiz file is empty.")

    header = _parse_header(blocks[0])
    question_blocks = blocks[1:]
    if not question_blocks:
        raise QuizImportError("Quiz file did not contain any questions.")

    questions = tuple(
        _parse_block(block, default_id=f"q{position}")
        for position, block in enumerate(question_blocks, start=1)
    )
    quiz = Quiz(
        id=quiz_id,
        title=header["TITLE"],
        duration_minutes=header["DURATION"],
        questions=questions,
        end_time=header.get("ENDTIME"),
        kind=header.get("KIND", QuizKind.INTERNAL),
    )
    try:
        validate_quiz(quiz)
    except ValueError as exc:
        raise QuizImportError(str(exc)) from exc
    return quiz


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())
    return [block for block in blocks if block]


def _split_key(line: str) -> tuple[str, str] | None:
    if ":" not in line:
        return None
    key, value = line.split(":", 1)
    return key.strip().upper(), value.strip()


def _parse_header(block: str) -> dict:
    header: dict = {}
    for raw_line in block.splitlines():
        line = raw_line.strip()
        parts = _split_key(line)
        if parts is None or parts[0] not in _HEADER_KEYS:
            raise QuizImportError(f"Expected a quiz header line (TITLE/DURATION/ENDTIME/KIND), got '{line}'.")
        key, value = parts
        if key == "TITLE":
            header[key] = value
        elif key == "DURATION":
            header[key] = _parse_positive_int(value, "DURATION")
        elif key == "ENDTIME":
            header[key] = _parse_end_time(value)
        else:
            try:
                header[key] = QuizKind(value.lower())
            except ValueError as exc:
                raise QuizImportError("KIND must be internal or external.") from exc

    if not header.get("TITLE"):
        raise QuizImportError("Quiz header must define TITLE.")
    if "DURATION" not in header:
        raise QuizImportError("Quiz header must define DURATION in minutes.")
    return header


def _parse_block(block: str, default_id: str) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    fields: dict[str, str] = {}
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_ORDER and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        parts = _split_key(line)
        if parts is not None and parts[0] in _QUESTION_KEYS:
            fields[parts[0]] = parts[1]
            current_section = None
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in _OPTION_ORDER:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")

    question_id = fields.get("ID") or default_id
    points = _parse_positive_int(fields["POINTS"], "POINTS") if "POINTS" in fields else DEFAULT_POINTS
    try:
        question_type = QuestionType(fields.get("TYPE", "mcq").lower())
    except ValueError as exc:
        raise QuizImportError("TYPE must be one of mcq, boolean, text or number.") from exc

    if question_type is QuestionType.MCQ:
        return _build_mcq(question_id, question_text, points, options, fields.get("CORRECT"))
    if question_type is QuestionType.BOOLEAN:
        return _build_boolean(question_id, question_text, points, fields.get("CORRECT"))

    answer = fields.get("ANSWER", "")
    if not answer:
        raise QuizImportError(f"Question {question_id!r} must define ANSWER.")
    if question_type is QuestionType.TEXT:
        return TextQuestion(
            id=question_id,
            text=question_text,
            correct_answer=answer,
            case_sensitive=_parse_flag(fields.get("CASESENSITIVE", "no"), "CASESENSITIVE"),
            points=points,
        )
    tolerance = DEFAULT_NUMBER_TOLERANCE
    if "TOLERANCE" in fields:
        try:
            tolerance = float(fields["TOLERANCE"])
        except ValueError as exc:
            raise QuizImportError("TOLERANCE must be a number.") from exc
    return NumberQuestion(
        id=question_id,
        text=question_text,
        correct_answer=answer,
        tolerance=tolerance,
        points=points,
    )


def _build_mcq(
    question_id: str,
    question_text: str,
    points: int,
    options: dict[str, str],
    correct_letter: str | None,
) -> McqQuestion:
    letters = [letter for letter in _OPTION_ORDER if letter in options]
    if letters != _OPTION_ORDER[: len(letters)]:
        raise QuizImportError("Options must be lettered consecutively from A.")
    if correct_letter is None:
        raise QuizImportError(f"Question {question_id!r} must define CORRECT.")
    correct_letter = correct_letter.upper()
    if correct_letter not in letters:
        raise QuizImportError(f"CORRECT must be one of {', '.join(letters)}.")
    return McqQuestion(
        id=question_id,
        text=question_text,
        options=tuple(
            Option(text=options[letter].strip(), is_correct=letter == correct_letter)
            for letter in letters
        ),
        points=points,
    )


def _build_boolean(question_id: str, question_text: str, points: int, correct: str | None) -> BooleanQuestion:
    if correct is None:
        raise QuizImportError(f"Question {question_id!r} must define CORRECT.")
    normalized = correct.strip().lower()
    if normalized in {"true", "a"}:
        correct_text = BOOLEAN_OPTION_TEXTS[0]
    elif normalized in {"false", "b"}:
        correct_text = BOOLEAN_OPTION_TEXTS[1]
    else:
        raise QuizImportError("CORRECT of a boolean question must be TRUE or FALSE.")
    return BooleanQuestion(
        id=question_id,
        text=question_text,
        options=tuple(Option(text=text, is_correct=text == correct_text) for text in BOOLEAN_OPTION_TEXTS),
        points=points,
    )


def _parse_positive_int(raw_value: str, label: str) -> int:
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuizImportError(f"{label} must be an integer.") from exc
    if parsed_value <= 0:
        raise QuizImportError(f"{label} must be a positive integer.")
    return parsed_value


def _parse_end_time(raw_value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw_value)
    except ValueError as exc:
        raise QuizImportError("ENDTIME must be an ISO 8601 timestamp.") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_flag(raw_value: str, label: str) -> bool:
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise QuizImportError(f"{label} must be yes or no.")
