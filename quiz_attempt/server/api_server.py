"""FastAPI server exposing quiz attempt sessions to the presentation layer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from typing import Union

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel
import uvicorn

from quiz_attempt.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from quiz_attempt.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    USER_ID_HEADER,
    USER_NAME_HEADER,
)
from quiz_attempt.core.errors import (
    AlreadyAttempted,
    AnswerValidationError,
    IndexOutOfRange,
    InvalidPhase,
    PersistenceError,
    QuizAttemptError,
    QuizExpired,
    QuizNotFound,
    SubmissionFailed,
)
from quiz_attempt.core.models import BooleanQuestion, LeaderboardDocument, McqQuestion, Question
from quiz_attempt.core.quiz_manager import QuizManager
from quiz_attempt.core.services.countdown_scheduler import format_clock
from quiz_attempt.core.services.session_machine import QuizSessionMachine

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[QuizAttemptError], int]] = [
    (AnswerValidationError, 422),
    (IndexOutOfRange, 422),
    (AlreadyAttempted, 409),
    (InvalidPhase, 409),
    (QuizNotFound, 404),
    (QuizExpired, 410),
    (SubmissionFailed, 503),
    (PersistenceError, 503),
]


class AnswerPayload(BaseModel):
    """Payload schema for an answer to one question."""

    value: Union[str, int, float]


class NavigatePayload(BaseModel):
    index: int


@dataclass(frozen=True, slots=True)
class Caller:
    user_id: str
    user_name: str


def _get_caller(
    user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    user_name: str | None = Header(default=None, alias=USER_NAME_HEADER),
) -> Caller:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {USER_ID_HEADER} header.")
    user_id = user_id.strip()
    name = (user_name or "").strip() or user_id
    return Caller(user_id=user_id, user_name=name)


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def _http_error(exc: QuizAttemptError) -> HTTPException:
    status_code = next((code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)), 500)
    detail: dict[str, object] = {"message": exc.message, **exc.context()}
    if isinstance(exc, AnswerValidationError):
        detail["question_id"] = exc.question_id
    return HTTPException(status_code=status_code, detail=detail)


def _question_payload(question: Question) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": question.id,
        "text": question.text,
        "type": question.type.value,
        "points": question.points,
    }
    if isinstance(question, (McqQuestion, BooleanQuestion)):
        payload["options"] = [option.text for option in question.options]
    return payload


def _session_payload(machine: QuizSessionMachine) -> dict[str, object]:
    quiz = machine.quiz
    state = machine.state
    summary = machine.summary()
    return {
        "quiz_id": quiz.id,
        "title": quiz.title,
        "phase": state.phase.value,
        "current_question_index": state.current_question_index,
        "remaining_seconds": state.remaining_seconds,
        "remaining_display": format_clock(state.remaining_seconds),
        "total_points": quiz.total_points,
        "questions": [_question_payload(question) for question in quiz.questions],
        "answers": {question_id: answer.value for question_id, answer in state.answers.items()},
        "flagged": sorted(state.flagged),
        "question_count": summary.question_count,
        "answered_count": summary.answered_count,
        "unanswered_count": summary.unanswered_count,
        "flagged_count": summary.flagged_count,
    }


def _leaderboard_payload(document: LeaderboardDocument | None, quiz_id: str) -> dict[str, object]:
    if document is None:
        return {"quiz_id": quiz_id, "entries": [], "last_updated": None}
    return {
        "quiz_id": quiz_id,
        "entries": [
            {
                "rank": position,
                "user_id": entry.user_id,
                "user_name": entry.user_name,
                "score": entry.score,
                "time_spent": entry.time_spent,
                "time_display": format_clock(entry.time_spent),
                "submitted_at": entry.submitted_at.isoformat(),
            }
            for position, entry in enumerate(document.entries, start=1)
        ],
        "last_updated": document.last_updated.isoformat(),
    }


def create_api_app(quiz_manager: QuizManager) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await quiz_manager.shutdown()

    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
        lifespan=lifespan,
    )
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)

    def require_session(manager: QuizManager, quiz_id: str, caller: Caller) -> QuizSessionMachine:
        machine = manager.get_session(quiz_id, caller.user_id)
        if machine is None or machine.quiz is None:
            raise HTTPException(status_code=404, detail="No session for this quiz.")
        return machine

    @app.post("/quizzes/{quiz_id}/session", status_code=201)
    async def start_session(
        quiz_id: str,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        try:
            machine = await manager.start_session(quiz_id, caller.user_id, caller.user_name)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return _session_payload(machine)

    @app.get("/quizzes/{quiz_id}/session")
    async def get_session(
        quiz_id: str,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return _session_payload(require_session(manager, quiz_id, caller))

    @app.delete("/quizzes/{quiz_id}/session", status_code=204)
    async def abandon_session(
        quiz_id: str,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> None:
        require_session(manager, quiz_id, caller)
        manager.end_session(quiz_id, caller.user_id)

    @app.put("/quizzes/{quiz_id}/session/answers/{question_id}")
    async def answer_question(
        quiz_id: str,
        question_id: str,
        payload: AnswerPayload,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        machine = require_session(manager, quiz_id, caller)
        try:
            answer = machine.answer(question_id, payload.value)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return {
            "question_id": question_id,
            "value": answer.value,
            "answered_at": answer.answered_at.isoformat(),
        }

    @app.put("/quizzes/{quiz_id}/session/flags/{index}")
    async def flag_question(
        quiz_id: str,
        index: int,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        machine = require_session(manager, quiz_id, caller)
        try:
            machine.flag(index)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return {"flagged": sorted(machine.state.flagged)}

    @app.delete("/quizzes/{quiz_id}/session/flags/{index}")
    async def unflag_question(
        quiz_id: str,
        index: int,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        machine = require_session(manager, quiz_id, caller)
        try:
            machine.unflag(index)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return {"flagged": sorted(machine.state.flagged)}

    @app.post("/quizzes/{quiz_id}/session/navigate")
    async def navigate(
        quiz_id: str,
        payload: NavigatePayload,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        machine = require_session(manager, quiz_id, caller)
        try:
            question = machine.navigate(payload.index)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return {"current_question_index": payload.index, "question": _question_payload(question)}

    @app.post("/quizzes/{quiz_id}/session/submit")
    async def submit(
        quiz_id: str,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        machine = require_session(manager, quiz_id, caller)
        try:
            result = await machine.request_submit()
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        leaderboard = result.leaderboard
        return {
            "attempt_id": result.attempt_id,
            "score": result.attempt.score,
            "total_points": machine.quiz.total_points,
            "time_spent": result.attempt.time_spent,
            "per_question": [
                {
                    "question_id": item.question_id,
                    "correct": item.correct,
                    "points_awarded": item.points_awarded,
                }
                for item in result.report.per_question
            ],
            "leaderboard_updated": leaderboard is not None,
            "rank": leaderboard.rank_of(caller.user_id) if leaderboard is not None else None,
        }

    @app.get("/quizzes/{quiz_id}/leaderboard")
    async def get_leaderboard(
        quiz_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        try:
            document = await manager.get_leaderboard(quiz_id)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        return _leaderboard_payload(document, quiz_id)

    @app.get("/quizzes/{quiz_id}/result")
    async def get_result(
        quiz_id: str,
        caller: Caller = Depends(_get_caller),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        try:
            review = await manager.review(quiz_id, caller.user_id)
        except QuizAttemptError as exc:
            raise _http_error(exc) from exc
        if review is None:
            raise HTTPException(status_code=404, detail="No submitted attempt for this quiz.")
        return {
            "quiz_id": review.quiz_id,
            "score": review.report.total,
            "total_points": review.total_points,
            "time_spent": review.time_spent,
            "time_display": review.time_spent_display,
            "rank": review.rank,
            "score_matches": review.score_matches,
            "per_question": [
                {
                    "question_id": item.question_id,
                    "correct": item.correct,
                    "points_awarded": item.points_awarded,
                }
                for item in review.report.per_question
            ],
        }

    return app


def start_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Run the FastAPI server on the current thread until it is stopped."""
    app = create_api_app(quiz_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    logger.info("Serving quiz attempts on http://%s:%d/", host, port)
    server.run()
