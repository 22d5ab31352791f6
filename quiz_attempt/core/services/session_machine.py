"""State machine for one user's timed attempt at a quiz.

Phases::

    NOT_STARTED -> IN_PROGRESS -> SUBMITTING -> COMPLETED
                        |              |
                        v              v
                    ABANDONED        FAILED -> SUBMITTING (retry)

All transitions run on the event loop that owns the session. The countdown
and the autosave loop only run while the session is IN_PROGRESS and are
stopped on every transition out of it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Union

from quiz_attempt.constants.quiz_constants import AUTOSAVE_INTERVAL_SECONDS, TICK_INTERVAL_SECONDS
from quiz_attempt.core.answer_validator import validate_answer
from quiz_attempt.core.errors import (
    AlreadyAttempted,
    AnswerValidationError,
    IndexOutOfRange,
    InvalidPhase,
    LeaderboardConflict,
    PersistenceError,
    QuizAttemptError,
    QuizExpired,
    SubmissionFailed,
)
from quiz_attempt.core.models import (
    Answer,
    Attempt,
    LeaderboardEntry,
    Question,
    Quiz,
    SessionPhase,
    SessionState,
    SessionSummary,
    SubmissionResult,
    utcnow,
)
from quiz_attempt.core.score_calculator import score
from quiz_attempt.core.services.attempt_store import AttemptStore
from quiz_attempt.core.services.countdown_scheduler import (
    CountdownEvent,
    CountdownExpired,
    CountdownScheduler,
    CountdownTick,
    CountdownWarning,
)
from quiz_attempt.core.services.leaderboard import LeaderboardMerger
from quiz_attempt.core.services.persistence_gateway import AttemptPersistenceGateway
from quiz_attempt.utils.periodic import PeriodicTask
from quiz_attempt.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PhaseChanged:
    previous: SessionPhase
    phase: SessionPhase


SessionEvent = Union[PhaseChanged, CountdownTick, CountdownWarning, CountdownExpired]
SessionListener = Callable[[SessionEvent], None]


class QuizSessionMachine:
    """Orchestrates answering, navigation, the countdown and submission."""

    def __init__(
        self,
        gateway: AttemptPersistenceGateway,
        user_id: str,
        user_name: str,
        *,
        attempt_store: AttemptStore | None = None,
        merger: LeaderboardMerger | None = None,
        retry_policy: RetryPolicy | None = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._user_id = user_id
        self._user_name = user_name
        self._store = attempt_store
        self._retry_policy = retry_policy or RetryPolicy()
        self._merger = merger or LeaderboardMerger(gateway, retry_policy=self._retry_policy, clock=clock)
        self._tick_interval = tick_interval
        self._autosave_interval = autosave_interval
        self._clock = clock

        self._quiz: Quiz | None = None
        self._state = SessionState(remaining_seconds=0)
        self._starting = False
        self._scheduler: CountdownScheduler | None = None
        self._autosave: PeriodicTask | None = None
        self._time_spent: int | None = None
        self._submission: asyncio.Task[SubmissionResult] | None = None
        self._result: SubmissionResult | None = None
        self._listeners: list[SessionListener] = []

    # --- Introspection ---

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def quiz(self) -> Quiz | None:
        return self._quiz

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def scheduler(self) -> CountdownScheduler | None:
        return self._scheduler

    @property
    def result(self) -> SubmissionResult | None:
        return self._result

    @property
    def current_question(self) -> Question:
        quiz = self._require_quiz()
        return quiz.questions[self._state.current_question_index]

    def summary(self) -> SessionSummary:
        quiz = self._require_quiz()
        return SessionSummary(
            question_count=quiz.question_count,
            answered_count=len(self._state.answers),
            flagged_count=len(self._state.flagged),
        )

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        self._listeners.remove(listener)

    # --- Lifecycle ---

    async def start_by_id(self, quiz_id: str) -> SessionState:
        """Load a quiz through the gateway, then start it."""
        quiz = await retry_async(
            self._retry_policy,
            lambda: self._gateway.load_quiz(quiz_id),
            retry_on=(PersistenceError,),
            description=f"load quiz {quiz_id}",
        )
        return await self.start(quiz)

    async def start(self, quiz: Quiz) -> SessionState:
        if self._state.phase is not SessionPhase.NOT_STARTED or self._starting:
            raise InvalidPhase("Session has already been started.", **self._context(quiz.id))
        if quiz.is_expired(self._clock()):
            raise QuizExpired(f"Quiz {quiz.id} has expired", **self._context(quiz.id))

        self._starting = True
        try:
            prior = await retry_async(
                self._retry_policy,
                lambda: self._gateway.load_prior_attempt(quiz.id, self._user_id),
                retry_on=(PersistenceError,),
                description=f"load prior attempt {quiz.id}/{self._user_id}",
            )
            if prior is not None:
                raise AlreadyAttempted(
                    f"User {self._user_id} has already attempted quiz {quiz.id}",
                    **self._context(quiz.id),
                )

            self._quiz = quiz
            self._state = SessionState(
                remaining_seconds=quiz.duration_seconds,
                answers=self._restore_snapshot(quiz),
            )
            self._scheduler = CountdownScheduler(
                quiz.duration_seconds,
                self._on_countdown_event,
                tick_interval=self._tick_interval,
            )
            if self._store is not None:
                self._autosave = PeriodicTask(
                    self._autosave_interval,
                    self._autosave_now,
                    name=f"autosave-{quiz.id}",
                )
            self._set_phase(SessionPhase.IN_PROGRESS)
        finally:
            self._starting = False

        self._scheduler.start()
        if self._autosave is not None:
            self._autosave.start()
        logger.info(
            "User %s started quiz %s (%d question(s), %ss)",
            self._user_id,
            quiz.id,
            quiz.question_count,
            quiz.duration_seconds,
        )
        return self._state

    def close(self) -> None:
        """Tear the session down (user navigated away).

        An in-progress session is flushed to the local store first so that it
        can be resumed; finished sessions only have their timers stopped.
        """
        if self._state.phase is SessionPhase.IN_PROGRESS:
            self._save_snapshot()
            self._stop_timers()
            self._set_phase(SessionPhase.ABANDONED)
        elif self._state.phase is SessionPhase.NOT_STARTED:
            self._set_phase(SessionPhase.ABANDONED)
        else:
            self._stop_timers()

    # --- User actions ---

    def answer(self, question_id: str, raw_value: Any) -> Answer:
        self._require_phase(SessionPhase.IN_PROGRESS, "answer")
        quiz = self._require_quiz()
        question = quiz.get_question(question_id)
        if question is None:
            raise AnswerValidationError(
                f"Question {question_id} is not part of quiz {quiz.id}",
                question_id=question_id,
                **self._context(),
            )

        result = validate_answer(question, raw_value)
        if not result.ok:
            raise AnswerValidationError(result.error, question_id=question_id, **self._context())

        answer = Answer(value=result.normalized, answered_at=self._clock())
        self._state.answers[question_id] = answer
        return answer

    def flag(self, index: int) -> None:
        self._require_phase(SessionPhase.IN_PROGRESS, "flag")
        self._check_index(index)
        self._state.flagged.add(index)

    def unflag(self, index: int) -> None:
        self._require_phase(SessionPhase.IN_PROGRESS, "unflag")
        self._check_index(index)
        self._state.flagged.discard(index)

    def toggle_flag(self, index: int) -> bool:
        """Flip the flag on a question and return whether it is now flagged."""
        if index in self._state.flagged:
            self.unflag(index)
            return False
        self.flag(index)
        return True

    def navigate(self, index: int) -> Question:
        self._require_phase(SessionPhase.IN_PROGRESS, "navigate")
        self._check_index(index)
        self._state.current_question_index = index
        return self.current_question

    def next(self) -> Question:
        quiz = self._require_quiz()
        return self.navigate(min(self._state.current_question_index + 1, quiz.question_count - 1))

    def previous(self) -> Question:
        return self.navigate(max(self._state.current_question_index - 1, 0))

    # --- Submission ---

    async def request_submit(self) -> SubmissionResult:
        """Submit the attempt, or join/return the submission already made.

        Manual submission and the countdown's automatic submission both come
        through here. A call while SUBMITTING waits for the in-flight
        submission; a call after COMPLETED returns its result. From FAILED a
        new submission is tried with the answers kept locally.
        """
        phase = self._state.phase
        if phase is SessionPhase.COMPLETED and self._result is not None:
            return self._result
        if phase is SessionPhase.SUBMITTING and self._submission is not None:
            return await asyncio.shield(self._submission)
        if phase not in (SessionPhase.IN_PROGRESS, SessionPhase.FAILED):
            raise InvalidPhase(f"Cannot submit while {phase.value}.", **self._context())

        self._set_phase(SessionPhase.SUBMITTING)
        self._submission = asyncio.get_running_loop().create_task(
            self._submit(), name=f"submit-{self._require_quiz().id}-{self._user_id}"
        )
        self._submission.add_done_callback(self._log_submission_outcome)
        return await asyncio.shield(self._submission)

    async def _submit(self) -> SubmissionResult:
        quiz = self._require_quiz()
        self._stop_timers()
        if self._time_spent is None:
            self._time_spent = quiz.duration_seconds - self._state.remaining_seconds
        self._save_snapshot()

        answers = dict(self._state.answers)
        report = score(quiz, answers)
        attempt = Attempt(
            quiz_id=quiz.id,
            user_id=self._user_id,
            user_name=self._user_name,
            answers=answers,
            time_spent=self._time_spent,
            score=report.total,
            submitted_at=self._clock(),
        )

        try:
            attempt_id = await retry_async(
                self._retry_policy,
                lambda: self._gateway.save_attempt(attempt),
                retry_on=(PersistenceError,),
                description=f"save attempt {quiz.id}/{self._user_id}",
            )
        except AlreadyAttempted as exc:
            self._set_phase(SessionPhase.FAILED)
            raise AlreadyAttempted(exc.message, **self._context()) from exc
        except Exception as exc:
            self._set_phase(SessionPhase.FAILED)
            raise SubmissionFailed(
                f"Could not save the attempt for quiz {quiz.id}; answers are kept locally.",
                **self._context(),
            ) from exc

        self._clear_snapshot()
        logger.info(
            "Saved attempt %s for quiz %s: score %d/%d in %ss",
            attempt_id,
            quiz.id,
            report.total,
            quiz.total_points,
            attempt.time_spent,
        )

        leaderboard = None
        leaderboard_error: Exception | None = None
        try:
            leaderboard = await self._merger.submit(quiz.id, LeaderboardEntry.from_attempt(attempt))
        except LeaderboardConflict as exc:
            logger.warning("Leaderboard update for quiz %s gave up after saving the attempt: %s", quiz.id, exc)
            leaderboard_error = exc
        except Exception as exc:
            logger.exception("Leaderboard update for quiz %s failed after saving the attempt", quiz.id)
            leaderboard_error = exc

        await self._report_progress(attempt)

        self._result = SubmissionResult(
            attempt=attempt,
            attempt_id=attempt_id,
            report=report,
            leaderboard=leaderboard,
            leaderboard_error=leaderboard_error,
        )
        self._set_phase(SessionPhase.COMPLETED)
        return self._result

    async def _report_progress(self, attempt: Attempt) -> None:
        delta = {"quizzes_completed": 1, "quiz_points": attempt.score}
        try:
            await self._gateway.update_user_progress(attempt.user_id, delta)
        except Exception as exc:
            logger.warning("Progress update for user %s failed: %s", attempt.user_id, exc)

    def _log_submission_outcome(self, task: asyncio.Task[SubmissionResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Submission of quiz %s for user %s failed: %s", self._quiz_id(), self._user_id, exc)

    # --- Timers ---

    async def _on_countdown_event(self, event: CountdownEvent) -> None:
        if self._state.phase is not SessionPhase.IN_PROGRESS:
            return
        if isinstance(event, CountdownTick):
            self._state.remaining_seconds = event.remaining_seconds
        self._emit(event)
        if isinstance(event, CountdownExpired):
            self._state.remaining_seconds = 0
            logger.info("Time is up for quiz %s (user %s); submitting", self._quiz_id(), self._user_id)
            try:
                await self.request_submit()
            except QuizAttemptError as exc:
                logger.error("Automatic submission failed: %s", exc)

    async def _autosave_now(self) -> None:
        if self._state.phase is SessionPhase.IN_PROGRESS:
            self._save_snapshot()

    def _save_snapshot(self) -> None:
        if self._store is None or self._quiz is None:
            return
        try:
            self._store.save(self._quiz.id, self._state.answers)
        except OSError as exc:
            logger.warning("Autosave for quiz %s failed: %s", self._quiz.id, exc)

    def _clear_snapshot(self) -> None:
        if self._store is None or self._quiz is None:
            return
        try:
            self._store.clear(self._quiz.id)
        except OSError as exc:
            logger.warning("Could not clear the saved answers of quiz %s: %s", self._quiz.id, exc)

    def _restore_snapshot(self, quiz: Quiz) -> dict[str, Answer]:
        if self._store is None:
            return {}
        snapshot = self._store.load(quiz.id)
        if not snapshot:
            return {}
        restored = {qid: answer for qid, answer in snapshot.items() if quiz.get_question(qid) is not None}
        logger.info("Restored %d saved answer(s) for quiz %s", len(restored), quiz.id)
        return restored

    def _stop_timers(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._autosave is not None:
            self._autosave.stop()

    # --- Helpers ---

    def _set_phase(self, phase: SessionPhase) -> None:
        previous = self._state.phase
        if previous is phase:
            return
        self._state.phase = phase
        logger.debug("Session %s/%s: %s -> %s", self._quiz_id(), self._user_id, previous.value, phase.value)
        self._emit(PhaseChanged(previous=previous, phase=phase))

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s", type(event).__name__)

    def _require_phase(self, phase: SessionPhase, action: str) -> None:
        if self._state.phase is not phase:
            raise InvalidPhase(
                f"Cannot {action} while {self._state.phase.value}.",
                **self._context(),
            )

    def _require_quiz(self) -> Quiz:
        if self._quiz is None:
            raise InvalidPhase("Session has not been started.", **self._context())
        return self._quiz

    def _check_index(self, index: int) -> None:
        quiz = self._require_quiz()
        if not 0 <= index < quiz.question_count:
            raise IndexOutOfRange(
                f"Question index {index} out of range (0-{quiz.question_count - 1})",
                **self._context(),
            )

    def _quiz_id(self) -> str | None:
        return self._quiz.id if self._quiz is not None else None

    def _context(self, quiz_id: str | None = None) -> dict[str, str | None]:
        return {
            "quiz_id": quiz_id or self._quiz_id(),
            "user_id": self._user_id,
            "phase": self._state.phase.value,
        }
