"""Facade over live quiz sessions shared between the API and background timers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
import logging
from pathlib import Path

from quiz_attempt.constants.quiz_constants import (
    AUTOSAVE_INTERVAL_SECONDS,
    FINISHED_SESSION_LIMIT,
    LEADERBOARD_LIMIT,
    LEADERBOARD_MAX_RETRIES,
    TICK_INTERVAL_SECONDS,
)
from quiz_attempt.core.errors import PersistenceError
from quiz_attempt.core.models import LeaderboardDocument, SessionPhase, utcnow
from quiz_attempt.core.services.attempt_store import AttemptStore
from quiz_attempt.core.services.leaderboard import LeaderboardMerger
from quiz_attempt.core.services.persistence_gateway import AttemptPersistenceGateway
from quiz_attempt.core.services.result_review import AttemptReview, review_attempt
from quiz_attempt.core.services.session_machine import QuizSessionMachine
from quiz_attempt.utils.file_names import safe_file_name
from quiz_attempt.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

_LIVE_PHASES = (SessionPhase.IN_PROGRESS, SessionPhase.SUBMITTING, SessionPhase.FAILED)


class QuizManager:
    """Creates, tracks and tears down one session per (quiz, user)."""

    def __init__(
        self,
        gateway: AttemptPersistenceGateway,
        *,
        snapshot_root: Path | None = None,
        retry_policy: RetryPolicy | None = None,
        leaderboard_limit: int = LEADERBOARD_LIMIT,
        leaderboard_rounds: int = LEADERBOARD_MAX_RETRIES,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
        finished_session_limit: int = FINISHED_SESSION_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._snapshot_root = snapshot_root
        self._retry_policy = retry_policy or RetryPolicy()
        self._merger = LeaderboardMerger(
            gateway,
            limit=leaderboard_limit,
            max_rounds=leaderboard_rounds,
            retry_policy=self._retry_policy,
            clock=clock,
        )
        self._tick_interval = tick_interval
        self._autosave_interval = autosave_interval
        self._clock = clock
        self._finished_session_limit = finished_session_limit
        self._sessions: dict[tuple[str, str], QuizSessionMachine] = {}
        self._start_locks: dict[tuple[str, str], asyncio.Lock] = {}

    # --- Sessions ---

    async def start_session(self, quiz_id: str, user_id: str, user_name: str) -> QuizSessionMachine:
        """Return the live session for (quiz, user) or start a new one.

        Starts for the same (quiz, user) are serialized; other pairs proceed
        independently.
        """
        key = (quiz_id, user_id)
        async with self._start_locks.setdefault(key, asyncio.Lock()):
            existing = self._sessions.get(key)
            if existing is not None and existing.phase in _LIVE_PHASES:
                return existing

            machine = QuizSessionMachine(
                self._gateway,
                user_id,
                user_name,
                attempt_store=self._store_for(user_id),
                merger=self._merger,
                retry_policy=self._retry_policy,
                tick_interval=self._tick_interval,
                autosave_interval=self._autosave_interval,
                clock=self._clock,
            )
            await machine.start_by_id(quiz_id)
            self._sessions.pop(key, None)
            self._sessions[key] = machine
        self._prune_finished_sessions()
        return machine

    def get_session(self, quiz_id: str, user_id: str) -> QuizSessionMachine | None:
        return self._sessions.get((quiz_id, user_id))

    def end_session(self, quiz_id: str, user_id: str) -> None:
        machine = self._sessions.pop((quiz_id, user_id), None)
        if machine is not None:
            machine.close()

    def get_session_count(self) -> int:
        return sum(1 for machine in self._sessions.values() if machine.phase in _LIVE_PHASES)

    async def shutdown(self) -> None:
        """Stop every session; in-progress answers are flushed to local storage."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._start_locks.clear()
        for machine in sessions:
            machine.close()
        logger.info("Closed %d session(s)", len(sessions))

    def _prune_finished_sessions(self) -> None:
        finished = [
            key
            for key, machine in self._sessions.items()
            if machine.phase.is_terminal and machine.phase not in _LIVE_PHASES
        ]
        for key in finished[: max(0, len(finished) - self._finished_session_limit)]:
            self._sessions.pop(key).close()
            lock = self._start_locks.get(key)
            if lock is not None and not lock.locked():
                del self._start_locks[key]
        if len(finished) > self._finished_session_limit:
            logger.debug("Dropped %d finished session(s)", len(finished) - self._finished_session_limit)

    # --- Leaderboard & results ---

    async def get_leaderboard(self, quiz_id: str) -> LeaderboardDocument | None:
        return await retry_async(
            self._retry_policy,
            lambda: self._gateway.load_leaderboard(quiz_id),
            retry_on=(PersistenceError,),
            description=f"load leaderboard {quiz_id}",
        )

    async def review(self, quiz_id: str, user_id: str) -> AttemptReview | None:
        """Recompute the result of a stored attempt, or None when there is none."""
        attempt = await retry_async(
            self._retry_policy,
            lambda: self._gateway.load_prior_attempt(quiz_id, user_id),
            retry_on=(PersistenceError,),
            description=f"load attempt {quiz_id}/{user_id}",
        )
        if attempt is None:
            return None

        machine = self._sessions.get((quiz_id, user_id))
        quiz = machine.quiz if machine is not None else None
        if quiz is None:
            quiz = await retry_async(
                self._retry_policy,
                lambda: self._gateway.load_quiz(quiz_id),
                retry_on=(PersistenceError,),
                description=f"load quiz {quiz_id}",
            )
        leaderboard = await self.get_leaderboard(quiz_id)
        review = review_attempt(quiz, attempt, leaderboard)
        if not review.score_matches:
            logger.warning("Stored score of %s/%s differs from the recomputed score", quiz_id, user_id)
        return review

    def _store_for(self, user_id: str) -> AttemptStore | None:
        if self._snapshot_root is None:
            return None
        return AttemptStore(self._snapshot_root / safe_file_name(user_id))
