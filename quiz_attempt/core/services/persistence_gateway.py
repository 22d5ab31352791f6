"""Narrow interface to the document store plus an in-memory implementation."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Mapping
from datetime import datetime
import logging
from typing import Protocol
from uuid import uuid4

from quiz_attempt.core.errors import AlreadyAttempted, QuizExpired, QuizNotFound, WriteConflict
from quiz_attempt.core.models import Attempt, LeaderboardDocument, Quiz, utcnow
from quiz_attempt.core.services.quiz_repository import QuizRepository

logger = logging.getLogger(__name__)


class AttemptPersistenceGateway(Protocol):
    """Operations the attempt pipeline needs from the surrounding system."""

    async def load_quiz(self, quiz_id: str) -> Quiz:
        """Return the quiz or raise QuizNotFound / QuizExpired."""

    async def load_prior_attempt(self, quiz_id: str, user_id: str) -> Attempt | None:
        ...

    async def save_attempt(self, attempt: Attempt) -> str:
        """Persist an attempt and return its id; raise PersistenceError on failure."""

    async def load_leaderboard(self, quiz_id: str) -> LeaderboardDocument | None:
        ...

    async def write_leaderboard(
        self,
        quiz_id: str,
        document: LeaderboardDocument,
        expected_version: int | None,
    ) -> int:
        """Write ``document`` if the stored version equals ``expected_version``.

        ``expected_version=None`` means the document must not exist yet.
        Returns the new version or raises WriteConflict.
        """

    async def update_user_progress(self, user_id: str, delta: Mapping[str, int]) -> None:
        ...


class InMemoryGateway:
    """Dict-backed gateway with versioned, compare-and-swap leaderboard writes."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._quizzes = QuizRepository()
        self._attempts: dict[tuple[str, str], tuple[str, Attempt]] = {}
        self._leaderboards: dict[str, LeaderboardDocument] = {}
        self._progress: dict[str, dict[str, int]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def add_quiz(self, quiz: Quiz) -> None:
        self._quizzes.add_quiz(quiz)

    def get_attempts(self, quiz_id: str) -> list[Attempt]:
        return [attempt for (qid, _), (_, attempt) in self._attempts.items() if qid == quiz_id]

    def get_progress(self, user_id: str) -> dict[str, int]:
        return dict(self._progress.get(user_id, {}))

    async def load_quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFound(f"Quiz {quiz_id} not found", quiz_id=quiz_id)
        if quiz.is_expired(self._clock()):
            raise QuizExpired(f"Quiz {quiz_id} has expired", quiz_id=quiz_id)
        return quiz

    async def load_prior_attempt(self, quiz_id: str, user_id: str) -> Attempt | None:
        stored = self._attempts.get((quiz_id, user_id))
        return stored[1] if stored else None

    async def save_attempt(self, attempt: Attempt) -> str:
        async with self._lock:
            key = (attempt.quiz_id, attempt.user_id)
            if key in self._attempts:
                raise AlreadyAttempted(
                    f"User {attempt.user_id} already submitted quiz {attempt.quiz_id}",
                    quiz_id=attempt.quiz_id,
                    user_id=attempt.user_id,
                )
            attempt_id = uuid4().hex
            self._attempts[key] = (attempt_id, attempt)
            return attempt_id

    async def load_leaderboard(self, quiz_id: str) -> LeaderboardDocument | None:
        return self._leaderboards.get(quiz_id)

    async def write_leaderboard(
        self,
        quiz_id: str,
        document: LeaderboardDocument,
        expected_version: int | None,
    ) -> int:
        async with self._lock:
            current = self._leaderboards.get(quiz_id)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                raise WriteConflict(
                    f"Leaderboard {quiz_id} is at version {current_version}, expected {expected_version}",
                    quiz_id=quiz_id,
                )
            new_version = (current_version or 0) + 1
            self._leaderboards[quiz_id] = LeaderboardDocument(
                quiz_id=quiz_id,
                entries=document.entries,
                last_updated=document.last_updated,
                version=new_version,
            )
            return new_version

    async def update_user_progress(self, user_id: str, delta: Mapping[str, int]) -> None:
        counters = self._progress[user_id]
        for name, amount in delta.items():
            counters[name] = counters.get(name, 0) + amount
