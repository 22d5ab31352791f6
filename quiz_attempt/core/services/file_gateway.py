"""Directory-backed gateway: quiz text files plus JSON documents.

Layout under the root directory::

    quizzes/<quiz_id>.txt               quiz definitions (importer format)
    attempts/<quiz_id>/<user_id>.json   submitted attempts
    leaderboards/<quiz_id>.json         versioned leaderboard documents
    progress/<user_id>.json             per-user progress counters

File access runs in worker threads; a process-wide lock makes the leaderboard
version check and write a single step.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime
import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any
from uuid import uuid4

from quiz_attempt.core.errors import (
    AlreadyAttempted,
    PersistenceError,
    QuizExpired,
    QuizNotFound,
    WriteConflict,
)
from quiz_attempt.core.models import Attempt, LeaderboardDocument, Quiz, utcnow
from quiz_attempt.core.quiz_importer import QuizImportError, load_quiz_from_file
from quiz_attempt.utils.file_names import safe_file_name

logger = logging.getLogger(__name__)


class JsonFileGateway:
    """Gateway persisting attempts and leaderboards as JSON files."""

    def __init__(self, root: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self._root = Path(root)
        self._clock = clock
        self._lock = Lock()

    @property
    def quizzes_dir(self) -> Path:
        return self._root / "quizzes"

    async def load_quiz(self, quiz_id: str) -> Quiz:
        return await asyncio.to_thread(self._load_quiz_sync, quiz_id)

    async def load_prior_attempt(self, quiz_id: str, user_id: str) -> Attempt | None:
        data = await asyncio.to_thread(self._read_json, self._attempt_path(quiz_id, user_id))
        if data is None:
            return None
        return Attempt.from_dict(data["attempt"])

    async def save_attempt(self, attempt: Attempt) -> str:
        return await asyncio.to_thread(self._save_attempt_sync, attempt)

    async def load_leaderboard(self, quiz_id: str) -> LeaderboardDocument | None:
        data = await asyncio.to_thread(self._read_json, self._leaderboard_path(quiz_id))
        return LeaderboardDocument.from_dict(data) if data is not None else None

    async def write_leaderboard(
        self,
        quiz_id: str,
        document: LeaderboardDocument,
        expected_version: int | None,
    ) -> int:
        return await asyncio.to_thread(self._write_leaderboard_sync, quiz_id, document, expected_version)

    async def update_user_progress(self, user_id: str, delta: Mapping[str, int]) -> None:
        await asyncio.to_thread(self._update_progress_sync, user_id, dict(delta))

    def _load_quiz_sync(self, quiz_id: str) -> Quiz:
        path = self.quizzes_dir / f"{safe_file_name(quiz_id)}.txt"
        if not path.exists():
            raise QuizNotFound(f"Quiz {quiz_id} not found", quiz_id=quiz_id)
        try:
            quiz = load_quiz_from_file(path)
        except QuizImportError as exc:
            raise PersistenceError(f"Quiz {quiz_id} could not be read: {exc}", quiz_id=quiz_id) from exc
        if quiz.is_expired(self._clock()):
            raise QuizExpired(f"Quiz {quiz_id} has expired", quiz_id=quiz_id)
        return quiz

    def _save_attempt_sync(self, attempt: Attempt) -> str:
        path = self._attempt_path(attempt.quiz_id, attempt.user_id)
        with self._lock:
            if path.exists():
                raise AlreadyAttempted(
                    f"User {attempt.user_id} already submitted quiz {attempt.quiz_id}",
                    quiz_id=attempt.quiz_id,
                    user_id=attempt.user_id,
                )
            attempt_id = uuid4().hex
            self._write_json(path, {"id": attempt_id, "attempt": attempt.to_dict()})
        logger.info("Stored attempt %s for quiz %s", attempt_id, attempt.quiz_id)
        return attempt_id

    def _write_leaderboard_sync(
        self,
        quiz_id: str,
        document: LeaderboardDocument,
        expected_version: int | None,
    ) -> int:
        path = self._leaderboard_path(quiz_id)
        with self._lock:
            current = self._read_json(path)
            current_version = int(current.get("version", 0)) if current is not None else None
            if current_version != expected_version:
                raise WriteConflict(
                    f"Leaderboard {quiz_id} is at version {current_version}, expected {expected_version}",
                    quiz_id=quiz_id,
                )
            new_version = (current_version or 0) + 1
            payload = document.to_dict()
            payload["version"] = new_version
            self._write_json(path, payload)
            return new_version

    def _update_progress_sync(self, user_id: str, delta: dict[str, int]) -> None:
        path = self._root / "progress" / f"{safe_file_name(user_id)}.json"
        with self._lock:
            counters = self._read_json(path) or {}
            for name, amount in delta.items():
                counters[name] = int(counters.get(name, 0)) + amount
            self._write_json(path, counters)

    def _attempt_path(self, quiz_id: str, user_id: str) -> Path:
        return self._root / "attempts" / safe_file_name(quiz_id) / f"{safe_file_name(user_id)}.json"

    def _leaderboard_path(self, quiz_id: str) -> Path:
        return self._root / "leaderboards" / f"{safe_file_name(quiz_id)}.json"

    @staticmethod
    def _read_json(path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read {path}: {exc}") from exc

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".tmp")
            temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(temp_path, path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc
