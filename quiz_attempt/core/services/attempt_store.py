"""Local durable cache of in-progress answers, one snapshot per quiz."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from quiz_attempt.constants.quiz_constants import SNAPSHOT_KEY_TEMPLATE
from quiz_attempt.core.models import Answer
from quiz_attempt.utils.file_names import safe_file_name

logger = logging.getLogger(__name__)


class AttemptStore:
    """Stores answer snapshots as JSON files under ``directory``.

    A snapshot is written atomically (temporary file, then rename), so a crash
    mid-write leaves the previous snapshot intact.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, quiz_id: str, answers: dict[str, Answer]) -> None:
        path = self._path_for(quiz_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {question_id: answer.to_dict() for question_id, answer in answers.items()}
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(payload, sort_keys=True), encoding="utf-8")
        os.replace(temp_path, path)
        logger.debug("Saved %d answer(s) for quiz %s", len(answers), quiz_id)

    def load(self, quiz_id: str) -> dict[str, Answer] | None:
        """Return the last saved snapshot, or None when nothing usable is stored."""
        path = self._path_for(quiz_id)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return {question_id: Answer.from_dict(data) for question_id, data in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return None

    def clear(self, quiz_id: str) -> None:
        self._path_for(quiz_id).unlink(missing_ok=True)

    def has_snapshot(self, quiz_id: str) -> bool:
        return self._path_for(quiz_id).exists()

    def _path_for(self, quiz_id: str) -> Path:
        key = SNAPSHOT_KEY_TEMPLATE.format(quiz_id=safe_file_name(quiz_id))
        return self._directory / f"{key}.json"
