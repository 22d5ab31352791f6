"""Service for merging quiz results into the shared per-quiz leaderboard."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from typing import TYPE_CHECKING

from quiz_attempt.constants.quiz_constants import LEADERBOARD_LIMIT, LEADERBOARD_MAX_RETRIES
from quiz_attempt.core.errors import LeaderboardConflict, PersistenceError, WriteConflict
from quiz_attempt.core.models import LeaderboardDocument, LeaderboardEntry, utcnow
from quiz_attempt.utils.retry import RetryPolicy, retry_async

if TYPE_CHECKING:
    from quiz_attempt.core.services.persistence_gateway import AttemptPersistenceGateway

logger = logging.getLogger(__name__)


def ranking_key(entry: LeaderboardEntry) -> tuple[int, int, int]:
    """Score descending, then time ascending, then earliest submission."""
    return (-entry.score, entry.time_spent, entry.sort_timestamp)


def merge_entry(
    document: LeaderboardDocument | None,
    entry: LeaderboardEntry,
    quiz_id: str,
    now: datetime,
    limit: int = LEADERBOARD_LIMIT,
) -> LeaderboardDocument:
    """Fold ``entry`` into ``document`` and return the new document.

    Any previous entry of the same user is replaced. The result is sorted by
    :func:`ranking_key` and truncated to ``limit`` entries. The returned
    document keeps the version of the input so the caller can write it back
    conditionally.
    """
    if document is None:
        return LeaderboardDocument(quiz_id=quiz_id, entries=(entry,), last_updated=now, version=0)

    entries = [existing for existing in document.entries if existing.user_id != entry.user_id]
    entries.append(entry)
    entries.sort(key=ranking_key)
    return LeaderboardDocument(
        quiz_id=quiz_id,
        entries=tuple(entries[:limit]),
        last_updated=now,
        version=document.version,
    )


class LeaderboardMerger:
    """Applies merges against the store with optimistic concurrency.

    Each round fetches the current document, merges the entry into it and
    writes it back conditioned on the fetched version. A ``WriteConflict``
    means another submitter got there first; the round is repeated on the
    fresh document, up to ``max_rounds`` times.
    """

    def __init__(
        self,
        gateway: AttemptPersistenceGateway,
        *,
        limit: int = LEADERBOARD_LIMIT,
        max_rounds: int = LEADERBOARD_MAX_RETRIES,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1.")
        self._gateway = gateway
        self._limit = limit
        self._max_rounds = max_rounds
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock

    async def submit(self, quiz_id: str, entry: LeaderboardEntry) -> LeaderboardDocument:
        """Merge ``entry`` into the stored leaderboard and return the written document."""
        for round_number in range(1, self._max_rounds + 1):
            current = await retry_async(
                self._retry_policy,
                lambda: self._gateway.load_leaderboard(quiz_id),
                retry_on=(PersistenceError,),
                description=f"load leaderboard {quiz_id}",
            )
            merged = merge_entry(current, entry, quiz_id, self._clock(), self._limit)
            expected_version = current.version if current is not None else None
            try:
                new_version = await retry_async(
                    self._retry_policy,
                    lambda: self._gateway.write_leaderboard(quiz_id, merged, expected_version),
                    retry_on=(PersistenceError,),
                    description=f"write leaderboard {quiz_id}",
                )
            except WriteConflict:
                logger.warning(
                    "Leaderboard write conflict for quiz %s (round %d/%d); re-merging",
                    quiz_id,
                    round_number,
                    self._max_rounds,
                )
                continue
            logger.info("Leaderboard for quiz %s updated with %s", quiz_id, entry.user_id)
            return LeaderboardDocument(
                quiz_id=merged.quiz_id,
                entries=merged.entries,
                last_updated=merged.last_updated,
                version=new_version,
            )

        raise LeaderboardConflict(
            f"Leaderboard for quiz {quiz_id} kept changing; gave up after {self._max_rounds} attempts.",
            quiz_id=quiz_id,
            user_id=entry.user_id,
        )
