"""
Tests for leaderboard merging and the optimistic write loop.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from quiz_attempt.core.errors import LeaderboardConflict, PersistenceError, WriteConflict
from quiz_attempt.core.models import LeaderboardDocument, LeaderboardEntry
from quiz_attempt.core.services.leaderboard import LeaderboardMerger, merge_entry, ranking_key
from quiz_attempt.core.services.persistence_gateway import InMemoryGateway

from conftest import FIXED_NOW


def entry(user_id, score, time_spent, offset_ms=0):
    submitted_at = FIXED_NOW + timedelta(milliseconds=offset_ms)
    return LeaderboardEntry(
        user_id=user_id,
        user_name=user_id.upper(),
        score=score,
        time_spent=time_spent,
        submitted_at=submitted_at,
        sort_timestamp=int(submitted_at.timestamp() * 1000),
    )


def document(*entries, version=1):
    return LeaderboardDocument(quiz_id="quiz-1", entries=tuple(entries), last_updated=FIXED_NOW, version=version)


class TestMergeEntry:
    def test_creates_document_when_none_exists(self):
        merged = merge_entry(None, entry("a", 5, 100), "quiz-1", FIXED_NOW)

        assert [e.user_id for e in merged.entries] == ["a"]
        assert merged.version == 0
        assert merged.last_updated == FIXED_NOW

    def test_orders_by_score_then_time(self):
        current = document(entry("a", 5, 100), entry("b", 5, 80))
        merged = merge_entry(current, entry("c", 7, 200), "quiz-1", FIXED_NOW)

        assert [e.user_id for e in merged.entries] == ["c", "b", "a"]

    def test_equal_score_and_time_keeps_earlier_submission_first(self):
        current = document(entry("late", 3, 60, offset_ms=500))
        merged = merge_entry(current, entry("early", 3, 60, offset_ms=0), "quiz-1", FIXED_NOW)

        assert [e.user_id for e in merged.entries] == ["early", "late"]

    def test_replaces_previous_entry_of_same_user(self):
        current = document(entry("a", 2, 100), entry("b", 4, 100))
        merged = merge_entry(current, entry("a", 9, 50), "quiz-1", FIXED_NOW)

        assert [e.user_id for e in merged.entries] == ["a", "b"]
        assert merged.entries[0].score == 9

    def test_caps_entries_at_limit(self):
        current = document(*(entry(f"u{i}", 100 - i, 10) for i in range(100)))
        merged = merge_entry(current, entry("newcomer", 1000, 1), "quiz-1", FIXED_NOW)

        assert len(merged.entries) == 100
        assert merged.entries[0].user_id == "newcomer"
        assert merged.rank_of("u99") is None

    def test_low_score_does_not_enter_full_board(self):
        current = document(*(entry(f"u{i}", 100 - i, 10) for i in range(100)))
        merged = merge_entry(current, entry("late", 0, 10), "quiz-1", FIXED_NOW)

        assert merged.rank_of("late") is None

    def test_keeps_input_version(self):
        merged = merge_entry(document(entry("a", 1, 1), version=7), entry("b", 1, 1), "quiz-1", FIXED_NOW)
        assert merged.version == 7

    def test_ranking_key(self):
        assert ranking_key(entry("a", 5, 30)) < ranking_key(entry("b", 4, 10))
        assert ranking_key(entry("a", 5, 10)) < ranking_key(entry("b", 5, 30))


class TestLeaderboardMerger:
    @pytest.mark.asyncio
    async def test_first_submission_creates_board(self, clock, fast_retry):
        gateway = InMemoryGateway(clock=clock)
        merger = LeaderboardMerger(gateway, retry_policy=fast_retry, clock=clock)

        written = await merger.submit("quiz-1", entry("a", 1, 10))

        assert written.version == 1
        stored = await gateway.load_leaderboard("quiz-1")
        assert [e.user_id for e in stored.entries] == ["a"]

    @pytest.mark.asyncio
    async def test_conflict_triggers_refetch_and_remerge(self, fast_retry):
        stale = document(entry("a", 1, 10), version=1)
        fresh = document(entry("a", 1, 10), entry("b", 3, 10), version=2)
        gateway = AsyncMock()
        gateway.load_leaderboard.side_effect = [stale, fresh]
        gateway.write_leaderboard.side_effect = [WriteConflict("stale", quiz_id="quiz-1"), 3]
        merger = LeaderboardMerger(gateway, retry_policy=fast_retry)

        written = await merger.submit("quiz-1", entry("c", 2, 10))

        assert written.version == 3
        assert [e.user_id for e in written.entries] == ["b", "c", "a"]
        first_call, second_call = gateway.write_leaderboard.await_args_list
        assert first_call.args[2] == 1
        assert second_call.args[2] == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_rounds(self, fast_retry):
        gateway = AsyncMock()
        gateway.load_leaderboard.return_value = document(version=1)
        gateway.write_leaderboard.side_effect = WriteConflict("stale", quiz_id="quiz-1")
        merger = LeaderboardMerger(gateway, max_rounds=3, retry_policy=fast_retry)

        with pytest.raises(LeaderboardConflict) as excinfo:
            await merger.submit("quiz-1", entry("a", 1, 1))

        assert gateway.write_leaderboard.await_count == 3
        assert excinfo.value.user_id == "a"

    @pytest.mark.asyncio
    async def test_transient_load_failures_are_retried(self, fast_retry):
        gateway = AsyncMock()
        gateway.load_leaderboard.side_effect = [PersistenceError("offline"), None]
        gateway.write_leaderboard.return_value = 1
        merger = LeaderboardMerger(gateway, retry_policy=fast_retry)

        written = await merger.submit("quiz-1", entry("a", 1, 1))

        assert written.version == 1
        assert gateway.write_leaderboard.await_args.args[2] is None

    @pytest.mark.asyncio
    async def test_concurrent_submitters_are_all_recorded(self, clock, fast_retry):
        gateway = InMemoryGateway(clock=clock)
        merger = LeaderboardMerger(gateway, max_rounds=50, retry_policy=fast_retry, clock=clock)

        async def submit(index):
            await asyncio.sleep(0)
            return await merger.submit("quiz-1", entry(f"user-{index}", index % 7, 100 - index))

        await asyncio.gather(*(submit(i) for i in range(20)))

        stored = await gateway.load_leaderboard("quiz-1")
        assert len(stored.entries) == 20
        assert len({e.user_id for e in stored.entries}) == 20
        assert list(stored.entries) == sorted(stored.entries, key=ranking_key)

    def test_rejects_non_positive_rounds(self):
        with pytest.raises(ValueError):
            LeaderboardMerger(AsyncMock(), max_rounds=0)
