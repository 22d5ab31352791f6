"""
Tests for the async retry helper.
"""

from unittest.mock import AsyncMock, patch

import pytest

from quiz_attempt.core.errors import PersistenceError, QuizNotFound
from quiz_attempt.utils.retry import RetryPolicy, retry_async


def test_delays_grow_exponentially_up_to_the_cap():
    policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=4.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 4.0, 4.0]


def test_policy_rejects_nonsense():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-1)


@pytest.mark.asyncio
async def test_returns_first_success():
    operation = AsyncMock(side_effect=[PersistenceError("blip"), "done"])

    with patch("quiz_attempt.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await retry_async(RetryPolicy(base_delay=0.5), operation, retry_on=(PersistenceError,))

    assert result == "done"
    assert operation.await_count == 2
    sleep.assert_awaited_once_with(0.5)


@pytest.mark.asyncio
async def test_reraises_after_last_attempt():
    operation = AsyncMock(side_effect=PersistenceError("down"))

    with patch("quiz_attempt.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(PersistenceError, match="down"):
            await retry_async(RetryPolicy(max_attempts=3), operation, retry_on=(PersistenceError,))

    assert operation.await_count == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    operation = AsyncMock(side_effect=QuizNotFound("gone"))

    with pytest.raises(QuizNotFound):
        await retry_async(RetryPolicy(), operation, retry_on=(PersistenceError,))

    assert operation.await_count == 1
