"""
Pytest configuration and shared fixtures for quiz attempt tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from quiz_attempt.core.models import (
    BooleanQuestion,
    McqQuestion,
    NumberQuestion,
    Option,
    Quiz,
    TextQuestion,
)
from quiz_attempt.core.services.attempt_store import AttemptStore
from quiz_attempt.core.services.persistence_gateway import InMemoryGateway
from quiz_attempt.core.services.session_machine import QuizSessionMachine
from quiz_attempt.utils.retry import RetryPolicy

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# Long enough that the background loops never fire during a test; ticks are driven by hand.
IDLE_INTERVAL = 3600.0


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def mcq(question_id: str, correct: str = "B", points: int = 1) -> McqQuestion:
    return McqQuestion(
        id=question_id,
        text=f"Question {question_id}",
        options=tuple(Option(text=letter, is_correct=letter == correct) for letter in "ABCD"),
        points=points,
    )


def make_two_mcq_quiz(quiz_id: str = "quiz-1", duration_minutes: int = 10) -> Quiz:
    return Quiz(
        id=quiz_id,
        title="Two questions",
        duration_minutes=duration_minutes,
        questions=(mcq("q1"), mcq("q2", correct="C")),
        end_time=FIXED_NOW + timedelta(days=7),
    )


def make_mixed_quiz(quiz_id: str = "mixed") -> Quiz:
    return Quiz(
        id=quiz_id,
        title="Mixed",
        duration_minutes=5,
        questions=(
            mcq("choice", correct="A", points=1),
            BooleanQuestion(
                id="truth",
                text="Water is wet.",
                options=(Option("True", True), Option("False", False)),
                points=1,
            ),
            TextQuestion(id="word", text="Spell iron.", correct_answer="Iron", points=2),
            NumberQuestion(id="num", text="About 100?", correct_answer="100", tolerance=0.05, points=3),
        ),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def gateway(clock):
    gateway = InMemoryGateway(clock=clock)
    gateway.add_quiz(make_two_mcq_quiz())
    gateway.add_quiz(make_mixed_quiz())
    return gateway


@pytest.fixture
def store(tmp_path):
    return AttemptStore(tmp_path / "snapshots")


@pytest.fixture
def make_machine(gateway, store, fast_retry, clock):
    """Factory building session machines whose timers are driven manually."""

    def factory(user_id="u1", user_name="Ada", session_gateway=None, **overrides) -> QuizSessionMachine:
        options = {
            "attempt_store": store,
            "retry_policy": fast_retry,
            "tick_interval": IDLE_INTERVAL,
            "autosave_interval": IDLE_INTERVAL,
            "clock": clock,
        }
        options.update(overrides)
        return QuizSessionMachine(session_gateway or gateway, user_id, user_name, **options)

    return factory
