"""Countdown clock for a timed quiz attempt.

The scheduler owns the remaining time and its own cancellation flag. It emits
typed events to a single async handler: a tick every second, a warning the
instant a threshold is crossed, and an expiry event when the clock reaches
zero. Warnings are edge-triggered: a threshold fires only on the tick that
moves the clock from above it to at-or-below it, so a session that starts (or
resumes) below a threshold never reports it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Union

from quiz_attempt.constants.quiz_constants import (
    FIVE_MINUTE_WARNING_SECONDS,
    ONE_MINUTE_WARNING_SECONDS,
    THIRTY_SECOND_WARNING_SECONDS,
    TICK_INTERVAL_SECONDS,
)
from quiz_attempt.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class TimeWarning(Enum):
    FIVE_MINUTES = (
        FIVE_MINUTE_WARNING_SECONDS,
        "5 Minutes Remaining",
        "You have 5 minutes left to complete the quiz. Please review your answers and submit soon.",
        "info",
    )
    ONE_MINUTE = (
        ONE_MINUTE_WARNING_SECONDS,
        "1 Minute Remaining",
        "Only 1 minute remaining! Please submit your quiz now.",
        "warning",
    )
    THIRTY_SECONDS = (
        THIRTY_SECOND_WARNING_SECONDS,
        "30 Seconds Remaining",
        "Quiz will be automatically submitted in 30 seconds!",
        "error",
    )

    @property
    def threshold_seconds(self) -> int:
        return self.value[0]

    @property
    def title(self) -> str:
        return self.value[1]

    @property
    def message(self) -> str:
        return self.value[2]

    @property
    def severity(self) -> str:
        return self.value[3]


@dataclass(frozen=True, slots=True)
class CountdownTick:
    remaining_seconds: int


@dataclass(frozen=True, slots=True)
class CountdownWarning:
    warning: TimeWarning
    remaining_seconds: int


@dataclass(frozen=True, slots=True)
class CountdownExpired:
    remaining_seconds: int = 0


CountdownEvent = Union[CountdownTick, CountdownWarning, CountdownExpired]
CountdownHandler = Callable[[CountdownEvent], Awaitable[None]]


def format_clock(seconds: int) -> str:
    """Render seconds as ``m:ss``."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class CountdownScheduler:
    """Drives the remaining-time clock of one session."""

    def __init__(
        self,
        remaining_seconds: int,
        handler: CountdownHandler,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        warnings: Iterable[TimeWarning] = tuple(TimeWarning),
    ) -> None:
        if remaining_seconds < 0:
            raise ValueError("Remaining time cannot be negative.")
        self._remaining = remaining_seconds
        self._handler = handler
        self._warnings = sorted(warnings, key=lambda w: w.threshold_seconds, reverse=True)
        self._fired: set[TimeWarning] = set()
        self._stopped = False
        self._expired = False
        self._loop = PeriodicTask(tick_interval, self.tick, name="countdown-scheduler")

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def is_running(self) -> bool:
        return self._loop.is_running

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("A stopped countdown cannot be restarted.")
        self._loop.start()

    def stop(self) -> None:
        """Hard stop: no further ticks, warnings or expiry callbacks."""
        if not self._stopped:
            logger.debug("Countdown stopped with %ss remaining", self._remaining)
        self._stopped = True
        self._loop.stop()

    async def tick(self) -> None:
        """Advance the clock by one second and dispatch the resulting events."""
        if self._stopped or self._expired:
            return

        previous = self._remaining
        if previous > 0:
            self._remaining = previous - 1
            await self._handler(CountdownTick(self._remaining))

            for warning in self._warnings:
                if self._stopped:
                    return
                threshold = warning.threshold_seconds
                if warning not in self._fired and previous > threshold >= self._remaining:
                    self._fired.add(warning)
                    await self._handler(CountdownWarning(warning, self._remaining))

        if self._remaining == 0 and not self._stopped:
            self._expired = True
            self._loop.stop()
            self._stopped = True
            logger.info("Countdown reached zero")
            await self._handler(CountdownExpired())
