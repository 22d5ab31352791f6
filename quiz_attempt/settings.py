import os
from dataclasses import dataclass

from quiz_attempt.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_attempt.constants.quiz_constants import (
    AUTOSAVE_INTERVAL_SECONDS,
    LEADERBOARD_LIMIT,
    LEADERBOARD_MAX_RETRIES,
    PERSISTENCE_BASE_DELAY_SECONDS,
    PERSISTENCE_MAX_ATTEMPTS,
)


@dataclass(frozen=True)
class Settings:
    data_dir: str
    host: str
    port: int
    log_level: str
    autosave_interval: float
    leaderboard_limit: int
    leaderboard_retries: int
    retry_attempts: int
    retry_base_delay: float

    @property
    def store_dir(self) -> str:
        return os.path.join(self.data_dir, "store")

    @property
    def snapshot_dir(self) -> str:
        return os.path.join(self.data_dir, "snapshots")


def load_settings() -> Settings:
    return Settings(
        data_dir=os.getenv("QUIZ_DATA_DIR", "data"),
        host=os.getenv("QUIZ_HOST", DEFAULT_HOST),
        port=int(os.getenv("QUIZ_PORT", str(DEFAULT_PORT))),
        log_level=os.getenv("QUIZ_LOG_LEVEL", "INFO").strip().upper(),
        autosave_interval=float(os.getenv("QUIZ_AUTOSAVE_INTERVAL", str(AUTOSAVE_INTERVAL_SECONDS))),
        leaderboard_limit=int(os.getenv("QUIZ_LEADERBOARD_LIMIT", str(LEADERBOARD_LIMIT))),
        leaderboard_retries=int(os.getenv("QUIZ_LEADERBOARD_RETRIES", str(LEADERBOARD_MAX_RETRIES))),
        retry_attempts=int(os.getenv("QUIZ_RETRY_ATTEMPTS", str(PERSISTENCE_MAX_ATTEMPTS))),
        retry_base_delay=float(os.getenv("QUIZ_RETRY_BASE_DELAY", str(PERSISTENCE_BASE_DELAY_SECONDS))),
    )
