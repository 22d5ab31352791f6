"""Application entry point for the QuizAttempt service."""

from __future__ import annotations

from pathlib import Path

from quiz_attempt.core.quiz_manager import QuizManager
from quiz_attempt.core.services.file_gateway import JsonFileGateway
from quiz_attempt.server.api_server import start_api_server
from quiz_attempt.settings import load_settings
from quiz_attempt.utils.logging_config import configure_logging
from quiz_attempt.utils.retry import RetryPolicy


def main() -> None:
    """Load settings, initialize logging and serve the attempt API."""
    settings = load_settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting QuizAttempt with data directory %s", settings.data_dir)

    gateway = JsonFileGateway(Path(settings.store_dir))
    if not gateway.quizzes_dir.exists():
        logger.warning("No quiz definitions found; add *.txt files to %s", gateway.quizzes_dir)

    quiz_manager = QuizManager(
        gateway,
        snapshot_root=Path(settings.snapshot_dir),
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
        ),
        leaderboard_limit=settings.leaderboard_limit,
        leaderboard_rounds=settings.leaderboard_retries,
        autosave_interval=settings.autosave_interval,
    )
    start_api_server(
        quiz_manager=quiz_manager,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
