"""Static metadata describing the quiz attempt service."""

APP_NAME = "QuizAttempt"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizAttempt runs timed quiz attempts: it validates and scores answers, autosaves "
    "progress locally, submits automatically when the clock runs out and keeps a ranked "
    "leaderboard per quiz."
)
