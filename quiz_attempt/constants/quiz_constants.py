"""Quiz-attempt constants shared across core services and the API layer."""

SECONDS_PER_MINUTE: int = 60
TICK_INTERVAL_SECONDS: float = 1.0
AUTOSAVE_INTERVAL_SECONDS: float = 5.0

# Remaining-time thresholds (seconds) for the countdown warnings.
FIVE_MINUTE_WARNING_SECONDS: int = 300
ONE_MINUTE_WARNING_SECONDS: int = 60
THIRTY_SECOND_WARNING_SECONDS: int = 30

LEADERBOARD_LIMIT: int = 100
LEADERBOARD_MAX_RETRIES: int = 5

PERSISTENCE_MAX_ATTEMPTS: int = 3
PERSISTENCE_BASE_DELAY_SECONDS: float = 0.5
PERSISTENCE_MAX_DELAY_SECONDS: float = 4.0

DEFAULT_POINTS: int = 1
DEFAULT_NUMBER_TOLERANCE: float = 0.01
BOOLEAN_OPTION_TEXTS: tuple[str, str] = ("True", "False")

SNAPSHOT_KEY_TEMPLATE: str = "quiz_{quiz_id}_answers"

# Finished sessions kept in memory for result lookups before the oldest are dropped.
FINISHED_SESSION_LIMIT: int = 1000
