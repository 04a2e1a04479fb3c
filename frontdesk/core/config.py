import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./frontdesk.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

# Slot grid
DEFAULT_SLOT_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES"), 15)

# Capacity split between advance bookings and walk-ins
ADVANCE_BOOKING_RATIO = _get_float(os.getenv("ADVANCE_BOOKING_RATIO"), 0.85)

# Candidate selection
BOOKING_LEAD_MINUTES = _get_int(os.getenv("BOOKING_LEAD_MINUTES"), 60)
WALK_IN_TOKEN_ALLOTMENT = _get_int(os.getenv("WALK_IN_TOKEN_ALLOTMENT"), 5)

# Reservation transaction
MAX_RESERVATION_ATTEMPTS = _get_int(os.getenv("MAX_RESERVATION_ATTEMPTS"), 5)
WALK_IN_RESERVATION_GRACE_SECONDS = _get_int(os.getenv("WALK_IN_RESERVATION_GRACE_SECONDS"), 5)

# Walk-in registration window
WALK_IN_OPENS_BEFORE_MINUTES = _get_int(os.getenv("WALK_IN_OPENS_BEFORE_MINUTES"), 120)
WALK_IN_CLOSES_BEFORE_MINUTES = _get_int(os.getenv("WALK_IN_CLOSES_BEFORE_MINUTES"), 15)

# Arrive-by and no-show deadlines relative to the appointment time
ARRIVAL_CUT_OFF_MINUTES = _get_int(os.getenv("ARRIVAL_CUT_OFF_MINUTES"), 15)
NO_SHOW_AFTER_MINUTES = _get_int(os.getenv("NO_SHOW_AFTER_MINUTES"), 15)

BUFFER_QUEUE_SIZE = _get_int(os.getenv("BUFFER_QUEUE_SIZE"), 2)
SKIPPED_TOKEN_RECURRENCE = _get_int(os.getenv("SKIPPED_TOKEN_RECURRENCE"), 3)


def validate_runtime_config() -> None:
    if not 0 < ADVANCE_BOOKING_RATIO <= 1:
        raise RuntimeError("ADVANCE_BOOKING_RATIO must be greater than 0 and at most 1.")
    if MAX_RESERVATION_ATTEMPTS < 1:
        raise RuntimeError("MAX_RESERVATION_ATTEMPTS must be at least 1.")
    if DEFAULT_SLOT_DURATION_MINUTES < 1:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be at least 1.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
