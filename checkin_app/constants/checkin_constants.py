"""Check-in related constants shared across core and server layers."""

DEFAULT_ATTEND_SCORE: float = 1.0
DEFAULT_LATE_SCORE: float = 0.5
DEFAULT_REMARK: str = "-"

QR_CLASSROOM_PREFIX: str = "cid"
QR_SESSION_PREFIX: str = "cno"

CLASSROOM_COLLECTION: str = "classroom"
USERS_COLLECTION: str = "users"
MEMBERS_COLLECTION: str = "students"
SESSIONS_COLLECTION: str = "checkin"
RECORDS_COLLECTION: str = "students"
QUESTIONS_COLLECTION: str = "question"
ANSWERS_COLLECTION: str = "answers"

STORE_BACKEND_ENV: str = "CHECKIN_STORE"
DEFAULT_STORE_BACKEND: str = "memory"

GUEST_ALIAS_NAMES: tuple[str, ...] = (
    "Apple",
    "Banana",
    "Cherry",
    "Durian",
    "Elderberry",
    "Fig",
    "Grape",
    "Honeydew",
    "Jackfruit",
    "Kiwi",
    "Lemon",
    "Mango",
    "Orange",
    "Peach",
)
