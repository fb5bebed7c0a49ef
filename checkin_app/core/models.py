"""Domain models for the check-in application.

Each entity maps to one document in the store. ``from_document`` accepts the
raw field dictionary (plus the document id) and ``to_document`` produces the
fields written back, so untyped maps never travel past the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

from checkin_app.core.errors import ValidationError


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(IntEnum):
    """Mode selector for a check-in session."""

    CLOSED = 0
    OPEN = 1
    LATE_WINDOW = 2

    @property
    def accepts_submissions(self) -> bool:
        return self is not SessionState.CLOSED


class AttendanceState(IntEnum):
    ABSENT = 0
    PRESENT = 1
    LATE = 2

    @classmethod
    def for_session_state(cls, state: SessionState) -> "AttendanceState":
        if state is SessionState.OPEN:
            return cls.PRESENT
        if state is SessionState.LATE_WINDOW:
            return cls.LATE
        return cls.ABSENT


class EnrollmentRole(IntEnum):
    OWNER = 1
    STUDENT = 2


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValidationError(f"Unsupported timestamp value: {value!r}")


def _parse_enum(enum_cls: type[IntEnum], value: Any, default: IntEnum) -> IntEnum:
    if value is None:
        return default
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{value!r} is not a valid {enum_cls.__name__}.") from exc


def _require_text(value: str | None, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} must not be empty.")
    return cleaned


@dataclass(slots=True)
class Classroom:
    """A teacher-owned classroom with its attendance score configuration."""

    id: str
    owner_id: str
    code: str
    name: str
    room: str = ""
    attend_score: float = 1.0
    late_score: float = 0.5

    def __post_init__(self) -> None:
        if not self.owner_id:
            raise ValidationError("Classroom owner is required.")
        validate_scores(self.attend_score, self.late_score)

    @property
    def course_label(self) -> str:
        return f"{self.code} {self.name}".strip()

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Classroom":
        info = data.get("info") or {}
        return cls(
            id=doc_id,
            owner_id=data.get("owner", ""),
            code=info.get("code", ""),
            name=info.get("name", ""),
            room=info.get("room", ""),
            attend_score=float(info.get("score", 0) or 0),
            late_score=float(info.get("score_late", 0) or 0),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "owner": self.owner_id,
            "info": {
                "code": self.code,
                "name": self.name,
                "room": self.room,
                "score": self.attend_score,
                "score_late": self.late_score,
            },
        }


def validate_scores(attend_score: float, late_score: float) -> None:
    """Enforce ``attend_score >= late_score >= 0``."""
    if late_score < 0:
        raise ValidationError("Late score must not be negative.")
    if attend_score < late_score:
        raise ValidationError("Attendance score must be at least the late score.")


@dataclass(slots=True)
class CheckinSession:
    """One attendance-taking instance of a classroom."""

    id: str
    classroom_id: str
    code: str
    scheduled_at: datetime | None
    state: SessionState = SessionState.CLOSED

    @classmethod
    def from_document(cls, doc_id: str, classroom_id: str, data: dict[str, Any]) -> "CheckinSession":
        return cls(
            id=doc_id,
            classroom_id=classroom_id,
            code=str(data.get("code", "")),
            scheduled_at=parse_timestamp(data.get("date")),
            state=_parse_enum(SessionState, data.get("status"), SessionState.CLOSED),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "date": self.scheduled_at.isoformat() if self.scheduled_at else "",
            "status": int(self.state),
        }


@dataclass(slots=True)
class AttendanceRecord:
    """Per-student result of one session, keyed by student id."""

    student_id: str
    student_display_id: str
    name: str
    submitted_at: datetime | None = None
    awarded_score: float = 0.0
    remark: str = ""
    attendance_state: AttendanceState = AttendanceState.ABSENT

    def __post_init__(self) -> None:
        if not self.student_id:
            raise ValidationError("Attendance record requires a student id.")
        if self.awarded_score < 0:
            raise ValidationError("Awarded score must not be negative.")

    @classmethod
    def absent(cls, student_id: str, student_display_id: str, name: str) -> "AttendanceRecord":
        return cls(student_id=student_id, student_display_id=student_display_id, name=name)

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "AttendanceRecord":
        return cls(
            student_id=data.get("uid") or doc_id,
            student_display_id=str(data.get("stdid", "")),
            name=data.get("name", ""),
            submitted_at=parse_timestamp(data.get("date")),
            awarded_score=float(data.get("score", 0) or 0),
            remark=data.get("remark", "") or "",
            attendance_state=_parse_enum(AttendanceState, data.get("status"), AttendanceState.ABSENT),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "uid": self.student_id,
            "stdid": self.student_display_id,
            "name": self.name,
            "score": self.awarded_score,
            "remark": self.remark,
            "date": self.submitted_at.isoformat() if self.submitted_at else "",
            "status": int(self.attendance_state),
        }


@dataclass(slots=True)
class Question:
    """A live question of a session; at most one is broadcast at a time."""

    id: str
    sequence_no: int
    text: str
    visible: bool = False

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Question":
        try:
            sequence_no = int(data.get("question_no") or 0)
        except (TypeError, ValueError):
            sequence_no = 0
        return cls(
            id=doc_id,
            sequence_no=sequence_no,
            text=data.get("question_text", ""),
            visible=bool(data.get("question_show", False)),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "question_no": self.sequence_no,
            "question_text": self.text,
            "question_show": self.visible,
        }


@dataclass(slots=True)
class Answer:
    """Chat-style answer posted by a student under a question."""

    id: str
    student_id: str
    student_display_id: str
    author_name: str
    text: str
    submitted_at: datetime = field(default_factory=now_utc)

    def __post_init__(self) -> None:
        self.text = _require_text(self.text, "Answer text")

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Answer":
        return cls(
            id=doc_id,
            student_id=data.get("uid", ""),
            student_display_id=str(data.get("stdid", "")),
            author_name=data.get("user", ""),
            text=data.get("text", ""),
            submitted_at=parse_timestamp(data.get("time")) or now_utc(),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "uid": self.student_id,
            "stdid": self.student_display_id,
            "user": self.author_name,
            "text": self.text,
            "time": self.submitted_at.isoformat(),
        }


@dataclass(slots=True)
class UserProfile:
    """The ``users/{uid}`` document, including the cached enrollment map."""

    id: str
    name: str = ""
    student_display_id: str = ""
    enrollments: dict[str, EnrollmentRole] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "UserProfile":
        enrollments: dict[str, EnrollmentRole] = {}
        for cid, entry in (data.get("classroom") or {}).items():
            status = entry.get("status") if isinstance(entry, dict) else entry
            enrollments[cid] = _parse_enum(EnrollmentRole, status, EnrollmentRole.STUDENT)
        return cls(
            id=doc_id,
            name=data.get("name", ""),
            student_display_id=str(data.get("stdid", "")),
            enrollments=enrollments,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "stdid": self.student_display_id,
            "classroom": {cid: {"status": int(role)} for cid, role in self.enrollments.items()},
        }


@dataclass(slots=True, frozen=True)
class OpenQuestion:
    """A currently broadcast question as surfaced to a student."""

    classroom_id: str
    session_id: str
    question_id: str
    course_label: str
    question_text: str
    sequence_no: int = 0


@dataclass(slots=True)
class SessionSummary:
    """Session row for the classroom overview, with its attendance count."""

    session: CheckinSession
    attending: int


@dataclass(slots=True)
class StudentTotal:
    """Accumulated score of one student over every session of a classroom."""

    student_id: str
    student_display_id: str
    name: str
    total_score: float = 0.0
