"""Service for student check-in submissions and teacher-side record edits."""

from __future__ import annotations

import logging
from typing import Any

from checkin_app.constants.checkin_constants import DEFAULT_REMARK
from checkin_app.core.errors import CodeMismatch, NotFound, SessionClosed, Unauthorized, ValidationError
from checkin_app.core.models import (
    AttendanceRecord,
    AttendanceState,
    SessionState,
    StudentTotal,
    UserProfile,
    now_utc,
)
from checkin_app.core.services.classroom_registry import ClassroomRegistry
from checkin_app.core.services.session_state_machine import SessionStateMachine
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = {"score": "score", "remark": "remark"}
_ROSTER_ORDER = {
    AttendanceState.PRESENT: 0,
    AttendanceState.LATE: 1,
    AttendanceState.ABSENT: 2,
}


class AttendanceRecorder:
    """Validates check-in codes and writes one record per student and session."""

    def __init__(
        self,
        store: DocumentStore,
        classrooms: ClassroomRegistry,
        sessions: SessionStateMachine,
    ) -> None:
        self._store = store
        self._classrooms = classrooms
        self._sessions = sessions

    def submit(
        self,
        cid: str,
        sid: str,
        student_id: str,
        entered_code: str,
        remark: str | None = None,
    ) -> AttendanceRecord:
        """Check a student in.

        The record is keyed by the student id, so submitting again overwrites
        the earlier record (last write wins) instead of adding a second one.
        """
        session = self._sessions.get_session(cid, sid)
        if not self._store.exists(paths.member_path(cid, student_id)):
            raise Unauthorized(f"User {student_id} is not enrolled in classroom {cid}.")
        if not session.state.accepts_submissions:
            raise SessionClosed(f"Check-in {sid} is not open.")
        if (entered_code or "").strip() != session.code:
            raise CodeMismatch("The check-in code is incorrect.")

        classroom = self._classrooms.get_classroom(cid)
        score = classroom.attend_score if session.state is SessionState.OPEN else classroom.late_score
        profile = self._load_profile(student_id)

        record = AttendanceRecord(
            student_id=student_id,
            student_display_id=profile.student_display_id,
            name=profile.name,
            submitted_at=now_utc(),
            awarded_score=score,
            remark=(remark or "").strip() or DEFAULT_REMARK,
            attendance_state=AttendanceState.for_session_state(session.state),
        )
        self._store.set(paths.record_path(cid, sid, student_id), record.to_document())
        logger.info(
            "Student %s checked in to %s/%s as %s (score %s)",
            student_id,
            cid,
            sid,
            record.attendance_state.name,
            score,
        )
        return record

    def update_field(self, actor_id: str, cid: str, sid: str, student_id: str, field: str, value: Any) -> AttendanceRecord:
        """Teacher edit of a single record field, independent of session state."""
        self._classrooms.require_owner(actor_id, cid)
        if field not in _EDITABLE_FIELDS:
            raise ValidationError(f"Field {field!r} cannot be edited.")
        record = self.get_record(cid, sid, student_id)

        if field == "score":
            try:
                score = float(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"{value!r} is not a score.") from exc
            if score < 0:
                raise ValidationError("Score must not be negative.")
            record.awarded_score = score
            stored: Any = score
        else:
            stored = "" if value is None else str(value)
            record.remark = stored

        self._store.set(paths.record_path(cid, sid, student_id), {_EDITABLE_FIELDS[field]: stored}, merge=True)
        logger.info("Record %s/%s/%s: %s set to %r by %s", cid, sid, student_id, field, stored, actor_id)
        return record

    def update_score(self, actor_id: str, cid: str, sid: str, student_id: str, score: float) -> AttendanceRecord:
        return self.update_field(actor_id, cid, sid, student_id, "score", score)

    def update_remark(self, actor_id: str, cid: str, sid: str, student_id: str, remark: str) -> AttendanceRecord:
        return self.update_field(actor_id, cid, sid, student_id, "remark", remark)

    def get_record(self, cid: str, sid: str, student_id: str) -> AttendanceRecord:
        data = self._store.get(paths.record_path(cid, sid, student_id))
        if data is None:
            raise NotFound(f"No attendance record for student {student_id} in check-in {sid}.")
        return AttendanceRecord.from_document(student_id, data)

    def get_roster(self, cid: str, sid: str) -> list[AttendanceRecord]:
        """Records of a session: present first, then late, then absent, each by time."""
        self._sessions.get_session(cid, sid)
        records = [
            AttendanceRecord.from_document(snapshot.id, snapshot.data)
            for snapshot in self._store.scan(paths.records_collection(cid, sid))
        ]
        records.sort(
            key=lambda r: (
                _ROSTER_ORDER[r.attendance_state],
                r.submitted_at.timestamp() if r.submitted_at else 0.0,
                r.student_display_id,
            )
        )
        return records

    def student_totals(self, cid: str) -> list[StudentTotal]:
        """Sum every member's awarded scores over all sessions of the classroom."""
        self._classrooms.get_classroom(cid)
        totals: dict[str, StudentTotal] = {}
        for member in self._store.scan(paths.members_collection(cid)):
            totals[member.id] = StudentTotal(
                student_id=member.id,
                student_display_id=str(member.data.get("stdid", "")),
                name=member.data.get("name", ""),
            )
        for session in self._store.scan(paths.sessions_collection(cid)):
            for snapshot in self._store.scan(paths.records_collection(cid, session.id)):
                total = totals.get(snapshot.id)
                if total is not None:
                    total.total_score += float(snapshot.data.get("score", 0) or 0)
        return sorted(totals.values(), key=lambda t: t.student_display_id)

    def _load_profile(self, student_id: str) -> UserProfile:
        data = self._store.get(paths.user_path(student_id))
        if data is None:
            raise NotFound(f"Student profile {student_id} does not exist.")
        return UserProfile.from_document(student_id, data)
