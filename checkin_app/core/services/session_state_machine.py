"""Service for the lifecycle of check-in sessions."""

from __future__ import annotations

from datetime import datetime
import logging

from checkin_app.core.errors import NotFound, SessionNotFound, ValidationError
from checkin_app.core.models import (
    AttendanceRecord,
    AttendanceState,
    CheckinSession,
    SessionState,
    SessionSummary,
    UserProfile,
    parse_timestamp,
)
from checkin_app.core.services.cascade import delete_session_tree
from checkin_app.core.services.classroom_registry import ClassroomRegistry
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)


class SessionStateMachine:
    """Creates sessions and switches them between Closed, Open and LateWindow.

    The state is a mode selector: any state may follow any other and there is
    no terminal state. Changing it never rewrites attendance already recorded.
    """

    def __init__(self, store: DocumentStore, classrooms: ClassroomRegistry) -> None:
        self._store = store
        self._classrooms = classrooms

    def create_session(
        self,
        actor_id: str,
        cid: str,
        code: str,
        scheduled_at: datetime | str | None,
    ) -> CheckinSession:
        """Create a closed session and snapshot the current roster as absent."""
        self._classrooms.require_owner(actor_id, cid)
        cleaned_code = (code or "").strip()
        if not cleaned_code:
            raise ValidationError("Check-in code is required.")
        when = parse_timestamp(scheduled_at)
        if when is None:
            raise ValidationError("Check-in date is required.")

        session = CheckinSession(id="", classroom_id=cid, code=cleaned_code, scheduled_at=when)
        session.id = self._store.add(paths.sessions_collection(cid), session.to_document())

        members = self._store.scan(paths.members_collection(cid))
        for member in members:
            record = AttendanceRecord.absent(
                student_id=member.id,
                student_display_id=str(member.data.get("stdid", "")),
                name=member.data.get("name", ""),
            )
            self._store.set(paths.record_path(cid, session.id, member.id), record.to_document())
        logger.info("Session %s/%s created with %d students on the roster", cid, session.id, len(members))
        return session

    def get_session(self, cid: str, sid: str) -> CheckinSession:
        data = self._store.get(paths.session_path(cid, sid))
        if data is None:
            raise SessionNotFound(f"Check-in {sid} does not exist in classroom {cid}.")
        return CheckinSession.from_document(sid, cid, data)

    def set_state(self, actor_id: str, cid: str, sid: str, new_state: SessionState | int) -> CheckinSession:
        self._classrooms.require_owner(actor_id, cid)
        try:
            state = SessionState(int(new_state))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{new_state!r} is not a session state.") from exc
        session = self.get_session(cid, sid)
        self._store.set(paths.session_path(cid, sid), {"status": int(state)}, merge=True)
        logger.info("Session %s/%s: %s -> %s", cid, sid, session.state.name, state.name)
        session.state = state
        return session

    def delete_session(self, actor_id: str, cid: str, sid: str) -> None:
        self._classrooms.require_owner(actor_id, cid)
        self.get_session(cid, sid)
        delete_session_tree(self._store, cid, sid)
        logger.info("Session %s/%s deleted", cid, sid)

    def list_sessions(self, cid: str) -> list[SessionSummary]:
        """Sessions of a classroom, newest first, with their attendance counts."""
        self._classrooms.get_classroom(cid)
        summaries: list[SessionSummary] = []
        for snapshot in self._store.scan(paths.sessions_collection(cid)):
            session = CheckinSession.from_document(snapshot.id, cid, snapshot.data)
            records = self._store.scan(paths.records_collection(cid, session.id))
            attending = sum(
                1
                for record in records
                if record.data.get("status") in (AttendanceState.PRESENT, AttendanceState.LATE)
            )
            summaries.append(SessionSummary(session=session, attending=attending))
        summaries.sort(
            key=lambda s: s.session.scheduled_at.timestamp() if s.session.scheduled_at else float("-inf"),
            reverse=True,
        )
        return summaries

    def locate_session(self, user_id: str, sid: str) -> CheckinSession:
        """Find which of the user's classrooms holds session ``sid``.

        A scanned ``cno`` payload carries only the session id.
        """
        data = self._store.get(paths.user_path(user_id))
        if data is None:
            raise NotFound(f"User {user_id} does not exist.")
        profile = UserProfile.from_document(user_id, data)
        for cid in profile.enrollments:
            session_data = self._store.get(paths.session_path(cid, sid))
            if session_data is not None:
                return CheckinSession.from_document(sid, cid, session_data)
        raise SessionNotFound(f"Check-in {sid} was not found in any classroom of user {user_id}.")
