"""Business logic facade shared by the HTTP server and any other client."""

from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any

from checkin_app.core.models import (
    Answer,
    AttendanceRecord,
    CheckinSession,
    Classroom,
    OpenQuestion,
    Question,
    SessionState,
    SessionSummary,
    StudentTotal,
    UserProfile,
)
from checkin_app.core.name_assigner import NameAssigner
from checkin_app.core.qr_payload import QrPayload, parse_qr_payload
from checkin_app.core.services.answer_channel import AnswerChannel, AnswersCallback, AnswerView
from checkin_app.core.services.attendance_recorder import AttendanceRecorder
from checkin_app.core.services.classroom_registry import ClassroomRegistry
from checkin_app.core.services.enrollment import EnrollmentReconciler, EnrollmentService
from checkin_app.core.services.question_broadcast import QuestionBroadcastManager
from checkin_app.core.services.question_discovery import OpenQuestionsCallback, QuestionDiscoveryCascade
from checkin_app.core.services.session_state_machine import SessionStateMachine
from checkin_app.core.services.subscription_manager import SubscriptionHandle, SubscriptionManager
from checkin_app.core.store.base import DocumentStore, Subscription


class CheckinManager:
    """Facade for the check-in services: classrooms, sessions, attendance, Q&A.

    Services are stateless over the store, so most calls go straight through.
    Question edits take ``_question_lock`` because numbering and exclusivity
    are read-then-write sequences.
    """

    def __init__(
        self,
        store: DocumentStore,
        subscriptions: SubscriptionManager | None = None,
        aliases: NameAssigner | None = None,
    ) -> None:
        self._store = store
        self._question_lock = Lock()

        # Services
        self._classrooms = ClassroomRegistry(store)
        self._sessions = SessionStateMachine(store, self._classrooms)
        self._attendance = AttendanceRecorder(store, self._classrooms, self._sessions)
        self._questions = QuestionBroadcastManager(store, self._classrooms, self._sessions)
        self._discovery = QuestionDiscoveryCascade(store, subscriptions)
        self._enrollment = EnrollmentService(store, self._classrooms)
        self._reconciler = EnrollmentReconciler(store)
        self._answers = AnswerChannel(store, aliases)

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._discovery.subscriptions

    # --- Classroom Delegation ---

    def create_classroom(self, owner_id: str, code: str, name: str, room: str = "", **scores: float) -> Classroom:
        return self._classrooms.create_classroom(owner_id, code, name, room, **scores)

    def get_classroom(self, cid: str) -> Classroom:
        return self._classrooms.get_classroom(cid)

    def update_classroom_scores(self, actor_id: str, cid: str, attend_score: float, late_score: float) -> Classroom:
        return self._classrooms.update_scores(actor_id, cid, attend_score, late_score)

    def delete_classroom(self, actor_id: str, cid: str) -> None:
        self._classrooms.delete_classroom(actor_id, cid)

    # --- Enrollment Delegation ---

    def join_classroom(self, user_id: str, cid: str) -> Classroom:
        return self._enrollment.join_classroom(user_id, cid)

    def remove_student(self, actor_id: str, cid: str, student_id: str) -> None:
        self._enrollment.remove_student(actor_id, cid, student_id)

    def list_members(self, cid: str) -> list[UserProfile]:
        return self._enrollment.list_members(cid)

    def reconcile_enrollment(self, user_id: str) -> list[Classroom]:
        return self._reconciler.reconcile(user_id)

    # --- Session Delegation ---

    def create_session(
        self,
        actor_id: str,
        cid: str,
        code: str,
        scheduled_at: datetime | str | None,
    ) -> CheckinSession:
        return self._sessions.create_session(actor_id, cid, code, scheduled_at)

    def get_session(self, cid: str, sid: str) -> CheckinSession:
        return self._sessions.get_session(cid, sid)

    def set_session_state(self, actor_id: str, cid: str, sid: str, state: SessionState | int) -> CheckinSession:
        return self._sessions.set_state(actor_id, cid, sid, state)

    def delete_session(self, actor_id: str, cid: str, sid: str) -> None:
        self._sessions.delete_session(actor_id, cid, sid)

    def get_attendance_summary(self, cid: str) -> list[SessionSummary]:
        return self._sessions.list_sessions(cid)

    def locate_session(self, user_id: str, sid: str) -> CheckinSession:
        return self._sessions.locate_session(user_id, sid)

    # --- Attendance Delegation ---

    def submit_attendance(
        self,
        cid: str,
        sid: str,
        student_id: str,
        entered_code: str,
        remark: str | None = None,
    ) -> AttendanceRecord:
        return self._attendance.submit(cid, sid, student_id, entered_code, remark)

    def update_attendance_field(
        self,
        actor_id: str,
        cid: str,
        sid: str,
        student_id: str,
        field: str,
        value: Any,
    ) -> AttendanceRecord:
        return self._attendance.update_field(actor_id, cid, sid, student_id, field, value)

    def update_attendance_score(self, actor_id: str, cid: str, sid: str, student_id: str, score: float) -> AttendanceRecord:
        return self._attendance.update_score(actor_id, cid, sid, student_id, score)

    def update_attendance_remark(self, actor_id: str, cid: str, sid: str, student_id: str, remark: str) -> AttendanceRecord:
        return self._attendance.update_remark(actor_id, cid, sid, student_id, remark)

    def get_roster(self, cid: str, sid: str) -> list[AttendanceRecord]:
        return self._attendance.get_roster(cid, sid)

    def view_roster(self, actor_id: str, cid: str, sid: str) -> list[AttendanceRecord]:
        """Roster with names and scores, for the classroom owner only."""
        self._classrooms.require_owner(actor_id, cid)
        return self._attendance.get_roster(cid, sid)

    def get_student_totals(self, cid: str) -> list[StudentTotal]:
        return self._attendance.student_totals(cid)

    def view_student_totals(self, actor_id: str, cid: str) -> list[StudentTotal]:
        self._classrooms.require_owner(actor_id, cid)
        return self._attendance.student_totals(cid)

    # --- Question Delegation ---

    def add_question(self, actor_id: str, cid: str, sid: str, text: str) -> Question:
        with self._question_lock:
            return self._questions.add_question(actor_id, cid, sid, text)

    def toggle_question_visibility(self, actor_id: str, cid: str, sid: str, qid: str, visible: bool) -> Question:
        with self._question_lock:
            return self._questions.set_visible(actor_id, cid, sid, qid, visible)

    def delete_question(self, actor_id: str, cid: str, sid: str, qid: str) -> list[Question]:
        with self._question_lock:
            return self._questions.delete_question(actor_id, cid, sid, qid)

    def list_questions(self, cid: str, sid: str) -> list[Question]:
        return self._questions.list_questions(cid, sid)

    def view_questions(self, actor_id: str, cid: str, sid: str) -> list[Question]:
        """All questions for the owner; everyone else sees only the visible ones."""
        questions = self._questions.list_questions(cid, sid)
        if self._classrooms.get_classroom(cid).owner_id == actor_id:
            return questions
        return [question for question in questions if question.visible]

    def get_question(self, cid: str, sid: str, qid: str) -> Question:
        return self._questions.get_question(cid, sid, qid)

    def current_broadcast(self, cid: str, sid: str) -> Question | None:
        return self._questions.current_broadcast(cid, sid)

    # --- Discovery Delegation ---

    def observe_open_questions(self, user_id: str, on_change: OpenQuestionsCallback) -> SubscriptionHandle:
        return self._discovery.observe_open_questions(user_id, on_change)

    def snapshot_open_questions(self, user_id: str) -> list[OpenQuestion]:
        return self._discovery.snapshot_open_questions(user_id)

    # --- Answer Delegation ---

    def submit_answer(self, cid: str, sid: str, qid: str, student_id: str, text: str) -> Answer:
        return self._answers.submit_answer(cid, sid, qid, student_id, text)

    def list_answers(self, cid: str, sid: str, qid: str, guest_mode: bool = True) -> list[AnswerView]:
        return self._answers.list_answers(cid, sid, qid, guest_mode)

    def view_answers(
        self,
        actor_id: str,
        cid: str,
        sid: str,
        qid: str,
        guest_mode: bool = True,
    ) -> list[AnswerView]:
        """Answer feed; real names are shown to the classroom owner only."""
        if not guest_mode:
            self._classrooms.require_owner(actor_id, cid)
        return self._answers.list_answers(cid, sid, qid, guest_mode)

    def observe_answers(
        self,
        cid: str,
        sid: str,
        qid: str,
        on_change: AnswersCallback,
        guest_mode: bool = True,
    ) -> Subscription:
        return self._answers.observe_answers(cid, sid, qid, on_change, guest_mode)

    # --- QR Codes ---

    def resolve_qr_payload(self, raw: str) -> QrPayload:
        return parse_qr_payload(raw)

    def shutdown(self) -> None:
        """Cancel every live open-question observation."""
        self._discovery.subscriptions.cancel_all()
