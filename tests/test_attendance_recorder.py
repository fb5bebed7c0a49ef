import pytest

from checkin_app.core.errors import (
    CodeMismatch,
    NotFound,
    SessionClosed,
    SessionNotFound,
    Unauthorized,
    ValidationError,
)
from checkin_app.core.models import AttendanceState, SessionState
from checkin_app.core.store import paths


def test_open_late_and_absent_scenario(manager, classroom, session, teacher_id):
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)
    first = manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1")
    assert first.awarded_score == 1.0
    assert first.attendance_state is AttendanceState.PRESENT

    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.LATE_WINDOW)
    second = manager.submit_attendance(classroom.id, session.id, "student-2", "ABC1")
    assert second.awarded_score == 0.5
    assert second.attendance_state is AttendanceState.LATE

    roster = {r.student_id: r for r in manager.get_roster(classroom.id, session.id)}
    assert roster["student-3"].attendance_state is AttendanceState.ABSENT
    assert roster["student-3"].awarded_score == 0


def test_closed_session_rejects_submission_without_touching_record(manager, classroom, session, store):
    before = store.get(paths.record_path(classroom.id, session.id, "student-1"))

    with pytest.raises(SessionClosed):
        manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1")

    assert store.get(paths.record_path(classroom.id, session.id, "student-1")) == before


def test_code_is_case_sensitive(manager, classroom, session, teacher_id):
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)

    with pytest.raises(CodeMismatch):
        manager.submit_attendance(classroom.id, session.id, "student-1", "abc1")

    record = manager.submit_attendance(classroom.id, session.id, "student-1", " ABC1 ")
    assert record.attendance_state is AttendanceState.PRESENT


def test_missing_session_is_reported_first(manager, classroom):
    with pytest.raises(SessionNotFound):
        manager.submit_attendance(classroom.id, "nope", "student-1", "ABC1")


def test_resubmission_overwrites_the_single_record(manager, classroom, session, teacher_id, store):
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)
    manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1", remark="bus was late")
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.LATE_WINDOW)
    manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1")

    records = [
        snap for snap in store.scan(paths.records_collection(classroom.id, session.id)) if snap.id == "student-1"
    ]
    assert len(records) == 1
    assert records[0].data["status"] == int(AttendanceState.LATE)
    assert records[0].data["remark"] == "-"
    assert records[0].data["stdid"] == "20230001"


def test_teacher_edits_are_gated_by_ownership_only(manager, classroom, session, teacher_id):
    record = manager.update_attendance_field(teacher_id, classroom.id, session.id, "student-3", "score", "0.75")
    assert record.awarded_score == 0.75
    record = manager.update_attendance_field(teacher_id, classroom.id, session.id, "student-3", "remark", "sick note")
    assert record.remark == "sick note"
    assert record.attendance_state is AttendanceState.ABSENT

    with pytest.raises(Unauthorized):
        manager.update_attendance_field("student-3", classroom.id, session.id, "student-3", "score", 1)
    with pytest.raises(ValidationError):
        manager.update_attendance_field(teacher_id, classroom.id, session.id, "student-3", "score", -1)
    with pytest.raises(ValidationError):
        manager.update_attendance_field(teacher_id, classroom.id, session.id, "student-3", "status", 1)

    record = manager.update_attendance_score(teacher_id, classroom.id, session.id, "student-2", 0.25)
    assert record.awarded_score == 0.25
    record = manager.update_attendance_remark(teacher_id, classroom.id, session.id, "student-2", "left early")
    assert (record.awarded_score, record.remark) == (0.25, "left early")
    roster = {r.student_id: r for r in manager.get_roster(classroom.id, session.id)}
    assert (roster["student-2"].awarded_score, roster["student-2"].remark) == (0.25, "left early")

    with pytest.raises(Unauthorized):
        manager.update_attendance_score("student-2", classroom.id, session.id, "student-2", 1)
    with pytest.raises(Unauthorized):
        manager.update_attendance_remark("student-2", classroom.id, session.id, "student-2", "present!")
    with pytest.raises(ValidationError):
        manager.update_attendance_score(teacher_id, classroom.id, session.id, "student-2", -0.5)
    with pytest.raises(NotFound):
        manager.update_attendance_remark(teacher_id, classroom.id, session.id, "nobody", "?")


def test_roster_lists_present_then_late_then_absent(manager, classroom, session, teacher_id):
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.LATE_WINDOW)
    manager.submit_attendance(classroom.id, session.id, "student-3", "ABC1")
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)
    manager.submit_attendance(classroom.id, session.id, "student-2", "ABC1")

    states = [(r.student_id, r.attendance_state) for r in manager.get_roster(classroom.id, session.id)]
    assert states == [
        ("student-2", AttendanceState.PRESENT),
        ("student-3", AttendanceState.LATE),
        ("student-1", AttendanceState.ABSENT),
    ]


def test_student_totals_sum_over_sessions(manager, classroom, session, teacher_id):
    second = manager.create_session(teacher_id, classroom.id, "XYZ", "2025-03-11T09:00:00+00:00")
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)
    manager.set_session_state(teacher_id, classroom.id, second.id, SessionState.LATE_WINDOW)
    manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1")
    manager.submit_attendance(classroom.id, second.id, "student-1", "XYZ")
    manager.submit_attendance(classroom.id, second.id, "student-2", "XYZ")

    totals = {t.student_id: t.total_score for t in manager.get_student_totals(classroom.id)}
    assert totals == {"student-1": 1.5, "student-2": 0.5, "student-3": 0.0}


def test_awarded_score_follows_classroom_settings(manager, classroom, session, teacher_id):
    manager.update_classroom_scores(teacher_id, classroom.id, 3, 2)
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.LATE_WINDOW)

    record = manager.submit_attendance(classroom.id, session.id, "student-1", "ABC1")

    assert record.awarded_score == 2


def test_non_member_cannot_check_in(manager, classroom, session, teacher_id, make_user, store):
    make_user("outsider", "Outside Student", "20240001")
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)

    with pytest.raises(Unauthorized):
        manager.submit_attendance(classroom.id, session.id, "outsider", "ABC1")

    assert store.get(paths.record_path(classroom.id, session.id, "outsider")) is None
    assert "outsider" not in {r.student_id for r in manager.get_roster(classroom.id, session.id)}
    with pytest.raises(SessionNotFound):
        manager.submit_attendance(classroom.id, "nope", "outsider", "ABC1")


def test_student_enrolled_after_roster_snapshot_can_check_in(manager, classroom, session, teacher_id, make_user):
    make_user("student-9", "Late Joiner", "20239999")
    manager.join_classroom("student-9", classroom.id)
    manager.set_session_state(teacher_id, classroom.id, session.id, SessionState.OPEN)

    record = manager.submit_attendance(classroom.id, session.id, "student-9", "ABC1")

    assert (record.attendance_state, record.awarded_score) == (AttendanceState.PRESENT, 1.0)
    assert "student-9" in {r.student_id for r in manager.get_roster(classroom.id, session.id)}
