from datetime import datetime, timezone

import pytest

from checkin_app.core.errors import ValidationError
from checkin_app.core.models import (
    Answer,
    AttendanceRecord,
    AttendanceState,
    CheckinSession,
    Classroom,
    EnrollmentRole,
    Question,
    SessionState,
    UserProfile,
    parse_timestamp,
)


def test_classroom_reads_nested_info_and_validates_scores():
    data = {
        "owner": "teacher-1",
        "info": {"code": "CS101", "name": "Intro", "room": "B-204", "score": 2, "score_late": 1},
    }
    classroom = Classroom.from_document("c1", data)
    assert classroom.course_label == "CS101 Intro"
    assert classroom.attend_score == 2.0
    assert classroom.to_document() == {
        "owner": "teacher-1",
        "info": {"code": "CS101", "name": "Intro", "room": "B-204", "score": 2.0, "score_late": 1.0},
    }

    with pytest.raises(ValidationError):
        Classroom(id="c2", owner_id="teacher-1", code="X", name="Y", attend_score=0.5, late_score=1)
    with pytest.raises(ValidationError):
        Classroom(id="c3", owner_id="teacher-1", code="X", name="Y", attend_score=1, late_score=-0.1)
    with pytest.raises(ValidationError):
        Classroom(id="c4", owner_id="", code="X", name="Y")


def test_session_state_controls_submissions_and_attendance_state():
    assert not SessionState.CLOSED.accepts_submissions
    assert SessionState.OPEN.accepts_submissions
    assert SessionState.LATE_WINDOW.accepts_submissions
    assert AttendanceState.for_session_state(SessionState.OPEN) is AttendanceState.PRESENT
    assert AttendanceState.for_session_state(SessionState.LATE_WINDOW) is AttendanceState.LATE
    assert AttendanceState.for_session_state(SessionState.CLOSED) is AttendanceState.ABSENT


def test_session_document_with_unknown_status_is_rejected():
    with pytest.raises(ValidationError):
        CheckinSession.from_document("s1", "c1", {"code": "1", "date": "", "status": 7})


def test_parse_timestamp_treats_naive_values_as_utc():
    parsed = parse_timestamp("2025-03-04T09:00:00")
    assert parsed == datetime(2025, 3, 4, 9, 0, tzinfo=timezone.utc)
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    with pytest.raises(ValidationError):
        parse_timestamp("next tuesday")


def test_absent_record_defaults():
    record = AttendanceRecord.absent("student-1", "20230001", "Kim")
    assert record.attendance_state is AttendanceState.ABSENT
    assert record.awarded_score == 0
    assert record.to_document()["date"] == ""
    with pytest.raises(ValidationError):
        AttendanceRecord(student_id="student-1", student_display_id="1", name="Kim", awarded_score=-1)


def test_question_tolerates_missing_fields():
    question = Question.from_document("q1", {"question_text": "Why?"})
    assert question.sequence_no == 0
    assert question.visible is False


def test_answer_requires_text():
    with pytest.raises(ValidationError):
        Answer(id="a1", student_id="s", student_display_id="1", author_name="Kim", text="   ")


def test_user_profile_parses_enrollment_map():
    profile = UserProfile.from_document(
        "u1",
        {"name": "Kim", "stdid": 20230001, "classroom": {"c1": {"status": 1}, "c2": {"status": 2}}},
    )
    assert profile.student_display_id == "20230001"
    assert profile.enrollments == {"c1": EnrollmentRole.OWNER, "c2": EnrollmentRole.STUDENT}
    assert profile.to_document()["classroom"] == {"c1": {"status": 1}, "c2": {"status": 2}}
