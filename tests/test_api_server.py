import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from checkin_app.server.api_server import create_api_app


def _as(uid):
    return {"X-User-Id": uid}


@pytest.fixture
def client(manager):
    return TestClient(create_api_app(manager))


@pytest.fixture
def api_session(client, classroom, teacher_id):
    response = client.post(
        f"/classrooms/{classroom.id}/sessions",
        json={"code": "ABC1", "scheduled_at": "2025-03-04T09:00:00Z"},
        headers=_as(teacher_id),
    )
    assert response.status_code == 201
    return response.json()


def test_identity_header_is_required(client, classroom):
    response = client.get(f"/classrooms/{classroom.id}/sessions")
    assert response.status_code == 401


def test_checkin_flow_over_http(client, classroom, api_session, teacher_id):
    base = f"/classrooms/{classroom.id}/sessions/{api_session['id']}"
    assert api_session["state"] == "CLOSED"

    closed = client.post(f"{base}/attendance", json={"code": "ABC1"}, headers=_as("student-1"))
    assert closed.status_code == 409

    forbidden = client.put(f"{base}/state", json={"state": 1}, headers=_as("student-1"))
    assert forbidden.status_code == 403

    opened = client.put(f"{base}/state", json={"state": 1}, headers=_as(teacher_id))
    assert opened.json()["state"] == "OPEN"

    wrong = client.post(f"{base}/attendance", json={"code": "nope"}, headers=_as("student-1"))
    assert wrong.status_code == 409

    record = client.post(f"{base}/attendance", json={"code": "ABC1"}, headers=_as("student-1"))
    assert record.status_code == 201
    assert record.json()["attendance_state"] == "PRESENT"
    assert record.json()["remark"] == "-"

    edited = client.patch(
        f"{base}/attendance/student-1",
        json={"field": "remark", "value": "front row"},
        headers=_as(teacher_id),
    )
    assert edited.json()["remark"] == "front row"
    bad_field = client.patch(f"{base}/attendance/student-1", json={"field": "status", "value": 2}, headers=_as(teacher_id))
    assert bad_field.status_code == 422

    roster = client.get(f"{base}/attendance", headers=_as(teacher_id)).json()
    assert [r["student_id"] for r in roster][0] == "student-1"

    sessions = client.get(f"/classrooms/{classroom.id}/sessions", headers=_as(teacher_id)).json()
    assert sessions[0]["attending"] == 1

    totals = client.get(f"/classrooms/{classroom.id}/totals", headers=_as(teacher_id)).json()
    assert {t["student_id"]: t["total_score"] for t in totals}["student-1"] == 1.0


def test_missing_session_maps_to_404(client, classroom):
    response = client.post(
        f"/classrooms/{classroom.id}/sessions/unknown/attendance",
        json={"code": "ABC1"},
        headers=_as("student-1"),
    )
    assert response.status_code == 404


def test_questions_and_answers_over_http(client, classroom, api_session, teacher_id):
    base = f"/classrooms/{classroom.id}/sessions/{api_session['id']}/questions"
    first = client.post(base, json={"text": "Define *recursion*"}, headers=_as(teacher_id)).json()
    second = client.post(base, json={"text": "Base case?"}, headers=_as(teacher_id)).json()
    assert "<em>recursion</em>" in first["question_html"]

    shown = client.put(f"{base}/{second['id']}/visibility", json={"visible": True}, headers=_as(teacher_id))
    assert shown.json()["visible"] is True

    open_now = client.get("/users/student-1/open-questions", headers=_as("student-1")).json()
    assert [q["question_id"] for q in open_now] == [second["id"]]
    assert client.get("/users/student-1/open-questions", headers=_as("student-2")).status_code == 403

    posted = client.post(f"{base}/{second['id']}/answers", json={"text": "n == 0"}, headers=_as("student-1"))
    assert posted.status_code == 201
    answers = client.get(f"{base}/{second['id']}/answers", headers=_as(teacher_id)).json()
    assert answers[0]["text"] == "n == 0"
    assert answers[0]["display_name"] != "Kim Minji"

    page = client.get(f"{base}/{first['id']}/page")
    assert page.status_code == 200
    assert "<em>recursion</em>" in page.text

    remaining = client.delete(f"{base}/{first['id']}", headers=_as(teacher_id)).json()
    assert [(q["id"], q["sequence_no"]) for q in remaining] == [(second["id"], 1)]


def test_join_reconcile_and_qr(client, classroom, teacher_id, make_user):
    make_user("student-8", "Jung Ha", "20230008")
    resolved = client.post("/qr/resolve", json={"payload": f"cid{classroom.id}"}, headers=_as("student-8")).json()
    assert resolved["kind"] == "classroom"
    assert resolved["classroom"]["name"] == "Intro to Programming"

    joined = client.post(f"/classrooms/{classroom.id}/join", headers=_as("student-8"))
    assert joined.status_code == 201
    again = client.post(f"/classrooms/{classroom.id}/join", headers=_as("student-8"))
    assert again.status_code == 409

    listed = client.get("/users/student-8/classrooms", headers=_as("student-8")).json()
    assert [c["id"] for c in listed] == [classroom.id]

    removed = client.delete(f"/classrooms/{classroom.id}/students/student-8", headers=_as(teacher_id))
    assert removed.status_code == 204
    assert client.get("/users/student-8/classrooms", headers=_as("student-8")).json() == []

    bad = client.post("/qr/resolve", json={"payload": "hello"}, headers=_as("student-8"))
    assert bad.status_code == 422


def test_classroom_endpoints(client, make_user):
    make_user("teacher-5", "Teacher Yoon")
    created = client.post("/classrooms", json={"code": "BIO1", "name": "Biology"}, headers=_as("teacher-5"))
    assert created.status_code == 201
    cid = created.json()["id"]
    assert created.json()["late_score"] == 0.5

    invalid = client.patch(
        f"/classrooms/{cid}/scores",
        json={"attend_score": 0.1, "late_score": 0.4},
        headers=_as("teacher-5"),
    )
    assert invalid.status_code == 422

    assert client.delete(f"/classrooms/{cid}", headers=_as("someone")).status_code == 403
    assert client.delete(f"/classrooms/{cid}", headers=_as("teacher-5")).status_code == 204
    assert client.get(f"/classrooms/{cid}/sessions", headers=_as("teacher-5")).status_code == 404


def test_open_question_stream_pushes_changes(client, manager, classroom, api_session, teacher_id):
    question = manager.add_question(teacher_id, classroom.id, api_session["id"], "Streamed?")

    with client.websocket_connect("/users/student-2/open-questions/stream", headers=_as("student-2")) as ws:
        assert ws.receive_json() == {"open_questions": []}

        manager.toggle_question_visibility(teacher_id, classroom.id, api_session["id"], question.id, True)
        pushed = ws.receive_json()["open_questions"]
        assert [q["question_id"] for q in pushed] == [question.id]
        assert pushed[0]["course_label"] == "CS101 Intro to Programming"

        manager.toggle_question_visibility(teacher_id, classroom.id, api_session["id"], question.id, False)
        assert ws.receive_json() == {"open_questions": []}


def test_stream_rejects_other_users(client, classroom):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/users/student-2/open-questions/stream", headers=_as("student-1")) as ws:
            ws.receive_json()


def test_teacher_views_are_limited_to_the_owner(client, classroom, api_session, teacher_id, make_user):
    make_user("outsider", "Outside Student", "20240001")
    base = f"/classrooms/{classroom.id}/sessions/{api_session['id']}"
    client.put(f"{base}/state", json={"state": 1}, headers=_as(teacher_id))
    hidden = client.post(f"{base}/questions", json={"text": "Quiz answer is 42"}, headers=_as(teacher_id)).json()
    shown = client.post(f"{base}/questions", json={"text": "Warm-up"}, headers=_as(teacher_id)).json()
    client.put(f"{base}/questions/{shown['id']}/visibility", json={"visible": True}, headers=_as(teacher_id))
    client.post(f"{base}/questions/{shown['id']}/answers", json={"text": "Ready"}, headers=_as("student-1"))

    assert client.get(f"{base}/attendance", headers=_as("student-2")).status_code == 403
    assert client.get(f"/classrooms/{classroom.id}/totals", headers=_as("student-2")).status_code == 403
    named = client.get(f"{base}/questions/{shown['id']}/answers?guest=false", headers=_as("student-2"))
    assert named.status_code == 403

    as_student = client.get(f"{base}/questions", headers=_as("student-2")).json()
    assert [q["id"] for q in as_student] == [shown["id"]]
    as_owner = client.get(f"{base}/questions", headers=_as(teacher_id)).json()
    assert {q["id"] for q in as_owner} == {hidden["id"], shown["id"]}

    guest_view = client.get(f"{base}/questions/{shown['id']}/answers", headers=_as("student-2")).json()
    assert [a["display_name"] for a in guest_view] != ["Kim Minji"]
    owner_view = client.get(f"{base}/questions/{shown['id']}/answers?guest=false", headers=_as(teacher_id)).json()
    assert [a["display_name"] for a in owner_view] == ["Kim Minji"]

    outsider = client.post(f"{base}/attendance", json={"code": "ABC1"}, headers=_as("outsider"))
    assert outsider.status_code == 403
    answer = client.post(f"{base}/questions/{shown['id']}/answers", json={"text": "Hi"}, headers=_as("outsider"))
    assert answer.status_code == 403
