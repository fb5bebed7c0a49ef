"""FastAPI server that exposes the check-in operations to web and mobile clients.

The acting user is taken from the ``X-User-Id`` header; verifying that identity
belongs to the sign-in provider in front of this service.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from threading import Thread
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
import uvicorn

from checkin_app.constants.about import APP_NAME, APP_VERSION
from checkin_app.constants.checkin_constants import DEFAULT_ATTEND_SCORE, DEFAULT_LATE_SCORE
from checkin_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from checkin_app.core.checkin_manager import CheckinManager
from checkin_app.core.errors import (
    AlreadyEnrolled,
    CheckinError,
    CodeMismatch,
    NotFound,
    SessionClosed,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
)
from checkin_app.core.markdown_renderer import renderer
from checkin_app.core.models import (
    AttendanceRecord,
    CheckinSession,
    Classroom,
    OpenQuestion,
    Question,
    SessionState,
)
from checkin_app.core.qr_payload import QrKind
from checkin_app.core.services.answer_channel import AnswerView

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

_STATUS_BY_ERROR: list[tuple[type[CheckinError], int]] = [
    (Unauthorized, 403),
    (NotFound, 404),
    (SessionClosed, 409),
    (CodeMismatch, 409),
    (AlreadyEnrolled, 409),
    (ValidationError, 422),
    (StoreUnavailable, 503),
]


def _http_error(exc: CheckinError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _current_user(x_user_id: str | None = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"{USER_HEADER} header is required.")
    return user_id


def _require_self(actor_id: str, uid: str) -> None:
    if actor_id != uid:
        raise HTTPException(status_code=403, detail="Users may only read their own data.")


# --- Payloads ---


class ClassroomPayload(BaseModel):
    """Payload schema for creating a classroom."""

    code: str
    name: str
    room: str = ""
    attend_score: float = DEFAULT_ATTEND_SCORE
    late_score: float = DEFAULT_LATE_SCORE


class ScoresPayload(BaseModel):
    attend_score: float
    late_score: float


class SessionPayload(BaseModel):
    """Payload schema for creating a check-in session."""

    code: str
    scheduled_at: datetime


class SessionStatePayload(BaseModel):
    state: SessionState


class AttendancePayload(BaseModel):
    """Payload schema for a student's check-in."""

    code: str
    remark: str | None = None


class AttendanceEditPayload(BaseModel):
    """Payload schema for a teacher edit; exactly one of the fields is applied."""

    field: str = Field(pattern="^(score|remark)$")
    value: Any


class QuestionPayload(BaseModel):
    text: str


class VisibilityPayload(BaseModel):
    visible: bool


class AnswerPayload(BaseModel):
    text: str


class QrPayloadBody(BaseModel):
    payload: str


# --- Serialization ---


def _classroom_json(classroom: Classroom) -> dict[str, object]:
    return {
        "id": classroom.id,
        "owner_id": classroom.owner_id,
        "code": classroom.code,
        "name": classroom.name,
        "room": classroom.room,
        "attend_score": classroom.attend_score,
        "late_score": classroom.late_score,
    }


def _session_json(session: CheckinSession) -> dict[str, object]:
    return {
        "id": session.id,
        "classroom_id": session.classroom_id,
        "code": session.code,
        "scheduled_at": session.scheduled_at.isoformat() if session.scheduled_at else None,
        "state": session.state.name,
    }


def _record_json(record: AttendanceRecord) -> dict[str, object]:
    return {
        "student_id": record.student_id,
        "student_display_id": record.student_display_id,
        "name": record.name,
        "submitted_at": record.submitted_at.isoformat() if record.submitted_at else None,
        "awarded_score": record.awarded_score,
        "remark": record.remark,
        "attendance_state": record.attendance_state.name,
    }


def _question_json(question: Question) -> dict[str, object]:
    return {
        "id": question.id,
        "sequence_no": question.sequence_no,
        "text": question.text,
        "question_html": renderer.render_fragment(question.text),
        "visible": question.visible,
    }


def _open_question_json(entry: OpenQuestion) -> dict[str, object]:
    return {
        "classroom_id": entry.classroom_id,
        "session_id": entry.session_id,
        "question_id": entry.question_id,
        "course_label": entry.course_label,
        "question_text": entry.question_text,
        "question_html": renderer.render_fragment(entry.question_text),
        "sequence_no": entry.sequence_no,
    }


def _answer_json(view: AnswerView) -> dict[str, object]:
    return {
        "id": view.answer.id,
        "display_name": view.display_name,
        "text": view.answer.text,
        "submitted_at": view.answer.submitted_at.isoformat(),
    }


def _get_checkin_manager_dependency(checkin_manager: CheckinManager):
    def dependency() -> CheckinManager:
        return checkin_manager

    return dependency


async def _drain_client(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


def create_api_app(checkin_manager: CheckinManager) -> FastAPI:
    """Create a FastAPI application wired to the provided check-in manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    manager_dep = _get_checkin_manager_dependency(checkin_manager)

    # --- Classrooms ---

    @app.post("/classrooms", status_code=201)
    def create_classroom(
        payload: ClassroomPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            classroom = manager.create_classroom(
                actor,
                payload.code,
                payload.name,
                payload.room,
                attend_score=payload.attend_score,
                late_score=payload.late_score,
            )
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _classroom_json(classroom)

    @app.patch("/classrooms/{cid}/scores")
    def update_scores(
        cid: str,
        payload: ScoresPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            classroom = manager.update_classroom_scores(actor, cid, payload.attend_score, payload.late_score)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _classroom_json(classroom)

    @app.delete("/classrooms/{cid}", status_code=204)
    def delete_classroom(
        cid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> None:
        try:
            manager.delete_classroom(actor, cid)
        except CheckinError as exc:
            raise _http_error(exc) from exc

    @app.post("/classrooms/{cid}/join", status_code=201)
    def join_classroom(
        cid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            classroom = manager.join_classroom(actor, cid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _classroom_json(classroom)

    @app.get("/classrooms/{cid}/students")
    def list_members(
        cid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            members = manager.list_members(cid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [
            {"student_id": m.id, "student_display_id": m.student_display_id, "name": m.name}
            for m in members
        ]

    @app.delete("/classrooms/{cid}/students/{uid}", status_code=204)
    def remove_student(
        cid: str,
        uid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> None:
        try:
            manager.remove_student(actor, cid, uid)
        except CheckinError as exc:
            raise _http_error(exc) from exc

    @app.get("/classrooms/{cid}/totals")
    def student_totals(
        cid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            totals = manager.view_student_totals(actor, cid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [
            {
                "student_id": t.student_id,
                "student_display_id": t.student_display_id,
                "name": t.name,
                "total_score": t.total_score,
            }
            for t in totals
        ]

    # --- Sessions ---

    @app.post("/classrooms/{cid}/sessions", status_code=201)
    def create_session(
        cid: str,
        payload: SessionPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            session = manager.create_session(actor, cid, payload.code, payload.scheduled_at)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _session_json(session)

    @app.get("/classrooms/{cid}/sessions")
    def list_sessions(
        cid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            summaries = manager.get_attendance_summary(cid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [{**_session_json(s.session), "attending": s.attending} for s in summaries]

    @app.put("/classrooms/{cid}/sessions/{sid}/state")
    def set_session_state(
        cid: str,
        sid: str,
        payload: SessionStatePayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            session = manager.set_session_state(actor, cid, sid, payload.state)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _session_json(session)

    @app.delete("/classrooms/{cid}/sessions/{sid}", status_code=204)
    def delete_session(
        cid: str,
        sid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> None:
        try:
            manager.delete_session(actor, cid, sid)
        except CheckinError as exc:
            raise _http_error(exc) from exc

    # --- Attendance ---

    @app.post("/classrooms/{cid}/sessions/{sid}/attendance", status_code=201)
    def submit_attendance(
        cid: str,
        sid: str,
        payload: AttendancePayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            record = manager.submit_attendance(cid, sid, actor, payload.code, payload.remark)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _record_json(record)

    @app.get("/classrooms/{cid}/sessions/{sid}/attendance")
    def get_roster(
        cid: str,
        sid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            roster = manager.view_roster(actor, cid, sid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_record_json(record) for record in roster]

    @app.patch("/classrooms/{cid}/sessions/{sid}/attendance/{uid}")
    def update_attendance(
        cid: str,
        sid: str,
        uid: str,
        payload: AttendanceEditPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            record = manager.update_attendance_field(actor, cid, sid, uid, payload.field, payload.value)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _record_json(record)

    # --- Questions ---

    @app.post("/classrooms/{cid}/sessions/{sid}/questions", status_code=201)
    def add_question(
        cid: str,
        sid: str,
        payload: QuestionPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            question = manager.add_question(actor, cid, sid, payload.text)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _question_json(question)

    @app.get("/classrooms/{cid}/sessions/{sid}/questions")
    def list_questions(
        cid: str,
        sid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            questions = manager.view_questions(actor, cid, sid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_question_json(question) for question in questions]

    @app.get("/classrooms/{cid}/sessions/{sid}/questions/{qid}/page", response_class=HTMLResponse)
    def question_page(
        cid: str,
        sid: str,
        qid: str,
        manager: CheckinManager = Depends(manager_dep),
    ) -> str:
        try:
            question = manager.get_question(cid, sid, qid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return renderer.render_full_document(question.text, title=f"{APP_NAME} #{question.sequence_no}")

    @app.put("/classrooms/{cid}/sessions/{sid}/questions/{qid}/visibility")
    def set_visibility(
        cid: str,
        sid: str,
        qid: str,
        payload: VisibilityPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            question = manager.toggle_question_visibility(actor, cid, sid, qid, payload.visible)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return _question_json(question)

    @app.delete("/classrooms/{cid}/sessions/{sid}/questions/{qid}")
    def delete_question(
        cid: str,
        sid: str,
        qid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            remaining = manager.delete_question(actor, cid, sid, qid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_question_json(question) for question in remaining]

    # --- Answers ---

    @app.post("/classrooms/{cid}/sessions/{sid}/questions/{qid}/answers", status_code=201)
    def submit_answer(
        cid: str,
        sid: str,
        qid: str,
        payload: AnswerPayload,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            answer = manager.submit_answer(cid, sid, qid, actor, payload.text)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return {"id": answer.id, "submitted_at": answer.submitted_at.isoformat()}

    @app.get("/classrooms/{cid}/sessions/{sid}/questions/{qid}/answers")
    def list_answers(
        cid: str,
        sid: str,
        qid: str,
        guest: bool = True,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        try:
            answers = manager.view_answers(actor, cid, sid, qid, guest_mode=guest)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_answer_json(view) for view in answers]

    # --- Users ---

    @app.get("/users/{uid}/classrooms")
    def reconcile_classrooms(
        uid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        _require_self(actor, uid)
        try:
            classrooms = manager.reconcile_enrollment(uid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_classroom_json(classroom) for classroom in classrooms]

    @app.get("/users/{uid}/open-questions")
    def open_questions(
        uid: str,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        _require_self(actor, uid)
        try:
            entries = manager.snapshot_open_questions(uid)
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return [_open_question_json(entry) for entry in entries]

    @app.websocket("/users/{uid}/open-questions/stream")
    async def stream_open_questions(websocket: WebSocket, uid: str) -> None:
        if (websocket.headers.get(USER_HEADER) or "").strip() != uid:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.accept()

        loop = asyncio.get_running_loop()
        updates: asyncio.Queue[list[dict[str, object]]] = asyncio.Queue()

        def push(entries: list[OpenQuestion]) -> None:
            payload = [_open_question_json(entry) for entry in entries]
            loop.call_soon_threadsafe(updates.put_nowait, payload)

        handle = await run_in_threadpool(checkin_manager.observe_open_questions, uid, push)
        receiver = asyncio.create_task(_drain_client(websocket))
        try:
            while True:
                getter = asyncio.create_task(updates.get())
                done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break
                await websocket.send_json({"open_questions": getter.result()})
        finally:
            receiver.cancel()
            handle.cancel()
            logger.info("Open-question stream for user %s closed", uid)

    # --- QR codes ---

    @app.post("/qr/resolve")
    def resolve_qr(
        payload: QrPayloadBody,
        actor: str = Depends(_current_user),
        manager: CheckinManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            decoded = manager.resolve_qr_payload(payload.payload)
            result: dict[str, object] = {"kind": decoded.kind.value, "target_id": decoded.target_id}
            if decoded.kind is QrKind.SESSION:
                session = manager.locate_session(actor, decoded.target_id)
                result["session"] = _session_json(session)
            else:
                result["classroom"] = _classroom_json(manager.get_classroom(decoded.target_id))
        except CheckinError as exc:
            raise _http_error(exc) from exc
        return result

    return app


def start_api_server(
    checkin_manager: CheckinManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(checkin_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="CheckinApiServer", daemon=True)
    thread.start()
    return thread
