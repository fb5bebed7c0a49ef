"""Document paths used by the check-in core."""

from __future__ import annotations

from checkin_app.constants.checkin_constants import (
    ANSWERS_COLLECTION,
    CLASSROOM_COLLECTION,
    MEMBERS_COLLECTION,
    QUESTIONS_COLLECTION,
    RECORDS_COLLECTION,
    SESSIONS_COLLECTION,
    USERS_COLLECTION,
)


def join(*segments: str) -> str:
    cleaned = [str(segment).strip("/") for segment in segments]
    if any(not segment for segment in cleaned):
        raise ValueError(f"Path segments must not be empty: {segments!r}")
    return "/".join(cleaned)


def split(path: str) -> list[str]:
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Path must not be empty.")
    return segments


def is_document_path(path: str) -> bool:
    return len(split(path)) % 2 == 0


def parent_collection(document_path: str) -> str:
    segments = split(document_path)
    if len(segments) % 2:
        raise ValueError(f"{document_path!r} is not a document path.")
    return "/".join(segments[:-1])


def document_id(document_path: str) -> str:
    return split(document_path)[-1]


def user_path(uid: str) -> str:
    return join(USERS_COLLECTION, uid)


def classroom_path(cid: str) -> str:
    return join(CLASSROOM_COLLECTION, cid)


def classrooms_collection() -> str:
    return CLASSROOM_COLLECTION


def members_collection(cid: str) -> str:
    return join(CLASSROOM_COLLECTION, cid, MEMBERS_COLLECTION)


def member_path(cid: str, uid: str) -> str:
    return join(members_collection(cid), uid)


def sessions_collection(cid: str) -> str:
    return join(CLASSROOM_COLLECTION, cid, SESSIONS_COLLECTION)


def session_path(cid: str, sid: str) -> str:
    return join(sessions_collection(cid), sid)


def records_collection(cid: str, sid: str) -> str:
    return join(session_path(cid, sid), RECORDS_COLLECTION)


def record_path(cid: str, sid: str, uid: str) -> str:
    return join(records_collection(cid, sid), uid)


def questions_collection(cid: str, sid: str) -> str:
    return join(session_path(cid, sid), QUESTIONS_COLLECTION)


def question_path(cid: str, sid: str, qid: str) -> str:
    return join(questions_collection(cid, sid), qid)


def answers_collection(cid: str, sid: str, qid: str) -> str:
    return join(question_path(cid, sid, qid), ANSWERS_COLLECTION)
