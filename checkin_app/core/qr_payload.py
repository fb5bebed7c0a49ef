"""Decoding of the strings carried by classroom and check-in QR codes.

Format:

    cid<classroomId>   join the classroom
    cno<sessionId>     check in to the session

Rendering the code itself is left to the clients; only the decoded id
matters here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from checkin_app.constants.checkin_constants import QR_CLASSROOM_PREFIX, QR_SESSION_PREFIX
from checkin_app.core.errors import ValidationError


class QrKind(str, Enum):
    CLASSROOM = "classroom"
    SESSION = "session"


@dataclass(slots=True, frozen=True)
class QrPayload:
    kind: QrKind
    target_id: str


_PREFIXES = {
    QR_CLASSROOM_PREFIX: QrKind.CLASSROOM,
    QR_SESSION_PREFIX: QrKind.SESSION,
}


def parse_qr_payload(raw: str) -> QrPayload:
    text = (raw or "").strip()
    for prefix, kind in _PREFIXES.items():
        if text.startswith(prefix):
            target_id = text[len(prefix):].strip()
            if not target_id:
                raise ValidationError(f"QR payload {raw!r} has no id.")
            return QrPayload(kind=kind, target_id=target_id)
    raise ValidationError(f"QR payload {raw!r} is neither a classroom nor a check-in code.")


def encode_qr_payload(kind: QrKind, target_id: str) -> str:
    prefix = QR_CLASSROOM_PREFIX if kind is QrKind.CLASSROOM else QR_SESSION_PREFIX
    return f"{prefix}{target_id}"
