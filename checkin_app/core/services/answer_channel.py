"""Service for the chat-style answers students post under a broadcast question."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from checkin_app.core.errors import NotFound, Unauthorized
from checkin_app.core.models import Answer, UserProfile, now_utc
from checkin_app.core.name_assigner import NameAssigner
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentSnapshot, DocumentStore, Subscription

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AnswerView:
    """Answer as shown in the feed; ``display_name`` is an alias in guest mode."""

    answer: Answer
    display_name: str


AnswersCallback = Callable[[list[AnswerView]], None]


class AnswerChannel:
    """Append-only answer feed of one question, ordered by submission time."""

    def __init__(self, store: DocumentStore, aliases: NameAssigner | None = None) -> None:
        self._store = store
        self._aliases = aliases or NameAssigner.from_default_names()

    def submit_answer(self, cid: str, sid: str, qid: str, student_id: str, text: str) -> Answer:
        if self._store.get(paths.question_path(cid, sid, qid)) is None:
            raise NotFound(f"Question {qid} does not exist in check-in {sid}.")
        if not self._store.exists(paths.member_path(cid, student_id)):
            raise Unauthorized(f"User {student_id} is not enrolled in classroom {cid}.")
        profile_data = self._store.get(paths.user_path(student_id))
        if profile_data is None:
            raise NotFound(f"Student profile {student_id} does not exist.")
        profile = UserProfile.from_document(student_id, profile_data)

        answer = Answer(
            id="",
            student_id=student_id,
            student_display_id=profile.student_display_id,
            author_name=profile.name,
            text=text,
            submitted_at=now_utc(),
        )
        answer.id = self._store.add(paths.answers_collection(cid, sid, qid), answer.to_document())
        logger.debug("Answer %s posted to question %s by %s", answer.id, qid, student_id)
        return answer

    def list_answers(self, cid: str, sid: str, qid: str, guest_mode: bool = True) -> list[AnswerView]:
        snapshots = self._store.scan(paths.answers_collection(cid, sid, qid), order_by="time")
        return self._to_views(snapshots, guest_mode)

    def observe_answers(
        self,
        cid: str,
        sid: str,
        qid: str,
        on_change: AnswersCallback,
        guest_mode: bool = True,
    ) -> Subscription:
        def on_snapshot(snapshots: list[DocumentSnapshot]) -> None:
            on_change(self._to_views(snapshots, guest_mode))

        return self._store.subscribe_collection(
            paths.answers_collection(cid, sid, qid), on_snapshot, order_by="time"
        )

    def _to_views(self, snapshots: list[DocumentSnapshot], guest_mode: bool) -> list[AnswerView]:
        views = []
        for snapshot in snapshots:
            answer = Answer.from_document(snapshot.id, snapshot.data)
            if guest_mode:
                display_name = self._aliases.alias_for(answer.student_id or answer.student_display_id)
            else:
                display_name = answer.author_name
            views.append(AnswerView(answer=answer, display_name=display_name))
        views.sort(key=lambda view: view.answer.submitted_at)
        return views
