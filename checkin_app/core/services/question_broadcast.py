"""Service for the questions a teacher broadcasts during a session.

Exclusivity ("one visible question per session") is eventually consistent:
the store has no multi-document transaction, so showing a question is a batch
of independent writes issued in parallel. Readers may briefly observe two
visible questions; :func:`pick_broadcast_question` resolves that window by
preferring the highest sequence number.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
from typing import Iterable

from checkin_app.core.errors import NotFound, StoreUnavailable, ValidationError
from checkin_app.core.models import Question
from checkin_app.core.services.cascade import delete_question_tree
from checkin_app.core.services.classroom_registry import ClassroomRegistry
from checkin_app.core.services.session_state_machine import SessionStateMachine
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)

_MAX_PARALLEL_WRITES = 8


def pick_broadcast_question(questions: Iterable[Question]) -> Question | None:
    """Return the question to present when several are marked visible."""
    visible = [question for question in questions if question.visible]
    if not visible:
        return None
    return max(visible, key=lambda q: (q.sequence_no, q.id))


class QuestionBroadcastManager:
    """Adds, shows, hides and deletes the questions of a session."""

    def __init__(
        self,
        store: DocumentStore,
        classrooms: ClassroomRegistry,
        sessions: SessionStateMachine,
    ) -> None:
        self._store = store
        self._classrooms = classrooms
        self._sessions = sessions

    def list_questions(self, cid: str, sid: str) -> list[Question]:
        snapshots = self._store.scan(paths.questions_collection(cid, sid))
        questions = [Question.from_document(s.id, s.data) for s in snapshots]
        return sorted(questions, key=lambda q: (q.sequence_no, q.id))

    def get_question(self, cid: str, sid: str, qid: str) -> Question:
        data = self._store.get(paths.question_path(cid, sid, qid))
        if data is None:
            raise NotFound(f"Question {qid} does not exist in check-in {sid}.")
        return Question.from_document(qid, data)

    def add_question(self, actor_id: str, cid: str, sid: str, text: str) -> Question:
        self._classrooms.require_owner(actor_id, cid)
        self._sessions.get_session(cid, sid)
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("Question text must not be empty.")

        existing = self.list_questions(cid, sid)
        next_no = max((q.sequence_no for q in existing), default=0) + 1
        question = Question(id="", sequence_no=next_no, text=cleaned, visible=False)
        question.id = self._store.add(paths.questions_collection(cid, sid), question.to_document())
        logger.info("Question %s (#%d) added to %s/%s", question.id, next_no, cid, sid)
        return question

    def set_visible(self, actor_id: str, cid: str, sid: str, qid: str, visible: bool) -> Question:
        """Show or hide a question.

        Showing hides every other question of the session first. All writes are
        attempted even when some fail; failures are reported together as one
        :class:`StoreUnavailable` and the caller must not assume all-or-nothing.
        """
        self._classrooms.require_owner(actor_id, cid)
        target = self.get_question(cid, sid, qid)

        if not visible:
            self._store.set(paths.question_path(cid, sid, qid), {"question_show": False}, merge=True)
            target.visible = False
            logger.info("Question %s hidden in %s/%s", qid, cid, sid)
            return target

        writes = [(q.id, False) for q in self.list_questions(cid, sid) if q.id != qid]
        writes.append((qid, True))
        failed = self._write_visibility(cid, sid, writes)
        if failed:
            raise StoreUnavailable(
                f"Visibility update incomplete for question(s) {', '.join(sorted(failed))}."
            )
        target.visible = True
        logger.info("Question %s broadcast in %s/%s (%d others hidden)", qid, cid, sid, len(writes) - 1)
        return target

    def delete_question(self, actor_id: str, cid: str, sid: str, qid: str) -> list[Question]:
        """Delete a question and compact the remaining sequence numbers to 1..N."""
        self._classrooms.require_owner(actor_id, cid)
        self.get_question(cid, sid, qid)
        delete_question_tree(self._store, cid, sid, qid)

        remaining = self.list_questions(cid, sid)
        for position, question in enumerate(remaining, start=1):
            if question.sequence_no != position:
                self._store.set(
                    paths.question_path(cid, sid, question.id),
                    {"question_no": position},
                    merge=True,
                )
                question.sequence_no = position
        logger.info("Question %s deleted from %s/%s; %d renumbered", qid, cid, sid, len(remaining))
        return remaining

    def current_broadcast(self, cid: str, sid: str) -> Question | None:
        return pick_broadcast_question(self.list_questions(cid, sid))

    def _write_visibility(self, cid: str, sid: str, writes: list[tuple[str, bool]]) -> list[str]:
        failed: list[str] = []
        workers = max(1, min(_MAX_PARALLEL_WRITES, len(writes)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="QuestionVisibility") as pool:
            futures = {
                pool.submit(
                    self._store.set,
                    paths.question_path(cid, sid, question_id),
                    {"question_show": flag},
                    True,
                ): question_id
                for question_id, flag in writes
            }
            for future in as_completed(futures):
                exc = future.exception()
                if exc is None:
                    continue
                if not isinstance(exc, StoreUnavailable):
                    raise exc
                logger.warning("Visibility write for question %s failed: %s", futures[future], exc)
                failed.append(futures[future])
        return failed
