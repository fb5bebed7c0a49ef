"""Student-side discovery of broadcast questions across all enrolled classrooms.

The cascade keeps a subscription tree shaped like the data:

    users/{uid}
      └─ classroom/{cid}            (course label)
         └─ classroom/{cid}/checkin (session collection)
            └─ .../checkin/{sid}/question

Each question snapshot replaces the entry for its ``(cid, sid)`` pair, so a
hidden or deleted question disappears on the next snapshot. When a classroom
leaves the enrollment map, or a session leaves its collection, the matching
subtree is cancelled and its entries dropped.
"""

from __future__ import annotations

import logging
from threading import Lock, RLock
from typing import Callable

from checkin_app.core.errors import NotFound
from checkin_app.core.models import OpenQuestion, Question, UserProfile
from checkin_app.core.services.question_broadcast import pick_broadcast_question
from checkin_app.core.services.subscription_manager import (
    SubscriptionHandle,
    SubscriptionManager,
    SubscriptionScope,
)
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentSnapshot, DocumentStore

logger = logging.getLogger(__name__)

OpenQuestionsCallback = Callable[[list[OpenQuestion]], None]


def _course_label(data: dict | None) -> str | None:
    if data is None:
        return None
    info = data.get("info") or {}
    return f"{info.get('code', '')} {info.get('name', '')}".strip()


class _OpenQuestionTracker:
    """Working set of one observation; publishes only when the list changes."""

    def __init__(self, on_change: OpenQuestionsCallback) -> None:
        self._lock = Lock()
        # Orders emissions across writer threads; re-entrant for callbacks that write.
        self._emit_lock = RLock()
        self._on_change = on_change
        self._labels: dict[str, str | None] = {}
        self._questions: dict[tuple[str, str], Question] = {}
        self._published: list[OpenQuestion] | None = None
        self._started = False

    def set_label(self, cid: str, label: str | None) -> None:
        with self._lock:
            self._labels[cid] = label

    def replace(self, cid: str, sid: str, questions: list[Question], handle: SubscriptionHandle) -> None:
        with self._lock:
            if handle.cancelled:
                return
            chosen = pick_broadcast_question(questions)
            if chosen is None:
                self._questions.pop((cid, sid), None)
            else:
                self._questions[(cid, sid)] = chosen

    def drop_session(self, cid: str, sid: str) -> None:
        with self._lock:
            self._questions.pop((cid, sid), None)

    def drop_classroom(self, cid: str) -> None:
        with self._lock:
            self._labels.pop(cid, None)
            for key in [key for key in self._questions if key[0] == cid]:
                del self._questions[key]

    def start(self) -> None:
        """Begin publishing; the first call carries the fully replayed state."""
        with self._lock:
            self._started = True
        self.publish()

    def publish(self) -> None:
        with self._emit_lock:
            with self._lock:
                if not self._started:
                    return
                current = self._build_locked()
                if current == self._published:
                    return
                self._published = current
            self._on_change(list(current))

    def current(self) -> list[OpenQuestion]:
        with self._lock:
            return self._build_locked()

    def _build_locked(self) -> list[OpenQuestion]:
        entries: list[OpenQuestion] = []
        for (cid, sid), question in self._questions.items():
            label = self._labels.get(cid)
            if label is None:
                # Classroom document missing or not loaded yet.
                continue
            entries.append(
                OpenQuestion(
                    classroom_id=cid,
                    session_id=sid,
                    question_id=question.id,
                    course_label=label,
                    question_text=question.text,
                    sequence_no=question.sequence_no,
                )
            )
        entries.sort(key=lambda q: (q.course_label, q.classroom_id, q.session_id))
        return entries


class QuestionDiscoveryCascade:
    """Watches every classroom a user belongs to for broadcast questions."""

    def __init__(self, store: DocumentStore, subscriptions: SubscriptionManager | None = None) -> None:
        self._store = store
        self._subscriptions = subscriptions or SubscriptionManager()

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    def observe_open_questions(self, user_id: str, on_change: OpenQuestionsCallback) -> SubscriptionHandle:
        """Push the user's open questions to ``on_change`` until the handle is cancelled.

        The first call happens during subscription with the current state;
        later calls happen whenever the list changes.
        """
        tracker = _OpenQuestionTracker(on_change)
        root = self._subscriptions.open_root(SubscriptionScope.USER, f"open-questions:{user_id}")

        def on_user(snapshot: DocumentSnapshot) -> None:
            if root.cancelled:
                return
            enrolled: set[str] = set()
            if snapshot.exists:
                enrolled = set(UserProfile.from_document(user_id, snapshot.data).enrollments)
            tracked = root.child_keys()
            for cid in tracked - enrolled:
                self._stop_classroom(root, tracker, cid)
            for cid in sorted(enrolled - tracked):
                self._watch_classroom(root, tracker, cid)
            tracker.publish()

        root.attach(self._store.subscribe(paths.user_path(user_id), on_user))
        tracker.start()
        logger.info("Watching open questions for user %s", user_id)
        return root

    def snapshot_open_questions(self, user_id: str) -> list[OpenQuestion]:
        """One-shot scan of the same data the live cascade watches."""
        data = self._store.get(paths.user_path(user_id))
        if data is None:
            raise NotFound(f"User {user_id} does not exist.")
        results: list[OpenQuestion] = []
        for cid in UserProfile.from_document(user_id, data).enrollments:
            label = _course_label(self._store.get(paths.classroom_path(cid)))
            if label is None:
                continue
            for session in self._store.scan(paths.sessions_collection(cid)):
                snapshots = self._store.scan(paths.questions_collection(cid, session.id))
                chosen = pick_broadcast_question(Question.from_document(s.id, s.data) for s in snapshots)
                if chosen is not None:
                    results.append(
                        OpenQuestion(
                            classroom_id=cid,
                            session_id=session.id,
                            question_id=chosen.id,
                            course_label=label,
                            question_text=chosen.text,
                            sequence_no=chosen.sequence_no,
                        )
                    )
        results.sort(key=lambda q: (q.course_label, q.classroom_id, q.session_id))
        return results

    # --- Subscription tree ---

    def _watch_classroom(self, root: SubscriptionHandle, tracker: _OpenQuestionTracker, cid: str) -> None:
        node = root.claim_child(SubscriptionScope.CLASSROOM, cid)
        if node is None:
            return
        logger.debug("Cascade: watching classroom %s", cid)

        def on_classroom(snapshot: DocumentSnapshot) -> None:
            if node.cancelled:
                return
            tracker.set_label(cid, _course_label(snapshot.data))
            tracker.publish()

        def on_sessions(snapshots: list[DocumentSnapshot]) -> None:
            if node.cancelled:
                return
            present = {snapshot.id for snapshot in snapshots}
            tracked = node.child_keys()
            for sid in tracked - present:
                self._stop_session(node, tracker, cid, sid)
            for sid in sorted(present - tracked):
                self._watch_session(node, tracker, cid, sid)
            tracker.publish()

        node.attach(self._store.subscribe(paths.classroom_path(cid), on_classroom))
        node.attach(self._store.subscribe_collection(paths.sessions_collection(cid), on_sessions))

    def _watch_session(
        self,
        classroom_node: SubscriptionHandle,
        tracker: _OpenQuestionTracker,
        cid: str,
        sid: str,
    ) -> None:
        node = classroom_node.claim_child(SubscriptionScope.SESSION, sid)
        if node is None:
            return

        def on_questions(snapshots: list[DocumentSnapshot]) -> None:
            if node.cancelled:
                return
            questions = [Question.from_document(s.id, s.data) for s in snapshots]
            tracker.replace(cid, sid, questions, node)
            tracker.publish()

        node.attach(
            self._store.subscribe_collection(
                paths.questions_collection(cid, sid), on_questions, order_by="question_no"
            )
        )

    @staticmethod
    def _stop_classroom(root: SubscriptionHandle, tracker: _OpenQuestionTracker, cid: str) -> None:
        node = root.child(cid)
        if node is not None:
            node.cancel()
        tracker.drop_classroom(cid)
        logger.debug("Cascade: stopped watching classroom %s", cid)

    @staticmethod
    def _stop_session(
        classroom_node: SubscriptionHandle,
        tracker: _OpenQuestionTracker,
        cid: str,
        sid: str,
    ) -> None:
        node = classroom_node.child(sid)
        if node is not None:
            node.cancel()
        tracker.drop_session(cid, sid)
