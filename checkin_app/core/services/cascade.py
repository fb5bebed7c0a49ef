"""Explicit fan-out deletes.

The store has no cascading delete, so removing a parent removes every known
child collection first. Children are deleted before their parent; a failure
part-way leaves the parent in place and can simply be retried.
"""

from __future__ import annotations

import logging

from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)


def delete_collection(store: DocumentStore, collection_path: str) -> int:
    snapshots = store.scan(collection_path)
    for snapshot in snapshots:
        store.delete(snapshot.path)
    return len(snapshots)


def delete_question_tree(store: DocumentStore, cid: str, sid: str, qid: str) -> None:
    removed = delete_collection(store, paths.answers_collection(cid, sid, qid))
    store.delete(paths.question_path(cid, sid, qid))
    logger.debug("Deleted question %s/%s/%s with %d answers", cid, sid, qid, removed)


def delete_session_tree(store: DocumentStore, cid: str, sid: str) -> None:
    for question in store.scan(paths.questions_collection(cid, sid)):
        delete_question_tree(store, cid, sid, question.id)
    records = delete_collection(store, paths.records_collection(cid, sid))
    store.delete(paths.session_path(cid, sid))
    logger.debug("Deleted session %s/%s with %d attendance records", cid, sid, records)


def delete_classroom_tree(store: DocumentStore, cid: str) -> None:
    for session in store.scan(paths.sessions_collection(cid)):
        delete_session_tree(store, cid, session.id)
    delete_collection(store, paths.members_collection(cid))
    store.delete(paths.classroom_path(cid))
