"""Service for creating classrooms and checking ownership."""

from __future__ import annotations

import logging

from checkin_app.constants.checkin_constants import DEFAULT_ATTEND_SCORE, DEFAULT_LATE_SCORE
from checkin_app.core.errors import NotFound, Unauthorized, ValidationError
from checkin_app.core.models import Classroom, EnrollmentRole, validate_scores
from checkin_app.core.services.cascade import delete_classroom_tree
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)


class ClassroomRegistry:
    """Manages classroom documents and their score configuration."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def create_classroom(
        self,
        owner_id: str,
        code: str,
        name: str,
        room: str = "",
        attend_score: float = DEFAULT_ATTEND_SCORE,
        late_score: float = DEFAULT_LATE_SCORE,
    ) -> Classroom:
        """Create a classroom and record the owner's enrollment."""
        if not owner_id:
            raise Unauthorized("Creating a classroom requires a signed-in user.")
        cleaned_code = (code or "").strip()
        cleaned_name = (name or "").strip()
        if not cleaned_code or not cleaned_name:
            raise ValidationError("Classroom code and name are required.")

        draft = Classroom(
            id="",
            owner_id=owner_id,
            code=cleaned_code,
            name=cleaned_name,
            room=(room or "").strip(),
            attend_score=attend_score,
            late_score=late_score,
        )
        cid = self._store.add(paths.classrooms_collection(), draft.to_document())
        self._store.set(
            paths.user_path(owner_id),
            {"classroom": {cid: {"status": int(EnrollmentRole.OWNER)}}},
            merge=True,
        )
        draft.id = cid
        logger.info("Classroom %s (%s) created by %s", cid, draft.course_label, owner_id)
        return draft

    def get_classroom(self, cid: str) -> Classroom:
        data = self._store.get(paths.classroom_path(cid))
        if data is None:
            raise NotFound(f"Classroom {cid} does not exist.")
        return Classroom.from_document(cid, data)

    def require_owner(self, actor_id: str, cid: str) -> Classroom:
        """Return the classroom if ``actor_id`` owns it, otherwise raise."""
        classroom = self.get_classroom(cid)
        if not actor_id or classroom.owner_id != actor_id:
            raise Unauthorized(f"User {actor_id or '<anonymous>'} does not own classroom {cid}.")
        return classroom

    def update_scores(self, actor_id: str, cid: str, attend_score: float, late_score: float) -> Classroom:
        classroom = self.require_owner(actor_id, cid)
        validate_scores(attend_score, late_score)
        self._store.set(
            paths.classroom_path(cid),
            {"info": {"score": attend_score, "score_late": late_score}},
            merge=True,
        )
        classroom.attend_score = attend_score
        classroom.late_score = late_score
        logger.info("Classroom %s scores set to %s/%s", cid, attend_score, late_score)
        return classroom

    def delete_classroom(self, actor_id: str, cid: str) -> None:
        """Delete a classroom with all of its sessions, records and questions.

        Students keep the stale entry in their cached enrollment map until the
        enrollment reconciler drops it on their next load.
        """
        self.require_owner(actor_id, cid)
        delete_classroom_tree(self._store, cid)
        self._store.delete_field(paths.user_path(actor_id), f"classroom.{cid}")
        logger.info("Classroom %s deleted by %s", cid, actor_id)
