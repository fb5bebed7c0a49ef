"""Services for classroom membership and the cached enrollment map.

Membership lives in two places: ``classroom/{cid}/students/{uid}`` is the
source of truth, ``users/{uid}.classroom`` is a cache read by every screen.
Reconciliation only ever removes cache entries; re-adding a membership is a
privileged action and never happens from the read path.
"""

from __future__ import annotations

import logging

from checkin_app.core.errors import AlreadyEnrolled, NotFound, ValidationError
from checkin_app.core.models import Classroom, EnrollmentRole, UserProfile
from checkin_app.core.services.classroom_registry import ClassroomRegistry
from checkin_app.core.store import paths
from checkin_app.core.store.base import DocumentStore

logger = logging.getLogger(__name__)


def _load_profile(store: DocumentStore, user_id: str) -> UserProfile:
    data = store.get(paths.user_path(user_id))
    if data is None:
        raise NotFound(f"User {user_id} does not exist.")
    return UserProfile.from_document(user_id, data)


class EnrollmentReconciler:
    """Heals the cached enrollment map against the membership documents."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def reconcile(self, user_id: str) -> list[Classroom]:
        """Return the classrooms the user still belongs to, pruning stale cache entries."""
        profile = _load_profile(self._store, user_id)
        classrooms: list[Classroom] = []
        for cid, role in profile.enrollments.items():
            classroom_data = self._store.get(paths.classroom_path(cid))
            if classroom_data is None:
                self._prune(user_id, cid, "classroom no longer exists")
                continue
            classroom = Classroom.from_document(cid, classroom_data)
            if role is EnrollmentRole.OWNER:
                # Owners have no membership document; ownership is on the classroom.
                if classroom.owner_id != user_id:
                    self._prune(user_id, cid, "user is not the owner")
                    continue
            elif not self._store.exists(paths.member_path(cid, user_id)):
                self._prune(user_id, cid, "membership document missing")
                continue
            classrooms.append(classroom)
        return classrooms

    def _prune(self, user_id: str, cid: str, reason: str) -> None:
        self._store.delete_field(paths.user_path(user_id), f"classroom.{cid}")
        logger.info("Removed stale enrollment %s from user %s (%s)", cid, user_id, reason)


class EnrollmentService:
    """Joins students to classrooms and removes them again."""

    def __init__(self, store: DocumentStore, classrooms: ClassroomRegistry) -> None:
        self._store = store
        self._classrooms = classrooms

    def join_classroom(self, user_id: str, cid: str) -> Classroom:
        classroom = self._classrooms.get_classroom(cid)
        profile = _load_profile(self._store, user_id)
        if not profile.student_display_id:
            raise ValidationError("Student id is missing from the profile.")
        if classroom.owner_id == user_id:
            raise AlreadyEnrolled(f"User {user_id} owns classroom {cid}.")
        if self._store.exists(paths.member_path(cid, user_id)):
            raise AlreadyEnrolled(f"User {user_id} is already enrolled in classroom {cid}.")

        self._store.set(
            paths.member_path(cid, user_id),
            {"stdid": profile.student_display_id, "name": profile.name, "status": 1},
        )
        self._store.set(
            paths.user_path(user_id),
            {"classroom": {cid: {"status": int(EnrollmentRole.STUDENT)}}},
            merge=True,
        )
        logger.info("User %s joined classroom %s", user_id, cid)
        return classroom

    def remove_student(self, actor_id: str, cid: str, student_id: str) -> None:
        """Remove a membership; the student's cache is healed on their next load."""
        self._classrooms.require_owner(actor_id, cid)
        if not self._store.exists(paths.member_path(cid, student_id)):
            raise NotFound(f"User {student_id} is not enrolled in classroom {cid}.")
        self._store.delete(paths.member_path(cid, student_id))
        logger.info("User %s removed from classroom %s by %s", student_id, cid, actor_id)

    def list_members(self, cid: str) -> list[UserProfile]:
        self._classrooms.get_classroom(cid)
        members = [
            UserProfile(id=s.id, name=s.data.get("name", ""), student_display_id=str(s.data.get("stdid", "")))
            for s in self._store.scan(paths.members_collection(cid))
        ]
        return sorted(members, key=lambda m: m.student_display_id)
