import pytest

from checkin_app.core.checkin_manager import CheckinManager
from checkin_app.core.name_assigner import NameAssigner
from checkin_app.core.store import InMemoryDocumentStore, paths

TEACHER_ID = "teacher-1"
STUDENTS = {
    "student-1": ("20230001", "Kim Minji"),
    "student-2": ("20230002", "Lee Jun"),
    "student-3": ("20230003", "Park Soo"),
}


def add_user(store, uid, name, stdid=""):
    store.set(paths.user_path(uid), {"name": name, "stdid": stdid, "classroom": {}})


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def manager(store):
    return CheckinManager(store, aliases=NameAssigner.from_default_names(seed=7))


@pytest.fixture
def teacher_id():
    return TEACHER_ID


@pytest.fixture
def student_ids():
    return list(STUDENTS)


@pytest.fixture
def make_user(store):
    def factory(uid, name, stdid=""):
        add_user(store, uid, name, stdid)
        return uid

    return factory


@pytest.fixture
def classroom(store, manager):
    add_user(store, TEACHER_ID, "Teacher Choi")
    for uid, (stdid, name) in STUDENTS.items():
        add_user(store, uid, name, stdid)
    created = manager.create_classroom(TEACHER_ID, "CS101", "Intro to Programming", room="B-204")
    for uid in STUDENTS:
        manager.join_classroom(uid, created.id)
    return created


@pytest.fixture
def session(manager, classroom):
    return manager.create_session(TEACHER_ID, classroom.id, "ABC1", "2025-03-04T09:00:00+00:00")
