from threading import Event, Thread

from checkin_app.core.store import InMemoryDocumentStore


def test_get_returns_copies():
    store = InMemoryDocumentStore()
    store.set("users/u1", {"name": "Kim", "classroom": {"c1": {"status": 2}}})

    data = store.get("users/u1")
    data["classroom"]["c1"]["status"] = 1

    assert store.get("users/u1")["classroom"]["c1"]["status"] == 2
    assert store.get("users/missing") is None


def test_merge_write_is_deep_and_delete_field_removes_nested_key():
    store = InMemoryDocumentStore()
    store.set("users/u1", {"name": "Kim", "classroom": {"c1": {"status": 2}}})
    store.set("users/u1", {"classroom": {"c2": {"status": 2}}}, merge=True)

    assert set(store.get("users/u1")["classroom"]) == {"c1", "c2"}

    store.delete_field("users/u1", "classroom.c1")
    assert store.get("users/u1") == {"name": "Kim", "classroom": {"c2": {"status": 2}}}


def test_scan_orders_by_field_with_missing_values_last():
    store = InMemoryDocumentStore()
    store.set("classroom/c1/checkin/s1/question/a", {"question_no": 2})
    store.set("classroom/c1/checkin/s1/question/b", {"question_no": 1})
    store.set("classroom/c1/checkin/s1/question/c", {})

    ids = [snap.id for snap in store.scan("classroom/c1/checkin/s1/question", order_by="question_no")]
    assert ids == ["b", "a", "c"]


def test_add_generates_ids_in_collection():
    store = InMemoryDocumentStore()
    first = store.add("classroom", {"owner": "t"})
    second = store.add("classroom", {"owner": "t"})
    assert first != second
    assert {snap.id for snap in store.scan("classroom")} == {first, second}


def test_document_subscription_replays_then_follows_changes():
    store = InMemoryDocumentStore()
    seen = []
    subscription = store.subscribe("users/u1", lambda snap: seen.append(snap.data))

    store.set("users/u1", {"name": "Kim"})
    store.delete("users/u1")

    assert seen == [None, {"name": "Kim"}, None]

    subscription.unsubscribe()
    subscription.unsubscribe()
    store.set("users/u1", {"name": "Lee"})
    assert len(seen) == 3
    assert store.listener_count() == 0


def test_collection_subscription_sees_every_document_change():
    store = InMemoryDocumentStore()
    batches = []
    store.subscribe_collection("classroom/c1/checkin", lambda snaps: batches.append([s.id for s in snaps]))

    store.set("classroom/c1/checkin/s1", {"status": 0})
    store.set("classroom/c1/checkin/s2", {"status": 0})
    store.set("classroom/c1/checkin/s1/students/u1", {"status": 1})
    store.delete("classroom/c1/checkin/s1")

    assert batches == [[], ["s1"], ["s1", "s2"], ["s2"]]


def test_failing_listener_does_not_block_others():
    store = InMemoryDocumentStore()
    seen = []

    def broken(_snap):
        raise RuntimeError("boom")

    store.subscribe("users/u1", broken)
    store.subscribe("users/u1", lambda snap: seen.append(snap.exists))
    store.set("users/u1", {"name": "Kim"})

    assert seen == [False, True]


def test_listener_may_write_during_dispatch():
    store = InMemoryDocumentStore()

    def mirror(snap):
        if snap.exists:
            store.set("mirror/u1", snap.data)

    store.subscribe("users/u1", mirror)
    store.set("users/u1", {"name": "Kim"})

    assert store.get("mirror/u1") == {"name": "Kim"}


def test_concurrent_writers_are_delivered_in_write_order():
    store = InMemoryDocumentStore()
    path = "classroom/c1/checkin/s1/question/q1"
    seen = []
    delivering = Event()
    release = Event()

    def slow_listener(snap):
        if snap.exists and snap.data.get("question_show") is True:
            delivering.set()
            release.wait(timeout=5)

    store.subscribe(path, slow_listener)
    store.subscribe(path, lambda snap: seen.append(snap.data.get("question_show") if snap.exists else None))
    show = Thread(target=store.set, args=(path, {"question_show": True}))
    hide = Thread(target=store.set, args=(path, {"question_show": False}))

    show.start()
    assert delivering.wait(timeout=5)
    hide.start()
    hide.join(timeout=0.2)
    release.set()
    show.join(timeout=5)
    hide.join(timeout=5)

    assert store.get(path) == {"question_show": False}
    assert seen == [None, True, False]
