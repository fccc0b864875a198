import json

from habitflow.client.offline.queue import new_action
from habitflow.client.offline.storage import OfflineStorage


def test_missing_file_gives_defaults(tmp_path):
    with OfflineStorage(tmp_path / "missing.json") as storage:
        assert storage.habits == []
        assert storage.stats is None
        assert storage.last_sync == 0
        assert storage.pending_actions == []


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "offline.json"
    path.write_text("{not json", encoding="utf-8")

    with OfflineStorage(path) as storage:
        assert storage.habits == []
        assert storage.pending_actions == []


def test_snapshot_and_queue_persist_together(tmp_path):
    path = tmp_path / "nested" / "offline.json"

    with OfflineStorage(path) as storage:
        storage.set_habits([{"id": 1, "name": "Run"}], synced_at=1000)
        storage.append_action(new_action("complete_habit", 2000, habit_id=1))
        assert storage.save()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["habits"] == [{"id": 1, "name": "Run"}]
    assert data["last_sync"] == 1000
    assert data["pending_actions"][0]["type"] == "complete_habit"
    assert not (tmp_path / "nested" / "offline.json.tmp").exists()

    reopened = OfflineStorage(path).open()
    assert reopened.habits == [{"id": 1, "name": "Run"}]
    assert reopened.pending_actions[0].habit_id == 1


def test_save_failure_is_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    storage = OfflineStorage(blocker / "offline.json").open()

    storage.set_habits([{"id": 1}], synced_at=1)
    assert storage.save() is False
    assert storage.habits == [{"id": 1}]


def test_queue_order_and_remap(tmp_path):
    storage = OfflineStorage(tmp_path / "offline.json").open()
    create = new_action("create_habit", 1, habit_id=-1, payload={"name": "Run"})
    complete = new_action("complete_habit", 2, habit_id=-1)
    other = new_action("undo_habit", 3, habit_id=5)
    for action in (create, complete, other):
        storage.append_action(action)
    storage.set_habits([{"id": -1, "name": "Run"}], synced_at=0)

    assert storage.next_action() == create
    storage.remap_habit_id(-1, 42)
    storage.remove_action(create.id)

    assert [action.id for action in storage.pending_actions] == [complete.id, other.id]
    assert storage.pending_actions[0].habit_id == 42
    assert storage.pending_actions[1].habit_id == 5
    assert storage.habits == [{"id": 42, "name": "Run"}]
