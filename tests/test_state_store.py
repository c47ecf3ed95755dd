import json
import os

import pytest

from posbridge.core import state_store as state_store_module
from posbridge.core.errors import NotFoundError
from posbridge.core.state_store import PosStateStore, make_default_tables


def test_default_tables_layout():
    tables = make_default_tables(16)
    assert [t["id"] for t in tables] == list(range(1, 17))
    assert [t["seats"] for t in tables[:6]] == [2, 3, 4, 5, 2, 3]
    first = tables[0]
    assert first["name"] == "T1"
    assert first["status"] == "free"
    assert first["cart"] == []
    assert first["splits"] == ["Main"]
    assert first["defaultPayer"] == "Main"


def test_load_without_file_gives_default_state(tmp_path):
    store = PosStateStore(str(tmp_path))
    state = store.load()
    assert len(state["tables"]) == 16
    assert state["tickets"] == []


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
def test_corrupt_file_recovers_to_defaults(tmp_path, content):
    (tmp_path / "pos-state.json").write_text(content, encoding="utf-8")
    store = PosStateStore(str(tmp_path))
    state = store.load()
    assert len(state["tables"]) == 16
    assert state["tickets"] == []


def test_non_list_members_replaced_individually(tmp_path):
    saved = {"tables": "oops", "tickets": [{"id": "a", "status": "NEW"}]}
    (tmp_path / "pos-state.json").write_text(json.dumps(saved), encoding="utf-8")
    state = PosStateStore(str(tmp_path)).load()
    assert len(state["tables"]) == 16
    assert state["tickets"] == [{"id": "a", "status": "NEW"}]


def test_save_writes_document_and_creates_dir(tmp_path):
    data_dir = tmp_path / "nested" / "data"
    store = PosStateStore(str(data_dir))
    store.load()
    assert store.save() is True

    path = data_dir / "pos-state.json"
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["updatedAt"].endswith("Z")
    assert len(saved["tables"]) == 16
    assert not os.path.exists(str(path) + ".tmp")

    reloaded = PosStateStore(str(data_dir)).load()
    assert reloaded["tables"] == saved["tables"]


def test_save_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")
    store = PosStateStore(str(blocker / "data"))
    store.load()
    store.create_ticket({"table": "T1"})
    assert store.save() is False
    assert len(store.get_state()["tickets"]) == 1


def test_snapshot_replaces_only_list_members(store):
    tickets = [{"id": "1", "status": "NEW"}]
    applied = store.replace_snapshot({"tables": {"bad": True}, "tickets": tickets})
    assert applied == {"tables": False, "tickets": True}
    state = store.get_public_state()
    assert len(state["tables"]) == 16
    assert state["tickets"] == tickets


def test_snapshot_is_idempotent(store):
    snapshot = {"tables": [{"id": 1, "name": "T1", "seats": 2}], "tickets": []}
    store.replace_snapshot(snapshot)
    first = store.get_public_state()
    store.replace_snapshot(snapshot)
    assert store.get_public_state() == first


def test_snapshot_ignores_non_object_body(store):
    before = store.get_public_state()
    store.replace_snapshot(["tables"])
    assert store.get_public_state() == before


def test_create_ticket_defaults_and_prepends(store):
    first = store.create_ticket({"table": "T1", "items": [{"name": "Soda", "quantity": 1}]})
    second = store.create_ticket({"id": "custom", "table": "T2", "status": "IN_PROGRESS"})
    assert first["status"] == "NEW"
    assert first["createdAt"].endswith("Z")
    assert second["id"] == "custom"
    assert second["status"] == "IN_PROGRESS"
    ids = [t["id"] for t in store.get_public_state()["tickets"]]
    assert ids == ["custom", first["id"]]


def test_generated_ticket_ids_are_unique_within_same_millisecond(store, monkeypatch):
    monkeypatch.setattr(state_store_module.time, "time", lambda: 1700000000.123)
    ids = [store.create_ticket({})["id"] for _ in range(3)]
    assert ids == ["1700000000123", "1700000000124", "1700000000125"]


def test_update_ticket_status_compares_ids_as_strings(store):
    store.replace_snapshot({"tickets": [{"id": 42, "status": "NEW"}]})
    store.update_ticket_status("42", "READY")
    assert store.get_public_state()["tickets"][0]["status"] == "READY"


def test_update_unknown_ticket_leaves_state_unchanged(store):
    store.create_ticket({"id": "a"})
    before = store.get_state()
    with pytest.raises(NotFoundError) as exc:
        store.update_ticket_status("zzz", "READY")
    assert exc.value.reason == "not found"
    assert store.get_state() == before


def test_delete_ticket_removes_all_matches(store):
    store.replace_snapshot({"tickets": [{"id": "x"}, {"id": "y"}, {"id": "x"}]})
    assert store.delete_ticket("x") == 2
    assert store.delete_ticket("x") == 0
    assert [t["id"] for t in store.get_public_state()["tickets"]] == ["y"]


def test_patch_table_merges_and_keeps_id(store):
    table = store.patch_table("3", {"id": 99, "status": "occupied", "total": 12.5})
    assert table["id"] == 3
    assert table["status"] == "occupied"
    assert table["total"] == 12.5
    assert table["seats"] == 5
    assert store.get_public_state()["tables"][2] == table


@pytest.mark.parametrize("table_id", [999, "abc", None, True])
def test_patch_unknown_table_raises(store, table_id):
    before = store.get_state()
    with pytest.raises(NotFoundError) as exc:
        store.patch_table(table_id, {"status": "occupied"})
    assert exc.value.reason == "table not found"
    assert store.get_state() == before


def test_returned_state_is_a_copy(store):
    state = store.get_public_state()
    state["tables"][0]["status"] = "reserved"
    assert store.get_public_state()["tables"][0]["status"] == "free"
