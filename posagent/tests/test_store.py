import sqlite3

import pytest

from posagent.app.db import HELD_SALES_KEY, MEMORY_PATH, LocalStore
from posagent.app.errors import StorageUnavailable, ValidationError


def test_put_get_and_upsert(store):
    store.put("products", {"id": "p1", "name": "Tea", "price": "1.50"})
    store.put("products", {"id": "p1", "name": "Green tea", "price": "1.75"})
    assert store.get("products", "p1") == {"id": "p1", "name": "Green tea", "price": "1.75"}
    assert store.count("products") == 1
    assert store.get("products", "missing") is None


def test_get_all_keeps_insertion_order(store):
    for pid in ["b", "a", "c"]:
        store.put("products", {"id": pid, "name": pid})
    assert [r["id"] for r in store.get_all("products")] == ["b", "a", "c"]


def test_delete_and_clear(store):
    store.put_many("customers", [{"id": "c1", "name": "A"}, {"id": "c2", "name": "B"}])
    assert store.delete("customers", "c1") is True
    assert store.delete("customers", "c1") is False
    store.clear("customers")
    assert store.get_all("customers") == []


def test_unknown_collection_is_rejected(store):
    with pytest.raises(KeyError):
        store.put("invoices", {"id": "x"})


def test_record_without_key_is_rejected(store):
    with pytest.raises(ValidationError) as ex:
        store.put("products", {"name": "no id"})
    assert ex.value.field == "id"
    assert store.count("products") == 0


def test_operations_before_init_raise_storage_unavailable(db_path):
    s = LocalStore(db_path)
    assert not s.is_initialized()
    with pytest.raises(StorageUnavailable):
        s.get_all("products")


def test_init_is_idempotent(db_path):
    s = LocalStore(db_path)
    s.init()
    s.put("products", {"id": "p1", "name": "Tea"})
    s.init()
    assert s.get("products", "p1")["name"] == "Tea"
    s.close()


def test_data_survives_reopen(db_path):
    s = LocalStore(db_path)
    s.init()
    s.put("cart", {"id": "line-1", "quantity": 2})
    s.set_value(HELD_SALES_KEY, [{"id": "1"}])
    s.close()

    reopened = LocalStore(db_path)
    reopened.init()
    assert reopened.get("cart", "line-1") == {"id": "line-1", "quantity": 2}
    assert reopened.get_value(HELD_SALES_KEY) == [{"id": "1"}]
    assert reopened.mode == "disk"
    reopened.close()


def test_memory_store_mode():
    s = LocalStore(MEMORY_PATH)
    s.init()
    assert s.mode == "memory"
    s.close()


def test_unwritable_path_raises_storage_unavailable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    s = LocalStore(str(blocker / "pos.sqlite"))
    with pytest.raises(StorageUnavailable):
        s.init()


def test_replace_all_prunes_stale_rows_but_keeps_listed_keys(store):
    store.put_many("products", [{"id": "old", "name": "Old"}, {"id": "local", "name": "Offline create"}])
    n = store.replace_all("products", [{"id": "p1", "name": "Server"}], keep_keys=["local"])
    assert n == 1
    assert sorted(r["id"] for r in store.get_all("products")) == ["local", "p1"]


def test_rewriting_identical_record_keeps_row_bytes(store, db_path):
    store.replace_all("products", [{"id": "p1", "name": "Tea"}])
    before = _raw_rows(db_path, "local_products")
    store.replace_all("products", [{"id": "p1", "name": "Tea"}])
    assert _raw_rows(db_path, "local_products") == before


def test_batch_rolls_back_every_write_on_error(store):
    store.put("cart", {"id": "line-1", "quantity": 1})
    with pytest.raises(RuntimeError):
        with store.batch():
            store.clear("cart")
            store.set_value(HELD_SALES_KEY, [{"id": "1"}])
            raise RuntimeError("boom")
    assert store.get("cart", "line-1") is not None
    assert store.get_value(HELD_SALES_KEY) is None


def test_find_by_indexed_column(store):
    store.save_transaction(
        {"id": "t1", "created_at": "2024-01-01T00:00:00+00:00"},
        [{"id": "i1", "transaction_id": "t1"}, {"id": "i2", "transaction_id": "t1"}, {"id": "i3", "transaction_id": "t2"}],
    )
    assert [r["id"] for r in store.find_by("transactionItems", "transaction_id", "t1")] == ["i1", "i2"]
    with pytest.raises(KeyError):
        store.find_by("products", "name", "x")


def test_transactions_are_listed_newest_first(store):
    store.put("transactions", {"id": "t1", "created_at": "2024-01-01T00:00:00+00:00"})
    store.put("transactions", {"id": "t2", "created_at": "2024-01-02T00:00:00+00:00"})
    assert [r["id"] for r in store.get_all("transactions")] == ["t2", "t1"]


def test_corrupt_record_is_skipped(store, db_path):
    store.put("products", {"id": "good", "name": "Tea"})
    conn = sqlite3.connect(db_path)
    conn.execute("INSERT INTO local_products (id, data_json, updated_at) VALUES ('bad', '{not json', 'x')")
    conn.commit()
    conn.close()
    assert [r["id"] for r in store.get_all("products")] == ["good"]


def test_get_value_default(store):
    assert store.get_value("nothing", default=[]) == []
    store.set_value("k", {"a": 1})
    assert store.get_value("k") == {"a": 1}


def _raw_rows(db_path, table):
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f"SELECT id, data_json, updated_at FROM {table} ORDER BY id").fetchall()
    finally:
        conn.close()
