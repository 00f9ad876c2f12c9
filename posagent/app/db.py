import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .errors import StorageUnavailable, ValidationError
from .logs import json_log

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sqlite_schema.sql")
MEMORY_PATH = ":memory:"


@dataclass(frozen=True)
class Collection:
    table: str
    # Record fields copied into real columns so SQLite can index/order on them.
    columns: tuple = ()
    order_by: str = "rowid ASC"
    key: str = "id"
    extra_ddl: dict = field(default_factory=dict)


COLLECTIONS = {
    "products": Collection("local_products"),
    "customers": Collection("local_customers"),
    "cart": Collection("local_cart"),
    "transactions": Collection("local_transactions", columns=("created_at",), order_by="created_at DESC, rowid DESC"),
    "transactionItems": Collection("local_transaction_items", columns=("transaction_id",)),
    "pendingSync": Collection(
        "pending_sync",
        columns=("kind", "enqueued_at", "status"),
        order_by="enqueued_at ASC, rowid ASC",
        extra_ddl={"status": "TEXT DEFAULT 'pending'"},
    ),
}

SETTINGS_STORE_KEY = "settings:store"
HELD_SALES_KEY = "held:sales"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(record: Any) -> str:
    # Sorted keys keep the stored bytes stable when the same record is written twice.
    return json.dumps(record, sort_keys=True, default=str)


def _collection(name: str) -> Collection:
    coll = COLLECTIONS.get(name)
    if coll is None:
        raise KeyError(f"unknown collection: {name}")
    return coll


class LocalStore:
    """
    Durable key-indexed storage for the agent (SQLite).

    One connection is shared by the event loop and the HTTP layer; every call takes the
    store lock and commits on its own, so writes to a collection are never torn.
    Any sqlite3 failure surfaces as StorageUnavailable.
    """

    def __init__(self, path: str = MEMORY_PATH):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_batch = False

    @property
    def mode(self) -> str:
        return "memory" if self.path == MEMORY_PATH else "disk"

    def is_initialized(self) -> bool:
        return self._conn is not None

    def init(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            try:
                with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                    schema = f.read()
                if self.mode == "disk":
                    parent = os.path.dirname(os.path.abspath(self.path))
                    os.makedirs(parent, exist_ok=True)
                conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                if self.mode == "disk":
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.executescript(schema)
                self._migrate(conn)
                conn.commit()
            except (sqlite3.Error, OSError) as ex:
                raise StorageUnavailable(f"cannot open local store {self.path}: {ex}") from ex
            self._conn = conn

    def _migrate(self, conn: sqlite3.Connection) -> None:
        # CREATE TABLE IF NOT EXISTS does not add new columns. Keep a tiny runtime
        # migration layer for stores created by older agents.
        for coll in COLLECTIONS.values():
            cols = {r[1] for r in conn.execute(f"PRAGMA table_info({coll.table})").fetchall()}
            for col in coll.columns:
                if col not in cols:
                    ddl = coll.extra_ddl.get(col, "TEXT")
                    conn.execute(f"ALTER TABLE {coll.table} ADD COLUMN {col} {ddl}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None

    def _require(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is None:
            raise StorageUnavailable("local store is not initialized")
        return conn

    @contextmanager
    def batch(self):
        """
        Group several store calls into one SQLite transaction, e.g. "persist held sale and
        clear the cart". Nested batches join the outer one.
        """
        with self._lock:
            conn = self._require()
            if self._in_batch:
                yield self
                return
            self._in_batch = True
            try:
                with conn:
                    yield self
            except sqlite3.Error as ex:
                raise StorageUnavailable(str(ex)) from ex
            finally:
                self._in_batch = False

    @contextmanager
    def _tx(self):
        with self._lock:
            conn = self._require()
            if self._in_batch:
                try:
                    yield conn.cursor()
                except sqlite3.Error as ex:
                    raise StorageUnavailable(str(ex)) from ex
                return
            try:
                with conn:
                    yield conn.cursor()
            except sqlite3.Error as ex:
                raise StorageUnavailable(str(ex)) from ex

    def _decode(self, collection: str, key: str, raw: str) -> Optional[dict]:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            json_log("warning", "store.record_corrupt", collection=collection, key=key)
            return None
        if not isinstance(data, dict):
            json_log("warning", "store.record_corrupt", collection=collection, key=key)
            return None
        return data

    def _upsert(self, cur, coll: Collection, record: dict) -> None:
        key = record.get(coll.key)
        if key is None or str(key) == "":
            raise ValidationError(f"record for {coll.table} has no {coll.key}", field=coll.key)
        cols = ["id", *coll.columns, "data_json", "updated_at"]
        values = [str(key), *[_column_value(record.get(c)) for c in coll.columns], _dumps(record), _now()]
        updates = ", ".join(f"{c}=excluded.{c}" for c in cols[1:-1])
        # Rewriting an identical record leaves the row untouched, updated_at included.
        updates += (
            f", updated_at=CASE WHEN {coll.table}.data_json = excluded.data_json"
            f" THEN {coll.table}.updated_at ELSE excluded.updated_at END"
        )
        cur.execute(
            f"""
            INSERT INTO {coll.table} ({", ".join(cols)})
            VALUES ({", ".join(["?"] * len(cols))})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            tuple(values),
        )

    def put(self, collection: str, record: dict) -> None:
        coll = _collection(collection)
        with self._tx() as cur:
            self._upsert(cur, coll, record)

    def put_many(self, collection: str, records: Iterable[dict]) -> int:
        coll = _collection(collection)
        n = 0
        with self._tx() as cur:
            for r in records:
                self._upsert(cur, coll, r)
                n += 1
        return n

    def get(self, collection: str, key: str) -> Optional[dict]:
        coll = _collection(collection)
        with self._tx() as cur:
            cur.execute(f"SELECT id, data_json FROM {coll.table} WHERE id = ?", (str(key),))
            row = cur.fetchone()
        if not row:
            return None
        return self._decode(collection, row["id"], row["data_json"])

    def get_all(self, collection: str) -> list:
        coll = _collection(collection)
        with self._tx() as cur:
            cur.execute(f"SELECT id, data_json FROM {coll.table} ORDER BY {coll.order_by}")
            rows = cur.fetchall()
        out = []
        for r in rows:
            data = self._decode(collection, r["id"], r["data_json"])
            if data is not None:
                out.append(data)
        return out

    def find_by(self, collection: str, column: str, value: Any) -> list:
        coll = _collection(collection)
        if column not in coll.columns:
            raise KeyError(f"{collection} is not indexed on {column}")
        with self._tx() as cur:
            cur.execute(
                f"SELECT id, data_json FROM {coll.table} WHERE {column} = ? ORDER BY {coll.order_by}",
                (_column_value(value),),
            )
            rows = cur.fetchall()
        out = []
        for r in rows:
            data = self._decode(collection, r["id"], r["data_json"])
            if data is not None:
                out.append(data)
        return out

    def count(self, collection: str, where: Optional[dict] = None) -> int:
        coll = _collection(collection)
        sql = f"SELECT COUNT(1) FROM {coll.table}"
        params: tuple = ()
        if where:
            for col in where:
                if col not in coll.columns:
                    raise KeyError(f"{collection} is not indexed on {col}")
            sql += " WHERE " + " AND ".join(f"{c} = ?" for c in where)
            params = tuple(_column_value(v) for v in where.values())
        with self._tx() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return int(row[0] if row else 0)

    def delete(self, collection: str, key: str) -> bool:
        coll = _collection(collection)
        with self._tx() as cur:
            cur.execute(f"DELETE FROM {coll.table} WHERE id = ?", (str(key),))
            return cur.rowcount > 0

    def clear(self, collection: str) -> None:
        coll = _collection(collection)
        with self._tx() as cur:
            cur.execute(f"DELETE FROM {coll.table}")

    def replace_all(self, collection: str, records: Iterable[dict], keep_keys: Iterable[str] = ()) -> int:
        """
        Atomically make `collection` hold exactly `records`, plus any existing rows whose
        key is listed in `keep_keys`.
        """
        coll = _collection(collection)
        records = list(records)
        keep = {str(k) for k in keep_keys if k}
        keep.update(str(r.get(coll.key)) for r in records if r.get(coll.key) is not None)
        with self._tx() as cur:
            cur.execute(f"SELECT id FROM {coll.table}")
            stale = [row["id"] for row in cur.fetchall() if row["id"] not in keep]
            for key in stale:
                cur.execute(f"DELETE FROM {coll.table} WHERE id = ?", (key,))
            for r in records:
                self._upsert(cur, coll, r)
        return len(records)

    def save_transaction(self, transaction: dict, items: Iterable[dict]) -> None:
        # Header + lines are one unit: either both collections change or neither does.
        tx_coll = _collection("transactions")
        item_coll = _collection("transactionItems")
        with self._tx() as cur:
            self._upsert(cur, tx_coll, transaction)
            for it in items:
                self._upsert(cur, item_coll, it)

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._tx() as cur:
            cur.execute("SELECT value_json FROM kv_store WHERE key = ?", (key,))
            row = cur.fetchone()
        if not row:
            return default
        try:
            return json.loads(row["value_json"])
        except (TypeError, ValueError):
            json_log("warning", "store.value_corrupt", key=key)
            return default

    def set_value(self, key: str, value: Any) -> None:
        with self._tx() as cur:
            cur.execute(
                """
                INSERT INTO kv_store (key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value_json=excluded.value_json,
                  updated_at=excluded.updated_at
                """,
                (key, _dumps(value), _now()),
            )


def _column_value(v: Any):
    if v is None:
        return None
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)
