"""SQLite store backend.

Single table holding every item as an orjson payload, with the primary
key and both secondary-index attributes lifted into columns:

    items(pk, sk, data, gsi1pk, gsi1sk, gsi2pk, gsi2sk)

Features:
- WAL mode for concurrent readers
- BEGIN IMMEDIATE for transactions (one writer at a time, conditions
  evaluated and writes applied under the same write lock)
- Row-value comparison for exclusive start keys
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Sequence

import orjson

from graphmem.errors import ConditionCheckFailedError, StoreError, TransactionCancelledError
from graphmem.log_config import get_logger, log_timing
from graphmem.store.protocol import (
    PK,
    REASON_CONDITION_FAILED,
    SK,
    BaseStore,
    Condition,
    ConditionCheck,
    Delete,
    Key,
    Operation,
    Put,
    QueryPage,
    Update,
)

log = get_logger("store.sqlite")

_COLUMNS = {
    PK: "pk",
    SK: "sk",
    "GSI1PK": "gsi1pk",
    "GSI1SK": "gsi1sk",
    "GSI2PK": "gsi2pk",
    "GSI2SK": "gsi2sk",
}


class SQLiteStore(BaseStore):
    """SQLite-backed Store implementation."""

    def __init__(self, db_path: Path | str):
        """Open (and create if needed) the store database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        log.info(f"Initializing SQLiteStore at {self.db_path}")
        self._init_connection()
        self._create_schema()

    @property
    def backend_name(self) -> str:
        return "sqlite"

    def _init_connection(self) -> None:
        """Initialize database connection with WAL mode."""
        self.conn = sqlite3.connect(
            str(self.db_path),
            timeout=30.0,
            check_same_thread=False,
            isolation_level=None,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=30000")
        log.debug("SQLite connection initialized with WAL mode")

    def _create_schema(self) -> None:
        """Create table and indexes if not exists."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS items (
                pk TEXT NOT NULL,
                sk TEXT NOT NULL,
                data BLOB NOT NULL,
                gsi1pk TEXT,
                gsi1sk TEXT,
                gsi2pk TEXT,
                gsi2sk TEXT,
                PRIMARY KEY (pk, sk)
            ) WITHOUT ROWID;

            CREATE INDEX IF NOT EXISTS idx_items_gsi1 ON items(gsi1pk, gsi1sk, pk, sk);
            CREATE INDEX IF NOT EXISTS idx_items_gsi2 ON items(gsi2pk, gsi2sk, pk, sk);
        """)
        log.debug("Store schema created/verified")

    @contextmanager
    def _write_transaction(self):
        """BEGIN IMMEDIATE ... COMMIT, rolling back on any error."""
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"could not begin transaction: {e}") from e
            try:
                yield
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self.conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self.conn.execute("ROLLBACK")
                    raise StoreError(f"commit failed: {e}") from e

    # =========================================================================
    # Row helpers
    # =========================================================================

    @staticmethod
    def _decode(row: sqlite3.Row) -> dict[str, Any]:
        return orjson.loads(row["data"])

    def _read(self, key: Key) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT data FROM items WHERE pk = ? AND sk = ?",
            (key.pk, key.sk),
        ).fetchone()
        return self._decode(row) if row else None

    def _write(self, item: dict[str, Any]) -> None:
        try:
            data = orjson.dumps(item)
        except TypeError as e:
            raise StoreError(f"item is not serializable: {e}") from e
        self.conn.execute(
            """
            INSERT OR REPLACE INTO items (pk, sk, data, gsi1pk, gsi1sk, gsi2pk, gsi2sk)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item[PK], item[SK], data,
                item.get("GSI1PK"), item.get("GSI1SK"),
                item.get("GSI2PK"), item.get("GSI2SK"),
            ),
        )

    def _remove(self, key: Key) -> None:
        self.conn.execute("DELETE FROM items WHERE pk = ? AND sk = ?", (key.pk, key.sk))

    def _apply(self, op: Operation) -> None:
        if isinstance(op, Put):
            self._write(op.item)
        elif isinstance(op, Update):
            self._write(op.apply(self._read(op.key)))
        elif isinstance(op, Delete):
            self._remove(op.key)
        elif isinstance(op, ConditionCheck):
            pass

    # =========================================================================
    # Single-item operations
    # =========================================================================

    def get(self, key: Key) -> dict[str, Any] | None:
        with self._lock:
            try:
                return self._read(key)
            except sqlite3.Error as e:
                raise StoreError(f"get failed: {e}") from e

    def put(self, key: Key, item: dict[str, Any], condition: Condition | None = None) -> None:
        record = dict(item)
        record.update(key.as_dict())
        with self._write_transaction():
            if condition is not None and not condition.evaluate(self._read(key)):
                raise ConditionCheckFailedError(f"put condition failed for {key.pk}/{key.sk}")
            self._write(record)

    def update(
        self,
        key: Key,
        changes: dict[str, Any],
        condition: Condition | None = None,
        remove: Sequence[str] = (),
    ) -> dict[str, Any]:
        op = Update(target=key, changes=changes, remove=tuple(remove), condition=condition)
        with self._write_transaction():
            current = self._read(key)
            if not op.check(current):
                raise ConditionCheckFailedError(f"update condition failed for {key.pk}/{key.sk}")
            new_item = op.apply(current)
            self._write(new_item)
        return new_item

    def delete(self, key: Key, condition: Condition | None = None) -> None:
        with self._write_transaction():
            if condition is not None and not condition.evaluate(self._read(key)):
                raise ConditionCheckFailedError(f"delete condition failed for {key.pk}/{key.sk}")
            self._remove(key)

    # =========================================================================
    # Query / scan
    # =========================================================================

    def query(
        self,
        partition_key: str,
        sort_key_prefix: str | None = None,
        index_name: str | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        if limit is not None and limit <= 0:
            return QueryPage([])
        pk_attr, sk_attr = self._index_attrs(index_name)
        pk_col, sk_col = _COLUMNS[pk_attr], _COLUMNS[sk_attr]

        sql = f"SELECT data FROM items WHERE {pk_col} = ?"
        params: list[Any] = [partition_key]
        if sort_key_prefix:
            sql += f" AND substr({sk_col}, 1, ?) = ?"
            params += [len(sort_key_prefix), sort_key_prefix]
        if start_key:
            sql += f" AND ({sk_col}, pk, sk) > (?, ?, ?)"
            params += list(self._start_tuple(start_key, sk_attr))
        sql += f" ORDER BY {sk_col}, pk, sk"
        if limit is not None:
            # One extra row tells us whether another page exists
            sql += " LIMIT ?"
            params.append(limit + 1)

        with self._lock:
            try:
                rows = self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"query failed: {e}") from e

        items = [self._decode(r) for r in rows]
        if limit is not None and 0 < limit < len(items):
            items = items[:limit]
            return QueryPage(items, self._last_key(items[-1], index_name))
        return QueryPage(items)

    def scan(
        self,
        filter: Condition | None = None,
        attributes: Sequence[str] | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        sql = "SELECT data FROM items"
        params: list[Any] = []
        if start_key:
            sql += " WHERE (pk, sk) > (?, ?)"
            params += [start_key[PK], start_key[SK]]
        sql += " ORDER BY pk, sk"

        items: list[dict[str, Any]] = []
        last_key = None
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                for row in cursor:
                    item = self._decode(row)
                    if filter is not None and not filter.evaluate(item):
                        continue
                    if limit is not None and len(items) >= limit:
                        last_key = self._last_key(items[-1], None) if items else None
                        break
                    items.append(item)
            except sqlite3.Error as e:
                raise StoreError(f"scan failed: {e}") from e

        return QueryPage([self._project(it, attributes) for it in items], last_key)

    # =========================================================================
    # Transactions
    # =========================================================================

    def transact(self, operations: Sequence[Operation]) -> None:
        self._validate_transaction(operations)
        with log_timing(f"sqlite transact ({len(operations)} ops)", log):
            with self._write_transaction():
                reasons = [
                    None if op.check(self._read(op.key)) else REASON_CONDITION_FAILED
                    for op in operations
                ]
                if any(reasons):
                    log.debug(f"Transaction cancelled: {reasons}")
                    raise TransactionCancelledError("transaction cancelled: condition check failed", reasons)
                for op in operations:
                    self._apply(op)

    def batch_write(self, operations: Sequence[Put | Delete]) -> list[Key]:
        self._validate_batch(operations)
        failed: list[Key] = []
        with self._write_transaction():
            for op in operations:
                if not op.check(self._read(op.key)):
                    failed.append(op.key)
                    continue
                self._apply(op)
        return failed

    def health_check(self) -> bool:
        with self._lock:
            try:
                self.conn.execute("SELECT 1").fetchone()
                return True
            except sqlite3.Error as e:
                log.warning(f"SQLite health check failed: {e}")
                return False

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()
        log.debug("SQLiteStore closed")

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

