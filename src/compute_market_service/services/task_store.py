"""SQLite-backed task and payment transaction storage."""

from __future__ import annotations

import contextlib
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import Any

SQLITE_MAX_INTEGER = 2**63 - 1
SQLITE_MIN_INTEGER = -(2**63)


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class TaskStore:
    """
    SQLite-backed storage for tasks and their payment transactions.

    Payment transactions are keyed by task_id, so a task can be settled at
    most once. Pass db_path=":memory:" for a process-local store.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "task_type",
        "description",
        "consumer_id",
        "provider_id",
        "resource_id",
        "cpu_cores",
        "gpu_memory",
        "cpu_price",
        "gpu_price",
        "capacity_reserved",
        "status",
        "created_at",
        "start_time",
        "end_time",
        "cpu_seconds",
        "gpu_seconds",
        "cpu_payment",
        "gpu_payment",
        "total_payment",
        "transaction_hash",
        "failure_reason",
        "updated_at",
    )
    _TRANSACTION_COLUMNS: tuple[str, ...] = (
        "task_id",
        "provider_id",
        "consumer_wallet_address",
        "provider_wallet_address",
        "cpu_payment",
        "gpu_payment",
        "total_payment",
        "transaction_hash",
        "simulated",
        "timestamp",
    )
    _DECIMAL_COLUMNS = frozenset(
        {"cpu_price", "gpu_price", "cpu_payment", "gpu_payment", "total_payment"}
    )

    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_SELECT_SQL = "SELECT " + _TASK_COLUMNS_SQL + " FROM tasks"  # nosec B608
    _TASK_INSERT_SQL = (
        "INSERT INTO tasks (" + _TASK_COLUMNS_SQL + ") VALUES ("  # nosec B608
        + ", ".join("?" for _ in _TASK_COLUMNS)
        + ")"
    )
    _TRANSACTION_COLUMNS_SQL = ", ".join(_TRANSACTION_COLUMNS)
    _TRANSACTION_SELECT_SQL = (
        "SELECT " + _TRANSACTION_COLUMNS_SQL + " FROM payment_transactions"  # nosec B608
    )
    _TRANSACTION_INSERT_SQL = (
        "INSERT INTO payment_transactions ("  # nosec B608
        + _TRANSACTION_COLUMNS_SQL
        + ") VALUES ("
        + ", ".join("?" for _ in _TRANSACTION_COLUMNS)
        + ")"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    task_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    consumer_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    resource_id TEXT NOT NULL,
                    cpu_cores INTEGER NOT NULL,
                    gpu_memory INTEGER NOT NULL,
                    cpu_price TEXT NOT NULL,
                    gpu_price TEXT NOT NULL,
                    capacity_reserved INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    cpu_seconds INTEGER,
                    gpu_seconds INTEGER,
                    cpu_payment TEXT,
                    gpu_payment TEXT,
                    total_payment TEXT,
                    transaction_hash TEXT,
                    failure_reason TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_tasks_resource_status
                    ON tasks(resource_id, status);

                CREATE TABLE IF NOT EXISTS payment_transactions (
                    task_id TEXT PRIMARY KEY REFERENCES tasks(task_id),
                    provider_id TEXT NOT NULL,
                    consumer_wallet_address TEXT NOT NULL,
                    provider_wallet_address TEXT NOT NULL,
                    cpu_payment TEXT NOT NULL,
                    gpu_payment TEXT NOT NULL,
                    total_payment TEXT NOT NULL,
                    transaction_hash TEXT NOT NULL,
                    simulated INTEGER NOT NULL DEFAULT 0,
                    timestamp TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    @classmethod
    def _from_db(cls, row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        record = {column: row[column] for column in columns}
        for column in cls._DECIMAL_COLUMNS.intersection(columns):
            if record[column] is not None:
                record[column] = Decimal(record[column])
        return record

    @classmethod
    def _to_db(cls, column: str, value: Any) -> Any:
        if column in cls._DECIMAL_COLUMNS and value is not None:
            return str(value)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int) and not SQLITE_MIN_INTEGER <= value <= SQLITE_MAX_INTEGER:
            msg = f"{column} is outside the SQLite INTEGER range"
            raise ValueError(msg)
        return value

    def check_settlement(self, updates: dict[str, Any], transaction: dict[str, Any]) -> None:
        """
        Raise ValueError if settle_task could not store these values.

        The controller calls this before the payment transfer.
        """
        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)
        for column, value in updates.items():
            self._to_db(column, value)
        for column in self._TRANSACTION_COLUMNS:
            self._to_db(column, transaction[column])

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(self._to_db(column, task_data[column]) for column in self._TASK_COLUMNS)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(self._TASK_INSERT_SQL, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateTaskError(
                        f"A task with task_id={task_data['task_id']} already exists"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            row = self._db.execute(
                self._TASK_SELECT_SQL + " WHERE task_id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._from_db(row, self._TASK_COLUMNS)

    def _build_update(
        self,
        task_id: str,
        updates: dict[str, Any],
        expected_status: str | None,
    ) -> tuple[str, list[object]]:
        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._to_db(col, val) for col, val in updates.items()]

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        return query, params

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """
        Update task columns and return the number of affected rows.

        With expected_status set, the update only applies if the row is still
        in that status (optimistic concurrency); 0 means someone else moved it.
        """
        if len(updates) == 0:
            return 0

        query, params = self._build_update(task_id, updates, expected_status)
        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def settle_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        transaction: dict[str, Any],
    ) -> bool:
        """
        Move a running task to its settled state and record its payment.

        Both writes happen in one database transaction, conditional on the
        task still being 'running'. Returns False (and writes nothing) if the
        task was already moved or a transaction already exists for it.
        """
        query, params = self._build_update(task_id, updates, "running")
        values = tuple(
            self._to_db(column, transaction[column]) for column in self._TRANSACTION_COLUMNS
        )

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                cursor = self._db.execute(query, params)
                if cursor.rowcount != 1:
                    self._db.execute("ROLLBACK")
                    return False
                self._db.execute(self._TRANSACTION_INSERT_SQL, values)
                self._db.commit()
            except sqlite3.IntegrityError:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                return False
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return True

    def list_tasks(
        self,
        provider_id: str | None,
        consumer_id: str | None,
        status: str | None,
        resource_id: str | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = self._TASK_SELECT_SQL
        clauses: list[str] = []
        params: list[object] = []

        for column, value in (
            ("provider_id", provider_id),
            ("consumer_id", consumer_id),
            ("status", status),
            ("resource_id", resource_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, task_id"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._from_db(row, self._TASK_COLUMNS) for row in rows]

    def count_active_tasks_for_resource(self, resource_id: str) -> int:
        """Count pending or running tasks bound to a resource."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM tasks "
                "WHERE resource_id = ? AND status IN ('pending', 'running')",
                (resource_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def get_transaction(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the payment transaction of a task, if it was settled."""
        with self._lock:
            row = self._db.execute(
                self._TRANSACTION_SELECT_SQL + " WHERE task_id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._from_db(row, self._TRANSACTION_COLUMNS)

    def list_transactions(
        self,
        provider_id: str | None,
        task_id: str | None,
    ) -> list[dict[str, Any]]:
        """List payment transactions with optional filters, oldest first."""
        query = self._TRANSACTION_SELECT_SQL
        clauses: list[str] = []
        params: list[object] = []

        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if task_id is not None:
            clauses.append("task_id = ?")
            params.append(task_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY timestamp, task_id"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._from_db(row, self._TRANSACTION_COLUMNS) for row in rows]

    def count_transactions(self) -> int:
        """Count recorded payment transactions."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM payment_transactions").fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
