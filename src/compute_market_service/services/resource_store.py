"""SQLite-backed resource storage."""

from __future__ import annotations

import contextlib
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import Any


class DuplicateResourceError(Exception):
    """Raised when attempting to insert a resource with a duplicate resource_id."""


class ResourceStore:
    """
    SQLite-backed storage for compute resources and their reservations.

    Prices are stored as decimal strings so they round-trip exactly.
    Pass db_path=":memory:" for a process-local store.
    """

    _COLUMNS: tuple[str, ...] = (
        "resource_id",
        "provider_id",
        "provider_name",
        "location",
        "cpu_cores",
        "gpu_memory",
        "cpu_price",
        "gpu_price",
        "availability",
        "rating",
        "status",
        "reserved_cpu_cores",
        "reserved_gpu_memory",
        "created_at",
        "updated_at",
    )
    _DECIMAL_COLUMNS = frozenset({"cpu_price", "gpu_price"})
    # Reservations move only through reserve_capacity/release_capacity.
    _UPDATABLE_COLUMNS = frozenset(_COLUMNS) - {
        "resource_id",
        "reserved_cpu_cores",
        "reserved_gpu_memory",
        "created_at",
    }
    _COLUMNS_SQL = ", ".join(_COLUMNS)
    _SELECT_SQL = "SELECT " + _COLUMNS_SQL + " FROM resources"  # nosec B608
    _INSERT_SQL = (
        "INSERT INTO resources (" + _COLUMNS_SQL + ") VALUES ("  # nosec B608
        + ", ".join("?" for _ in _COLUMNS)
        + ")"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS resources (
                    resource_id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL,
                    provider_name TEXT NOT NULL,
                    location TEXT NOT NULL,
                    cpu_cores INTEGER NOT NULL CHECK (cpu_cores >= 0),
                    gpu_memory INTEGER NOT NULL CHECK (gpu_memory >= 0),
                    cpu_price TEXT NOT NULL,
                    gpu_price TEXT NOT NULL,
                    availability REAL NOT NULL,
                    rating REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    reserved_cpu_cores INTEGER NOT NULL DEFAULT 0
                        CHECK (reserved_cpu_cores >= 0),
                    reserved_gpu_memory INTEGER NOT NULL DEFAULT 0
                        CHECK (reserved_gpu_memory >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_resources_provider
                    ON resources(provider_id);
                """
            )
            self._db.commit()

    def _row_to_resource(self, row: sqlite3.Row) -> dict[str, Any]:
        resource = {column: row[column] for column in self._COLUMNS}
        for column in self._DECIMAL_COLUMNS:
            resource[column] = Decimal(resource[column])
        return resource

    @classmethod
    def _to_db_value(cls, column: str, value: Any) -> Any:
        if column in cls._DECIMAL_COLUMNS:
            return str(value)
        return value

    def insert_resource(self, resource: dict[str, Any]) -> None:
        """Insert a new resource row."""
        values = tuple(self._to_db_value(column, resource[column]) for column in self._COLUMNS)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(self._INSERT_SQL, values)
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateResourceError(
                        f"A resource with resource_id={resource['resource_id']} already exists"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_resource(self, resource_id: str) -> dict[str, Any] | None:
        """Fetch a resource by ID."""
        with self._lock:
            row = self._db.execute(
                self._SELECT_SQL + " WHERE resource_id = ?", (resource_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_resource(row)

    def update_resource(self, resource_id: str, updates: dict[str, Any]) -> int:
        """Update resource columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._UPDATABLE_COLUMNS for column in updates):
            msg = "Attempted to update unknown or protected resource column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._to_db_value(col, val) for col, val in updates.items()]
        params.append(resource_id)

        query = "UPDATE resources SET " + set_clause + " WHERE resource_id = ?"  # nosec B608
        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def list_resources(
        self,
        provider_id: str | None,
        status: str | None,
        resource_type: str | None,
    ) -> list[dict[str, Any]]:
        """List resources with optional filters. resource_type is 'cpu' or 'gpu'."""
        query = self._SELECT_SQL
        clauses: list[str] = []
        params: list[object] = []

        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if resource_type == "cpu":
            clauses.append("cpu_cores > 0")
        elif resource_type == "gpu":
            clauses.append("gpu_memory > 0")

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, resource_id"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_resource(row) for row in rows]

    def delete_resource(self, resource_id: str) -> int:
        """Hard-delete a resource row."""
        with self._lock:
            cursor = self._db.execute("DELETE FROM resources WHERE resource_id = ?", (resource_id,))
            self._db.commit()
        return int(cursor.rowcount)

    def reserve_capacity(self, resource_id: str, cpu_cores: int, gpu_memory: int) -> bool:
        """
        Atomically hold capacity for an admitted task.

        The update only applies while the resource is active and its free
        capacity covers the request, so concurrent admissions cannot jointly
        oversubscribe it. Returns False when nothing was reserved.
        """
        with self._lock:
            cursor = self._db.execute(
                """
                UPDATE resources
                SET reserved_cpu_cores = reserved_cpu_cores + ?,
                    reserved_gpu_memory = reserved_gpu_memory + ?
                WHERE resource_id = ?
                  AND status = 'active'
                  AND cpu_cores - reserved_cpu_cores >= ?
                  AND gpu_memory - reserved_gpu_memory >= ?
                """,
                (cpu_cores, gpu_memory, resource_id, cpu_cores, gpu_memory),
            )
            self._db.commit()
        return cursor.rowcount == 1

    def release_capacity(self, resource_id: str, cpu_cores: int, gpu_memory: int) -> None:
        """Return capacity held by a task that reached a terminal state."""
        with self._lock:
            self._db.execute(
                """
                UPDATE resources
                SET reserved_cpu_cores = MAX(0, reserved_cpu_cores - ?),
                    reserved_gpu_memory = MAX(0, reserved_gpu_memory - ?)
                WHERE resource_id = ?
                """,
                (cpu_cores, gpu_memory, resource_id),
            )
            self._db.commit()

    def count_resources_by_status(self) -> dict[str, int]:
        """Count resources grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM resources GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
