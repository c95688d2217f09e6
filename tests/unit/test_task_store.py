"""Unit tests for TaskStore."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from compute_market_service.services.task_store import DuplicateTaskError, TaskStore


def _task_data(task_id: str, status: str = "pending", **overrides: object) -> dict[str, object]:
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    data: dict[str, object] = {
        "task_id": task_id,
        "task_type": "training",
        "description": "Run",
        "consumer_id": "cons-1",
        "provider_id": "prov-1",
        "resource_id": "res-1",
        "cpu_cores": 4,
        "gpu_memory": 8,
        "cpu_price": Decimal("0.0008"),
        "gpu_price": Decimal("0.0045"),
        "capacity_reserved": True,
        "status": status,
        "created_at": timestamp,
        "start_time": None,
        "end_time": None,
        "cpu_seconds": None,
        "gpu_seconds": None,
        "cpu_payment": None,
        "gpu_payment": None,
        "total_payment": None,
        "transaction_hash": None,
        "failure_reason": None,
        "updated_at": timestamp,
    }
    data.update(overrides)
    return data


def _settlement(task_id: str, receipt: str = "0xabc") -> tuple[dict[str, object], dict[str, object]]:
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    updates: dict[str, object] = {
        "status": "completed",
        "end_time": timestamp,
        "cpu_seconds": 2700,
        "gpu_seconds": 2700,
        "cpu_payment": Decimal("0.0024"),
        "gpu_payment": Decimal("0.027"),
        "total_payment": Decimal("0.0294"),
        "transaction_hash": receipt,
        "updated_at": timestamp,
    }
    transaction: dict[str, object] = {
        "task_id": task_id,
        "provider_id": "prov-1",
        "consumer_wallet_address": "cons-1",
        "provider_wallet_address": "prov-1",
        "cpu_payment": Decimal("0.0024"),
        "gpu_payment": Decimal("0.027"),
        "total_payment": Decimal("0.0294"),
        "transaction_hash": receipt,
        "simulated": False,
        "timestamp": timestamp,
    }
    return updates, transaction


@pytest.mark.unit
def test_task_crud_and_counts(tmp_path) -> None:
    """Task operations persist, update, list and count correctly."""
    store = TaskStore(db_path=str(tmp_path / "tasks.db"))
    store.insert_task(_task_data("task-1"))
    store.insert_task(_task_data("task-2", status="running", consumer_id="cons-2"))

    task = store.get_task("task-1")
    assert task is not None
    assert task["status"] == "pending"
    assert task["cpu_price"] == Decimal("0.0008")
    assert task["capacity_reserved"] == 1
    assert task["total_payment"] is None

    assert store.update_task("task-1", {"status": "running"}, expected_status=None) == 1
    assert store.update_task("task-2", {"status": "failed"}, expected_status="pending") == 0

    assert len(store.list_tasks(None, None, None, None)) == 2
    assert [
        t["task_id"] for t in store.list_tasks(None, "cons-2", None, None)
    ] == ["task-2"]
    assert store.count_tasks() == 2
    assert store.count_tasks_by_status() == {"running": 2}
    assert store.count_active_tasks_for_resource("res-1") == 2
    assert store.count_active_tasks_for_resource("res-other") == 0
    store.close()


@pytest.mark.unit
def test_duplicate_task_raises() -> None:
    """Inserting the same task_id twice raises DuplicateTaskError."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1"))

    with pytest.raises(DuplicateTaskError):
        store.insert_task(_task_data("task-1"))
    store.close()


@pytest.mark.unit
def test_check_settlement_rejects_values_sqlite_cannot_store() -> None:
    """Integers beyond the SQLite INTEGER range are refused before settlement."""
    store = TaskStore(db_path=":memory:")
    updates, transaction = _settlement("task-1")

    store.check_settlement(updates, transaction)

    with pytest.raises(ValueError):
        store.check_settlement(updates | {"cpu_seconds": 2**63}, transaction)
    with pytest.raises(ValueError):
        store.check_settlement(updates | {"bogus": 1}, transaction)
    store.close()


@pytest.mark.unit
def test_update_rejects_unknown_column() -> None:
    """Unknown columns are refused before any SQL runs."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1"))

    with pytest.raises(ValueError):
        store.update_task("task-1", {"bogus": 1}, expected_status=None)
    store.close()


@pytest.mark.unit
def test_settle_task_records_task_and_transaction() -> None:
    """A running task is completed and its single transaction stored."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1", status="running"))
    updates, transaction = _settlement("task-1")

    assert store.settle_task("task-1", updates, transaction) is True

    task = store.get_task("task-1")
    assert task is not None
    assert task["status"] == "completed"
    assert task["total_payment"] == Decimal("0.0294")
    assert task["total_payment"] == task["cpu_payment"] + task["gpu_payment"]

    stored = store.get_transaction("task-1")
    assert stored is not None
    assert stored["transaction_hash"] == "0xabc"
    assert stored["simulated"] == 0
    assert store.count_transactions() == 1
    store.close()


@pytest.mark.unit
def test_settle_task_only_once() -> None:
    """A second settlement of the same task writes nothing."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1", status="running"))
    store.settle_task("task-1", *_settlement("task-1", "0xfirst"))

    assert store.settle_task("task-1", *_settlement("task-1", "0xsecond")) is False

    assert store.count_transactions() == 1
    assert store.get_transaction("task-1")["transaction_hash"] == "0xfirst"  # type: ignore[index]
    store.close()


@pytest.mark.unit
def test_settle_task_requires_running() -> None:
    """Pending tasks cannot be settled."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1", status="pending"))

    assert store.settle_task("task-1", *_settlement("task-1")) is False

    assert store.get_task("task-1")["status"] == "pending"  # type: ignore[index]
    assert store.count_transactions() == 0
    store.close()


@pytest.mark.unit
def test_list_transactions_filters() -> None:
    """Transactions can be listed by provider_id and task_id."""
    store = TaskStore(db_path=":memory:")
    store.insert_task(_task_data("task-1", status="running"))
    store.insert_task(_task_data("task-2", status="running"))
    store.settle_task("task-1", *_settlement("task-1"))
    store.settle_task("task-2", *_settlement("task-2"))

    assert len(store.list_transactions(provider_id="prov-1", task_id=None)) == 2
    assert len(store.list_transactions(provider_id="prov-x", task_id=None)) == 0
    assert [
        t["task_id"] for t in store.list_transactions(provider_id=None, task_id="task-2")
    ] == ["task-2"]
    store.close()
