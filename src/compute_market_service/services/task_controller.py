"""Task lifecycle: admission, start, usage settlement and failure."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from compute_market_service.core.exceptions import (
    InvalidStatusError,
    NotFoundError,
    ValidationError,
)
from compute_market_service.logging import get_logger
from compute_market_service.services.capacity import can_admit, rejection_reason
from compute_market_service.services.pricing import (
    AmountOutOfRangeError,
    duration_seconds,
    format_amount,
    format_duration,
    price_usage,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from compute_market_service.schemas import (
        TaskCompleteRequest,
        TaskFailRequest,
        TaskSubmitRequest,
    )
    from compute_market_service.services.resource_registry import ResourceRegistry
    from compute_market_service.services.settlement_coordinator import SettlementCoordinator
    from compute_market_service.services.task_store import TaskStore

_VALID_STATUSES = frozenset({"pending", "running", "completed", "failed"})
_TERMINAL_STATUSES = frozenset({"completed", "failed"})


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _amount(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


class TaskController:
    """
    Drives a task from submission to settlement.

    pending -> running -> completed, with failed reachable from pending or
    running. Admission consults the resource registry and, when enabled,
    reserves capacity with a conditional update. Completion prices usage,
    transfers the total through the settlement coordinator and records the
    task and its single payment transaction in one store transaction.
    """

    def __init__(
        self,
        store: TaskStore,
        registry: ResourceRegistry,
        settlement: SettlementCoordinator,
        *,
        reserve_capacity: bool,
        settlement_decimals: int,
        display_decimals: int,
    ) -> None:
        self._store = store
        self._registry = registry
        self._settlement = settlement
        self._reserve_capacity = reserve_capacity
        self._settlement_decimals = settlement_decimals
        self._display_decimals = display_decimals
        self._locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        """Per-task lock. Callers load the task first, so unknown ids never get one."""
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    def _load(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _release_capacity(self, task: dict[str, Any]) -> None:
        if task["capacity_reserved"]:
            self._registry.release(task["resource_id"], task["cpu_cores"], task["gpu_memory"])

    def _duration(self, task: dict[str, Any]) -> str | None:
        """Display duration: start to end, or start to now while running."""
        if task["start_time"] is None:
            return None
        if task["end_time"] is not None:
            return format_duration(duration_seconds(task["start_time"], task["end_time"]))
        if task["status"] == "running":
            return format_duration(duration_seconds(task["start_time"], _now_iso()))
        return None

    def _task_to_response(self, task: dict[str, Any]) -> dict[str, Any]:
        """Convert a DB row dict to a task response dict."""
        total_payment = task["total_payment"]
        return {
            "task_id": task["task_id"],
            "task_type": task["task_type"],
            "description": task["description"],
            "consumer_id": task["consumer_id"],
            "provider_id": task["provider_id"],
            "resource_id": task["resource_id"],
            "cpu_cores": task["cpu_cores"],
            "gpu_memory": task["gpu_memory"],
            "cpu_price": str(task["cpu_price"]),
            "gpu_price": str(task["gpu_price"]),
            "capacity_reserved": bool(task["capacity_reserved"]),
            "status": task["status"],
            "created_at": task["created_at"],
            "start_time": task["start_time"],
            "end_time": task["end_time"],
            "cpu_seconds": task["cpu_seconds"],
            "gpu_seconds": task["gpu_seconds"],
            "cpu_payment": _amount(task["cpu_payment"]),
            "gpu_payment": _amount(task["gpu_payment"]),
            "total_payment": _amount(total_payment),
            "total_payment_display": (
                None
                if total_payment is None
                else format_amount(total_payment, self._display_decimals)
            ),
            "transaction_hash": task["transaction_hash"],
            "failure_reason": task["failure_reason"],
            "duration": self._duration(task),
            "updated_at": task["updated_at"],
        }

    def _transaction_to_response(self, transaction: dict[str, Any]) -> dict[str, Any]:
        """Convert a DB row dict to a payment transaction response dict."""
        return {
            "task_id": transaction["task_id"],
            "provider_id": transaction["provider_id"],
            "consumer_wallet_address": transaction["consumer_wallet_address"],
            "provider_wallet_address": transaction["provider_wallet_address"],
            "cpu_payment": str(transaction["cpu_payment"]),
            "gpu_payment": str(transaction["gpu_payment"]),
            "total_payment": str(transaction["total_payment"]),
            "total_payment_display": format_amount(
                transaction["total_payment"], self._display_decimals
            ),
            "transaction_hash": transaction["transaction_hash"],
            "simulated": bool(transaction["simulated"]),
            "timestamp": transaction["timestamp"],
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def submit_task(self, request: TaskSubmitRequest) -> dict[str, Any]:
        """
        Admit a task against its resource and create it in 'pending'.

        Error precedence:
        1. RESOURCE_NOT_FOUND (a validation error: the request names no resource)
        2. PROVIDER_MISMATCH: provider_id given and not the resource's owner
        3. RESOURCE_INACTIVE / INSUFFICIENT_CAPACITY: declared capacity
        4. INSUFFICIENT_CAPACITY: capacity already reserved by other tasks
        """
        resource = self._registry.find(request.resource_id)
        if resource is None:
            raise ValidationError(
                "resource_id does not name a registered resource",
                {"resource_id": request.resource_id},
                error="RESOURCE_NOT_FOUND",
            )

        if request.provider_id is not None and request.provider_id != resource["provider_id"]:
            raise ValidationError(
                "provider_id does not match the resource's provider",
                {"resource_id": resource["resource_id"], "provider_id": resource["provider_id"]},
                error="PROVIDER_MISMATCH",
            )

        if not can_admit(resource, request.cpu_cores, request.gpu_memory):
            error = rejection_reason(
                resource, request.cpu_cores, request.gpu_memory, reserved=False
            )
            self._logger.info(
                "Task rejected",
                extra={"resource_id": resource["resource_id"], "reason": error.error},
            )
            raise error

        if self._reserve_capacity and not self._registry.reserve(
            resource["resource_id"], request.cpu_cores, request.gpu_memory
        ):
            current = self._registry.find(resource["resource_id"]) or resource
            error = rejection_reason(current, request.cpu_cores, request.gpu_memory, reserved=True)
            self._logger.info(
                "Task rejected",
                extra={"resource_id": resource["resource_id"], "reason": error.error},
            )
            raise error

        now = _now_iso()
        task_id = f"task-{uuid.uuid4()}"
        task = {
            "task_id": task_id,
            "task_type": request.task_type,
            "description": request.description,
            "consumer_id": request.consumer_id,
            "provider_id": resource["provider_id"],
            "resource_id": resource["resource_id"],
            "cpu_cores": request.cpu_cores,
            "gpu_memory": request.gpu_memory,
            "cpu_price": resource["cpu_price"],
            "gpu_price": resource["gpu_price"],
            "capacity_reserved": self._reserve_capacity,
            "status": "pending",
            "created_at": now,
            "start_time": None,
            "end_time": None,
            "cpu_seconds": None,
            "gpu_seconds": None,
            "cpu_payment": None,
            "gpu_payment": None,
            "total_payment": None,
            "transaction_hash": None,
            "failure_reason": None,
            "updated_at": now,
        }

        try:
            self._store.insert_task(task)
        except Exception:
            self._release_capacity(task)
            raise

        self._logger.info(
            "Task admitted",
            extra={
                "task_id": task_id,
                "resource_id": resource["resource_id"],
                "consumer_id": request.consumer_id,
                "cpu_cores": request.cpu_cores,
                "gpu_memory": request.gpu_memory,
            },
        )
        return self._task_to_response(task)

    async def start_task(self, task_id: str) -> dict[str, Any]:
        """Move a pending task to 'running'. A running task is returned unchanged."""
        self._load(task_id)
        async with self._lock_for(task_id):
            task = self._load(task_id)
            if task["status"] == "running":
                return self._task_to_response(task)
            if task["status"] != "pending":
                self._locks.pop(task_id, None)
                raise InvalidStatusError(
                    f"Cannot start task in '{task['status']}' status, must be 'pending'"
                )

            now = _now_iso()
            updated = self._store.update_task(
                task_id,
                {"status": "running", "start_time": now, "updated_at": now},
                expected_status="pending",
            )
            if updated == 0:
                task = self._reload(task_id)
                if task["status"] == "running":
                    return self._task_to_response(task)
                raise InvalidStatusError(
                    f"Cannot start task in '{task['status']}' status, must be 'pending'"
                )

            self._logger.info("Task started", extra={"task_id": task_id})
            return self._task_to_response(self._reload(task_id))

    async def complete_task(self, task_id: str, request: TaskCompleteRequest) -> dict[str, Any]:
        """
        Price a running task's usage, pay the provider and mark it completed.

        Error precedence:
        1. TASK_NOT_FOUND
        2. TASK_ALREADY_COMPLETED
        3. INVALID_STATUS: not 'running'
        4. SIMULATION_DISABLED
        5. AMOUNT_OUT_OF_RANGE: usage or cost cannot be priced or stored
        6. TRANSFER_FAILED: the task stays 'running' and may be completed again
        """
        self._load(task_id)
        async with self._lock_for(task_id):
            task = self._load(task_id)
            if task["status"] in _TERMINAL_STATUSES:
                self._locks.pop(task_id, None)
            if task["status"] == "completed":
                raise InvalidStatusError(
                    "Task has already been completed",
                    error="TASK_ALREADY_COMPLETED",
                )
            if task["status"] != "running":
                raise InvalidStatusError(
                    f"Cannot complete task in '{task['status']}' status, must be 'running'"
                )
            self._settlement.check_simulation_allowed(request.simulate)

            end_time = _now_iso()
            elapsed = duration_seconds(task["start_time"], end_time)
            cpu_seconds = request.cpu_seconds if request.cpu_seconds is not None else elapsed
            gpu_seconds = request.gpu_seconds if request.gpu_seconds is not None else elapsed
            try:
                cost = price_usage(
                    task["cpu_cores"],
                    cpu_seconds,
                    task["cpu_price"],
                    task["gpu_memory"],
                    gpu_seconds,
                    task["gpu_price"],
                    self._settlement_decimals,
                )
            except AmountOutOfRangeError as exc:
                raise ValidationError(
                    exc.args[0], {"task_id": task_id}, error="AMOUNT_OUT_OF_RANGE"
                ) from exc

            consumer_wallet = request.consumer_wallet_address or task["consumer_id"]
            provider_wallet = request.provider_wallet_address or task["provider_id"]
            updates: dict[str, Any] = {
                "status": "completed",
                "end_time": end_time,
                "cpu_seconds": cpu_seconds,
                "gpu_seconds": gpu_seconds,
                "cpu_payment": cost.cpu_cost,
                "gpu_payment": cost.gpu_cost,
                "total_payment": cost.total_cost,
                "transaction_hash": "",
                "updated_at": end_time,
            }
            transaction: dict[str, Any] = {
                "task_id": task_id,
                "provider_id": task["provider_id"],
                "consumer_wallet_address": consumer_wallet,
                "provider_wallet_address": provider_wallet,
                "cpu_payment": cost.cpu_cost,
                "gpu_payment": cost.gpu_cost,
                "total_payment": cost.total_cost,
                "transaction_hash": "",
                "simulated": request.simulate,
                "timestamp": end_time,
            }
            # Unstorable values are rejected before the transfer
            try:
                self._store.check_settlement(updates, transaction)
            except ValueError as exc:
                raise ValidationError(
                    exc.args[0], {"task_id": task_id}, error="AMOUNT_OUT_OF_RANGE"
                ) from exc

            receipt, simulated = await self._settlement.send_payment(
                task_id,
                consumer_wallet,
                provider_wallet,
                cost.total_cost,
                simulate=request.simulate,
            )

            settled_at = _now_iso()
            updates.update({"transaction_hash": receipt, "updated_at": settled_at})
            transaction.update(
                {"transaction_hash": receipt, "simulated": simulated, "timestamp": settled_at}
            )
            try:
                settled = self._store.settle_task(task_id, updates, transaction)
            except Exception:
                self._logger.exception(
                    "Payment sent but settlement could not be recorded",
                    extra={"task_id": task_id, "transaction_hash": receipt},
                )
                raise
            if not settled:
                self._logger.error(
                    "Payment sent but task could not be settled",
                    extra={"task_id": task_id, "transaction_hash": receipt},
                )
                raise InvalidStatusError("Task is no longer running")

            self._release_capacity(task)
            self._locks.pop(task_id, None)

        self._logger.info(
            "Task settled",
            extra={
                "task_id": task_id,
                "cpu_seconds": cpu_seconds,
                "gpu_seconds": gpu_seconds,
                "total_payment": str(cost.total_cost),
                "transaction_hash": receipt,
                "simulated": simulated,
            },
        )
        return self._task_to_response(self._reload(task_id))

    async def fail_task(self, task_id: str, request: TaskFailRequest) -> dict[str, Any]:
        """Abort a pending or running task. No payment is computed or sent."""
        self._load(task_id)
        async with self._lock_for(task_id):
            task = self._load(task_id)
            if task["status"] in _TERMINAL_STATUSES:
                self._locks.pop(task_id, None)
                raise InvalidStatusError(
                    f"Cannot fail task in '{task['status']}' status, "
                    "must be 'pending' or 'running'"
                )

            updated = self._store.update_task(
                task_id,
                {"status": "failed", "failure_reason": request.reason, "updated_at": _now_iso()},
                expected_status=task["status"],
            )
            if updated == 0:
                current = self._reload(task_id)
                raise InvalidStatusError(
                    f"Cannot fail task in '{current['status']}' status, "
                    "must be 'pending' or 'running'"
                )

            self._release_capacity(task)
            self._locks.pop(task_id, None)

        self._logger.info(
            "Task failed",
            extra={"task_id": task_id, "previous_status": task["status"], "reason": request.reason},
        )
        return self._task_to_response(self._reload(task_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Fetch a task by ID."""
        return self._task_to_response(self._load(task_id))

    def list_tasks(
        self,
        provider_id: str | None,
        consumer_id: str | None,
        status: str | None,
        resource_id: str | None,
    ) -> list[dict[str, Any]]:
        """List tasks, newest first, with optional filters."""
        if status is not None and status not in _VALID_STATUSES:
            raise ValidationError(f"status must be one of {sorted(_VALID_STATUSES)}")
        rows = self._store.list_tasks(
            provider_id=provider_id,
            consumer_id=consumer_id,
            status=status,
            resource_id=resource_id,
        )
        return [self._task_to_response(row) for row in rows]

    def list_transactions(
        self,
        provider_id: str | None,
        task_id: str | None,
    ) -> list[dict[str, Any]]:
        """List recorded payment transactions, oldest first."""
        rows = self._store.list_transactions(provider_id=provider_id, task_id=task_id)
        return [self._transaction_to_response(row) for row in rows]

    # ------------------------------------------------------------------
    # Statistics: used by the health endpoint
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task statistics for health reporting."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self.count_tasks_by_status(),
            "total_transactions": self._store.count_transactions(),
        }

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status, with 0 for statuses not yet seen."""
        counts: dict[str, int] = dict.fromkeys(sorted(_VALID_STATUSES), 0)
        for status_val, count in self._store.count_tasks_by_status().items():
            if status_val in counts:
                counts[status_val] = int(count)
        return counts
