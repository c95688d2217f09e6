"""Unit tests for ResourceStore."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from compute_market_service.services.resource_store import DuplicateResourceError, ResourceStore


def _resource_data(resource_id: str, **overrides: object) -> dict[str, object]:
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    data: dict[str, object] = {
        "resource_id": resource_id,
        "provider_id": "prov-1",
        "provider_name": "Provider One",
        "location": "eu-west",
        "cpu_cores": 8,
        "gpu_memory": 16,
        "cpu_price": Decimal("0.0008"),
        "gpu_price": Decimal("0.0045"),
        "availability": 100,
        "rating": 4.5,
        "status": "active",
        "reserved_cpu_cores": 0,
        "reserved_gpu_memory": 0,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    data.update(overrides)
    return data


@pytest.mark.unit
def test_resource_crud_and_counts(tmp_path) -> None:
    """Resource operations persist, update, list, count and delete."""
    store = ResourceStore(db_path=str(tmp_path / "resources.db"))
    store.insert_resource(_resource_data("res-1"))
    store.insert_resource(_resource_data("res-2", gpu_memory=0, status="inactive"))

    resource = store.get_resource("res-1")
    assert resource is not None
    assert resource["cpu_price"] == Decimal("0.0008")
    assert isinstance(resource["gpu_price"], Decimal)

    assert store.update_resource("res-1", {"location": "us-east"}) == 1
    assert store.get_resource("res-1")["location"] == "us-east"  # type: ignore[index]

    assert len(store.list_resources(provider_id="prov-1", status=None, resource_type=None)) == 2
    assert [
        r["resource_id"]
        for r in store.list_resources(provider_id=None, status=None, resource_type="gpu")
    ] == ["res-1"]
    assert [
        r["resource_id"]
        for r in store.list_resources(provider_id=None, status="inactive", resource_type=None)
    ] == ["res-2"]

    assert store.count_resources_by_status() == {"active": 1, "inactive": 1}

    assert store.delete_resource("res-2") == 1
    assert store.get_resource("res-2") is None
    store.close()


@pytest.mark.unit
def test_duplicate_resource_raises() -> None:
    """Inserting the same resource_id twice raises DuplicateResourceError."""
    store = ResourceStore(db_path=":memory:")
    store.insert_resource(_resource_data("res-1"))

    with pytest.raises(DuplicateResourceError):
        store.insert_resource(_resource_data("res-1"))
    store.close()


@pytest.mark.unit
def test_update_rejects_protected_columns() -> None:
    """Reservations cannot be rewritten through update_resource."""
    store = ResourceStore(db_path=":memory:")
    store.insert_resource(_resource_data("res-1"))

    with pytest.raises(ValueError):
        store.update_resource("res-1", {"reserved_cpu_cores": 0})
    store.close()


@pytest.mark.unit
def test_reserve_capacity_is_conditional() -> None:
    """Reservations succeed until free capacity runs out."""
    store = ResourceStore(db_path=":memory:")
    store.insert_resource(_resource_data("res-1"))

    assert store.reserve_capacity("res-1", 5, 8) is True
    assert store.reserve_capacity("res-1", 5, 0) is False
    assert store.reserve_capacity("res-1", 3, 8) is True
    assert store.reserve_capacity("res-1", 0, 1) is False

    resource = store.get_resource("res-1")
    assert resource is not None
    assert resource["reserved_cpu_cores"] == 8
    assert resource["reserved_gpu_memory"] == 16
    store.close()


@pytest.mark.unit
def test_reserve_capacity_refuses_inactive_or_missing() -> None:
    """Inactive and unknown resources reserve nothing."""
    store = ResourceStore(db_path=":memory:")
    store.insert_resource(_resource_data("res-1", status="inactive"))

    assert store.reserve_capacity("res-1", 1, 1) is False
    assert store.reserve_capacity("res-missing", 1, 1) is False
    store.close()


@pytest.mark.unit
def test_release_capacity_floors_at_zero() -> None:
    """Releasing more than reserved leaves zero, never a negative count."""
    store = ResourceStore(db_path=":memory:")
    store.insert_resource(_resource_data("res-1"))
    store.reserve_capacity("res-1", 2, 4)

    store.release_capacity("res-1", 2, 4)
    store.release_capacity("res-1", 2, 4)

    resource = store.get_resource("res-1")
    assert resource is not None
    assert resource["reserved_cpu_cores"] == 0
    assert resource["reserved_gpu_memory"] == 0
    store.close()
