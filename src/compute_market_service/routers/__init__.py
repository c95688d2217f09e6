"""API routers."""

from compute_market_service.routers import health, payments, resources, tasks

__all__ = ["health", "payments", "resources", "tasks"]
