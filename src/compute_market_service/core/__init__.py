"""Core infrastructure components."""

from compute_market_service.core.exceptions import ServiceError
from compute_market_service.core.state import AppState, get_app_state, init_app_state

__all__ = ["AppState", "ServiceError", "get_app_state", "init_app_state"]
