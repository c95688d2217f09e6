"""Run the service with uvicorn using the configured host and port."""

from __future__ import annotations

import uvicorn

from compute_market_service.config import get_settings


def main() -> None:
    """Start the HTTP server."""
    settings = get_settings()
    uvicorn.run(
        "compute_market_service.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
