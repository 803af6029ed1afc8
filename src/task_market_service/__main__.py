"""Run the service with uvicorn using the configured host and port."""

from __future__ import annotations

import uvicorn

from task_market_service.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "task_market_service.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
