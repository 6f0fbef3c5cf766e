"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from stackpilot.api.app import create_app
from stackpilot.config import get_settings, RuntimeEnvironment
from stackpilot.infrastructure.observability.logging import setup_logging
from stackpilot.infrastructure.observability.tracing import setup_tracing


app = create_app()


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    setup_logging(
        settings.observability.log_level,
        json_output=settings.environment != RuntimeEnvironment.DEVELOPMENT,
    )
    setup_tracing(settings.observability)

    uvicorn.run(
        "stackpilot.main:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug,
        log_level=settings.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
