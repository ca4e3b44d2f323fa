"""Run the signaling relay with uvicorn."""
from __future__ import annotations

import uvicorn

from relay.core.config import settings


def main() -> None:
    uvicorn.run(
        "relay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
