"""Entry point for running Bottleship via ``python -m bottleship``."""

from __future__ import annotations

import logging

import uvicorn

from .config import SETTINGS


def main() -> None:
    """Start the FastAPI-powered Bottleship server."""

    logging.basicConfig(
        level=SETTINGS.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(
        "bottleship.server:app",
        host=SETTINGS.host,
        port=SETTINGS.port,
        reload=False,
        log_level=SETTINGS.log_level.lower(),
    )


if __name__ == "__main__":
    main()
