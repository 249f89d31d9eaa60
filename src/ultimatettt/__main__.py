"""Entry point for running the game server via ``python -m ultimatettt``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered Ultimate Tic-Tac-Toe server."""

    level = os.environ.get("UTTT_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    host = os.environ.get("UTTT_HOST", "0.0.0.0")
    port = int(os.environ.get("UTTT_PORT", "8000"))
    uvicorn.run("ultimatettt.ui:app", host=host, port=port, reload=False, log_level=level.lower())


if __name__ == "__main__":
    main()
