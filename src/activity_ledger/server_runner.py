"""Launch the local data-quality API under uvicorn."""

from __future__ import annotations

import logging
import threading
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .config import ReconcileSettings
from .db import database_connection
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)


def build_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    db_path: Optional[Path] = None,
    settings: Optional[ReconcileSettings] = None,
    log_level: str = "info",
) -> uvicorn.Server:
    """Prepare the database and return a configured, not yet started server."""
    resolved = Path(db_path or get_db_path())
    # creates the schema up front so the first request does not race on it
    with database_connection(resolved):
        pass
    app = create_app(db_path=resolved, settings=settings or ReconcileSettings())
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    logger.info("Serving data-quality API for %s on http://%s:%d", resolved, host, port)
    return uvicorn.Server(config)


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    db_path: Optional[Path] = None,
    settings: Optional[ReconcileSettings] = None,
    open_browser: bool = False,
    log_level: str = "info",
) -> None:
    server = build_server(
        host=host, port=port, db_path=db_path, settings=settings, log_level=log_level
    )
    if open_browser:
        docs_url = f"http://{host}:{port}/docs"
        threading.Timer(1.0, _open_docs, args=(docs_url,)).start()
    server.run()


def _open_docs(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.exception("Failed to launch browser for %s", url)
