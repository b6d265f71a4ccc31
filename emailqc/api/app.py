"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection for request handlers
(``request.app.state.db``), builds the content-validation model client once,
and starts the background run queue and the submission rate limiter.  On
shutdown the queue is drained and the connection closed.

Routers
-------
    /qc-runs        : submit, list, inspect and rename QC runs
    /email-preview  : fetch and parse a template preview
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from emailqc.api.rate_limit import RateLimiter
from emailqc.api.routers import preview as preview_router
from emailqc.api.routers import qc_runs as qc_runs_router
from emailqc.db import get_connection, init_db
from emailqc.pipeline.model import QcModel, build_model_client
from emailqc.pipeline.queue import RunQueue
from emailqc.utils import configure_logging


def create_app(
    db_path: Optional[Path | str] = None,
    model_client: Optional[QcModel] = None,
    run_queue_factory: Optional[Callable[[QcModel, Callable[[], sqlite3.Connection]], RunQueue]] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        db_path: SQLite file to use instead of ``settings.db_path``.
        model_client: Pre-built model client (built from settings when omitted).
        run_queue_factory: Builds the run queue from the model client and a
            connection factory; defaults to :class:`RunQueue`.
        rate_limiter: Submission limiter; defaults to one built from settings.
    """

    def connect() -> sqlite3.Connection:
        conn = get_connection(db_path)
        init_db(conn)
        return conn

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        conn = connect()
        model = model_client or build_model_client()
        factory = run_queue_factory or (lambda m, c: RunQueue(m, connection_factory=c))
        queue = factory(model, connect)

        app.state.db = conn
        app.state.model = model
        app.state.run_queue = queue
        app.state.rate_limiter = rate_limiter or RateLimiter()
        try:
            yield
        finally:
            queue.shutdown(wait=True)
            conn.close()

    app = FastAPI(
        title="Email QC API",
        description=(
            "Audits rendered marketing email previews against compliance rules "
            "and the approved copy document: parses the preview, verifies every "
            "link, and runs the content-validation model in the background."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(qc_runs_router.router, prefix="/qc-runs", tags=["qc-runs"])
    app.include_router(preview_router.router, prefix="/email-preview", tags=["email-preview"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn emailqc.api.app:app --reload
app = create_app()
