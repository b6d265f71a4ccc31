"""Background run queue.

Submitting a run returns immediately; the orchestrator then works through the
stages on a small thread pool.  Each job opens its own DB connection so runs
never share mutable state.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from emailqc.config import settings
from emailqc.db import get_connection, init_db
from emailqc.errors import QueueFullError
from emailqc.links.checker import LinkChecker
from emailqc.parser import fetch_preview_html
from emailqc.pipeline.model import QcModel
from emailqc.pipeline.orchestrator import PreviewFetcher, RunJob, process_run

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], sqlite3.Connection]


def _default_connection() -> sqlite3.Connection:
    conn = get_connection()
    init_db(conn)
    return conn


class RunQueue:
    """Bounded worker pool that processes submitted QC runs.

    Args:
        model: Content-validation model client shared by every run.
        connection_factory: Opens a fresh connection for each job.
        link_checker_factory: Builds the link checker used by each job.
        preview_fetcher: Fetches preview HTML for a URL.
        max_workers: Concurrent runs.
        max_pending: Runs accepted but not yet finished before
            :meth:`submit` starts refusing work.
    """

    def __init__(
        self,
        model: QcModel,
        connection_factory: ConnectionFactory = _default_connection,
        link_checker_factory: Callable[[], LinkChecker] = LinkChecker,
        preview_fetcher: PreviewFetcher = fetch_preview_html,
        max_workers: Optional[int] = None,
        max_pending: Optional[int] = None,
    ) -> None:
        self._model = model
        self._connection_factory = connection_factory
        self._link_checker_factory = link_checker_factory
        self._preview_fetcher = preview_fetcher
        self._max_pending = max_pending if max_pending is not None else settings.max_pending_runs
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.max_concurrent_runs,
            thread_name_prefix="qc-run",
        )
        self._lock = threading.Lock()
        self._pending = 0
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def submit(self, job: RunJob) -> Future:
        """Queue *job* for processing and return its future.

        Raises:
            QueueFullError: If the queue is shut down or at capacity.
        """
        with self._lock:
            if self._closed:
                raise QueueFullError("Run queue is shut down")
            if self._pending >= self._max_pending:
                raise QueueFullError(
                    f"{self._pending} run(s) already pending; try again later"
                )
            self._pending += 1

        try:
            future = self._executor.submit(self._process, job)
        except RuntimeError as exc:
            self._release()
            raise QueueFullError(str(exc)) from exc
        future.add_done_callback(self._on_done)
        return future

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _release(self) -> None:
        with self._lock:
            self._pending -= 1

    def _on_done(self, future: Future) -> None:
        self._release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("[queue] run job crashed: %r", exc)

    def _process(self, job: RunJob) -> None:
        conn = self._connection_factory()
        try:
            process_run(
                conn,
                job,
                self._model,
                link_checker=self._link_checker_factory(),
                preview_fetcher=self._preview_fetcher,
            )
        finally:
            conn.close()
