"""Background rebuild jobs with progress tracking and listener notification.

Each call to :meth:`RebuildTracker.start` launches one asyncio task that
awaits :meth:`IndexManager.rebuild` (which runs the build in a worker
thread).  The tracker keeps a per-job status record and broadcasts status
changes to listeners registered for that job id, so several consumers (HTTP
pollers, the CLI, tests) can follow a rebuild without cross-talk.

Only one rebuild runs at a time.  Starting while a job is active returns the
active job instead of queueing a second one.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from vecsearch.models.document import utc_now
from vecsearch.models.index import RebuildJobInfo, RebuildStatus
from vecsearch.services.index_manager import IndexManager
from vecsearch.utils.errors import IndexBuildError, NotFoundError, RebuildCancelledError
from vecsearch.utils.logging import get_logger


@dataclass
class _JobState:
    """Mutable record of one job; never exposed directly."""

    job_id: str
    status: RebuildStatus = RebuildStatus.PENDING
    progress: float = 0.0
    message: str = ""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    error: str | None = None
    snapshot_version: int | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    task: asyncio.Task | None = None

    def info(self) -> RebuildJobInfo:
        return RebuildJobInfo(
            job_id=self.job_id,
            status=self.status,
            progress=self.progress,
            message=self.message,
            started_at=self.started_at,
            finished_at=self.finished_at,
            error=self.error,
            snapshot_version=self.snapshot_version,
        )


class RebuildTracker:
    """Runs index rebuilds as background jobs and reports their status.

    Parameters
    ----------
    manager:
        The index manager whose structure is rebuilt.
    max_history:
        Finished jobs kept for polling; the oldest are evicted first.
    """

    def __init__(self, manager: IndexManager, max_history: int = 50) -> None:
        self._manager = manager
        self._max_history = max_history
        self._jobs: OrderedDict[str, _JobState] = OrderedDict()
        self._listeners: dict[str, list[Callable]] = {}
        self._active: _JobState | None = None
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_job(self) -> RebuildJobInfo | None:
        return self._active.info() if self._active is not None else None

    def start(self) -> RebuildJobInfo:
        """Launch a rebuild job (must be called from a running event loop)."""
        if self._active is not None and not self._active.status.finished:
            return self._active.info()

        job = _JobState(job_id=uuid.uuid4().hex, message="Queued")
        self._jobs[job.job_id] = job
        self._evict()
        self._active = job
        job.task = asyncio.get_running_loop().create_task(self._run(job))
        self._logger.info("rebuild_job_started", job_id=job.job_id)
        return job.info()

    def get(self, job_id: str) -> RebuildJobInfo:
        """Current status of *job_id*.

        Raises
        ------
        NotFoundError
            If the job id is unknown (or was evicted from history).
        """
        return self._job(job_id).info()

    def cancel(self, job_id: str) -> RebuildJobInfo:
        """Request cancellation.  The previous index snapshot stays published.

        Cancelling a finished job is a no-op.
        """
        job = self._job(job_id)
        if job.status.finished:
            return job.info()
        job.cancel_event.set()
        job.message = "Cancellation requested"
        self._logger.info("rebuild_job_cancel_requested", job_id=job_id)
        return job.info()

    async def wait(self, job_id: str) -> RebuildJobInfo:
        """Wait until *job_id* finishes and return its final status."""
        job = self._job(job_id)
        if job.task is not None and not job.task.done():
            await asyncio.wait({job.task})
        return job.info()

    def register_listener(self, job_id: str, callback: Callable) -> None:
        """Register a sync or async callable receiving :class:`RebuildJobInfo` updates."""
        listeners = self._listeners.setdefault(job_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, job_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _job(self, job_id: str) -> _JobState:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id, what="Rebuild job")
        return job

    def _evict(self) -> None:
        while len(self._jobs) > self._max_history:
            oldest_id, oldest = next(iter(self._jobs.items()))
            if not oldest.status.finished:
                break
            del self._jobs[oldest_id]
            self._listeners.pop(oldest_id, None)

    async def _run(self, job: _JobState) -> None:
        job.status = RebuildStatus.RUNNING
        job.message = "Building index"
        await self._notify(job)

        def on_progress(fraction: float) -> None:
            # Called from the build thread; a float store is atomic.
            job.progress = round(max(0.0, min(1.0, fraction)) * 100.0, 1)

        try:
            snapshot = await self._manager.rebuild(job.cancel_event, on_progress)
        except (RebuildCancelledError, asyncio.CancelledError) as exc:
            self._finish(job, RebuildStatus.CANCELLED, "Rebuild cancelled")
            await self._notify(job)
            if isinstance(exc, asyncio.CancelledError):
                raise
            return
        except IndexBuildError as exc:
            self._finish(job, RebuildStatus.FAILED, "Rebuild failed", error=str(exc))
            self._logger.error("rebuild_job_failed", job_id=job.job_id, error=str(exc))
            await self._notify(job)
            return

        job.progress = 100.0
        job.snapshot_version = snapshot.version
        self._finish(job, RebuildStatus.COMPLETED, f"Published snapshot v{snapshot.version}")
        self._logger.info(
            "rebuild_job_completed",
            job_id=job.job_id,
            version=snapshot.version,
            kind=snapshot.kind.value,
        )
        await self._notify(job)

    def _finish(
        self, job: _JobState, status: RebuildStatus, message: str, error: str | None = None
    ) -> None:
        job.status = status
        job.message = message
        job.error = error
        job.finished_at = utc_now()
        if self._active is job:
            self._active = None

    async def _notify(self, job: _JobState) -> None:
        """Invoke listeners for *job*; a failing listener is logged and skipped."""
        info = job.info()
        for callback in list(self._listeners.get(job.job_id, [])):
            try:
                result = callback(info)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    job_id=job.job_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
