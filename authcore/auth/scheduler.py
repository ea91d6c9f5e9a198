"""Background maintenance: expired-session sweep and key rotation checks.

Each job runs on its own interval. A job never overlaps itself; a run that
is still in flight when the job falls due again is skipped. A failed run is
logged and retried after ``failure_backoff`` instead of the normal interval.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from authcore.auth.audit import AuditEvent, AuditSink, SafeAudit
from authcore.core.clock import Clock, utc_now
from authcore.core.logging import get_logger
from authcore.crypto.key_manager import KeyManager
from authcore.db.repo_sessions import SessionStore

logger = get_logger(__name__)

SWEEP_JOB = "sweep_expired_sessions"
ROTATION_JOB = "rotate_signing_key"
MAX_IDLE = timedelta(seconds=60)

Sleep = Callable[[float], Awaitable[object]]


class MaintenanceJob:
    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[object]],
        interval: timedelta,
        next_run_at: datetime,
    ) -> None:
        self.name = name
        self.action = action
        self.interval = interval
        self.next_run_at = next_run_at
        self.runs = 0
        self.failures = 0
        self.last_error: str | None = None
        self.lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.lock.locked()


class MaintenanceScheduler:
    """Drives the periodic jobs from one asyncio task."""

    def __init__(
        self,
        sessions: SessionStore,
        key_manager: KeyManager | None = None,
        *,
        sweep_interval: timedelta,
        rotation_interval: timedelta,
        failure_backoff: timedelta,
        audit: AuditSink | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._sessions = sessions
        self._keys = key_manager
        self._failure_backoff = failure_backoff
        self._audit = SafeAudit(audit) if audit is not None else None
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

        now = clock()
        self._jobs: dict[str, MaintenanceJob] = {
            SWEEP_JOB: MaintenanceJob(SWEEP_JOB, self._sweep, sweep_interval, now),
        }
        if key_manager is not None:
            self._jobs[ROTATION_JOB] = MaintenanceJob(
                ROTATION_JOB, self._rotate, rotation_interval, now
            )

    @property
    def jobs(self) -> dict[str, MaintenanceJob]:
        return self._jobs

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _sweep(self) -> int:
        return await self._sessions.sweep_expired()

    async def _rotate(self) -> bool:
        assert self._keys is not None
        rotated = await self._keys.rotate_if_needed()
        if rotated and self._audit is not None:
            await self._audit(AuditEvent.KEY_ROTATED, details="Scheduled key rotation")
        return rotated

    async def run_job(self, name: str) -> bool:
        """Run one job now; returns False if it was skipped or failed."""
        job = self._jobs[name]
        if job.running:
            logger.info("maintenance_job_skipped", job=name, reason="already_running")
            return False

        async with job.lock:
            try:
                result = await job.action()
            except Exception as exc:
                job.failures += 1
                job.last_error = str(exc)
                job.next_run_at = self._clock() + self._failure_backoff
                logger.exception(
                    "maintenance_job_failed",
                    job=name,
                    retry_at=job.next_run_at.isoformat(),
                )
                return False
            job.runs += 1
            job.last_error = None
            job.next_run_at = self._clock() + job.interval
            logger.info("maintenance_job_completed", job=name, result=result)
            return True

    async def tick(self) -> list[str]:
        """Run every job that is due; returns the names that were started."""
        now = self._clock()
        due = [job.name for job in self._jobs.values() if job.next_run_at <= now]
        for name in due:
            await self.run_job(name)
        return due

    def seconds_until_next(self) -> float:
        next_due = min(job.next_run_at for job in self._jobs.values())
        wait = min(next_due - self._clock(), MAX_IDLE)
        return max(wait.total_seconds(), 0.0)

    async def run_forever(self) -> None:
        logger.info("maintenance_scheduler_started", jobs=list(self._jobs))
        while not self._stopping.is_set():
            await self.tick()
            await self._sleep(self.seconds_until_next())
        logger.info("maintenance_scheduler_stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever(), name="authcore-maintenance")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
