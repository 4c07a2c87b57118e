"""Daily job scheduler on asyncio, guarded by database leases."""

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from openword_admin.common.config import AdminSettings
from openword_admin.common.database import DatabaseManager
from openword_admin.common.exceptions import JobLeaseError
from openword_admin.common.models import utcnow
from openword_admin.jobs.lease import claim_lease, release_lease

logger = logging.getLogger(__name__)

JobHandler = Callable[[], Awaitable[Any]]


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class DailyJob:
    """A job that fires once a day at a fixed UTC time."""

    name: str
    hour: int
    minute: int
    handler: JobHandler

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate


class JobScheduler:
    """Runs registered daily jobs, at most one run of each job at a time.

    Overlap is refused twice over: within this process by tracking running
    job names, and across processes by the job's lease row.
    """

    def __init__(
        self,
        db: DatabaseManager,
        settings: AdminSettings,
        holder: Optional[str] = None,
    ):
        self.db = db
        self.settings = settings
        self.holder = holder or default_holder()
        self.jobs: dict[str, DailyJob] = {}
        self._running: set[str] = set()
        self._tasks: list[asyncio.Task] = []

    def add_daily_job(
        self,
        name: str,
        handler: JobHandler,
        hour: Optional[int] = None,
        minute: Optional[int] = None,
    ) -> DailyJob:
        job = DailyJob(
            name=name,
            hour=self.settings.scheduler_hour if hour is None else hour,
            minute=self.settings.scheduler_minute if minute is None else minute,
            handler=handler,
        )
        self.jobs[name] = job
        return job

    async def run_job(self, name: str) -> dict:
        """Run one job now, unless it is already running here or elsewhere.

        Always returns a result dict; database errors around the lease come
        back as ``DATABASE_ERROR`` so the daily loop keeps its schedule.
        """
        job = self.jobs[name]
        if name in self._running:
            logger.info("Job %s already running, skipping", name, extra={"job": name})
            return {"success": False, "error": f"Job {name} is already running", "code": "ALREADY_RUNNING"}

        self._running.add(name)
        try:
            try:
                async with self.db.get_session() as session:
                    claimed = await claim_lease(
                        session, name, self.holder, self.settings.job_lease_ttl,
                    )
            except SQLAlchemyError as e:
                logger.error("Could not claim lease for job %s: %s", name, e, extra={"job": name})
                return {"success": False, "error": str(e), "code": "DATABASE_ERROR"}
            if not claimed:
                logger.info("Job %s skipped: lease held by another runner", name, extra={"job": name})
                return JobLeaseError(f"Job {name} is running on another worker").as_result()

            try:
                result = await job.handler()
            except Exception as e:
                logger.exception("Scheduled job %s failed", name, extra={"job": name})
                return {"success": False, "error": str(e), "code": "JOB_FAILED"}
            finally:
                await self._release(name)

            logger.info("Scheduled job %s finished", name, extra={"job": name})
            return {"success": True, "result": result}
        finally:
            self._running.discard(name)

    async def _release(self, name: str) -> None:
        try:
            async with self.db.get_session() as session:
                await release_lease(session, name, self.holder)
        except SQLAlchemyError as e:
            # Left to expire after job_lease_ttl.
            logger.error("Could not release lease for job %s: %s", name, e, extra={"job": name})

    async def _run_daily(self, job: DailyJob) -> None:
        while True:
            now = utcnow()
            next_run = job.next_run(now)
            logger.info("Next %s run at %s", job.name, next_run.isoformat())
            await asyncio.sleep((next_run - now).total_seconds())
            await self.run_job(job.name)

    async def _run_on_startup(self, names: Iterable[str]) -> None:
        await asyncio.sleep(self.settings.startup_check_delay)
        for name in names:
            logger.info("Running startup check for %s", name)
            await self.run_job(name)

    async def run_forever(self, run_on_startup: Iterable[str] = ()) -> None:
        """Block, firing each job at its daily time until stopped."""
        self._tasks = [asyncio.create_task(self._run_daily(job)) for job in self.jobs.values()]
        startup = list(run_on_startup)
        if startup:
            self._tasks.append(asyncio.create_task(self._run_on_startup(startup)))
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Scheduler stopped")
        except Exception:
            logger.exception("Scheduler task failed, stopping the other jobs")
            self.stop()
            raise

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []
