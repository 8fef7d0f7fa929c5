import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..db.db_client import AsyncPostgresClient

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "recompute_session_statuses"


async def recompute_session_statuses(db_client: AsyncPostgresClient, now: Optional[datetime] = None) -> dict:
    """
    Advances session statuses along upcoming -> active -> expired.

    Each step is a conditional UPDATE, so an admin invalidating a session at the
    same moment can never be overwritten, and expired/invalidated rows are never
    touched.
    """
    now = now or datetime.now(timezone.utc)
    try:
        expired = await db_client.expire_sessions(now)
        activated = await db_client.activate_sessions(now)
    except Exception as e:
        logger.error(f"Session status sweep failed: {e}", exc_info=True)
        return {"expired": 0, "activated": 0}

    if expired or activated:
        logger.info(f"Session status sweep: {activated} activated, {expired} expired.")
    return {"expired": expired, "activated": activated}


class SessionStatusSweeper:
    """
    Owns the periodic status sweep. Nothing runs until ``start()`` is called
    and ``shutdown()`` stops it again.
    """
    def __init__(self, db_client: AsyncPostgresClient, interval_seconds: int = 60, scheduler: Optional[AsyncIOScheduler] = None):
        self.db_client = db_client
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            recompute_session_statuses,
            "interval",
            seconds=self.interval_seconds,
            args=[self.db_client],
            id=SWEEP_JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Session status sweep scheduled every {self.interval_seconds} seconds.")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Session status sweep stopped.")
