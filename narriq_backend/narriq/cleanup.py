"""
Hourly sweep of expired projects.

A project older than PROJECT_MAX_AGE_HOURS (strictly) is deleted together
with its analytics, event log, moderation results and review entry. Render
jobs and cached audio are left in place.
"""
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from . import settings
from .kv_storage import KVStorage
from .models import CleanupCompleted
from .utils import iso_now, now_ms

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "narriq-cleanup"
# namespaces keyed by projectId that go with the project record
PROJECT_SCOPED = ("analytics", "eventLog", "moderation", "reviews")


async def run_cleanup(store: KVStorage, engine=None, now: Optional[int] = None,
                      max_age_hours: Optional[float] = None) -> CleanupCompleted:
    now = now if now is not None else now_ms()
    max_age_hours = settings.PROJECT_MAX_AGE_HOURS if max_age_hours is None else max_age_hours
    max_age_ms = max_age_hours * 60 * 60 * 1000

    logger.info("Running cleanup job")
    cleaned: List[str] = []
    for project in await store.list_group("projects"):
        project_id = project.get("projectId")
        created_at = project.get("createdAt")
        if not project_id or created_at is None:
            continue
        if now - created_at > max_age_ms:
            await store.delete("projects", project_id)
            for namespace in PROJECT_SCOPED:
                await store.delete(namespace, project_id)
            cleaned.append(project_id)
            logger.info(f"Cleaned up old project {project_id}")

    result = CleanupCompleted(cleaned_count=len(cleaned), project_ids=cleaned, timestamp=iso_now())
    logger.info(f"Cleanup completed: {len(cleaned)} project(s) removed")
    if engine is not None:
        await engine.emit("cleanup.completed", result)
    return result


def create_scheduler(store: KVStorage, engine=None) -> AsyncIOScheduler:
    """Scheduler running the sweep at the top of every hour. Not started."""
    scheduler = AsyncIOScheduler()

    async def _sweep():
        try:
            await run_cleanup(store, engine)
        except Exception as e:
            logger.error(f"Cleanup run failed: {e}", exc_info=True)

    scheduler.add_job(
        func=_sweep,
        trigger=CronTrigger(minute=0),
        id=CLEANUP_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
