"""
Render job lifecycle.

    queued -> processing -> completed
                         -> failed
    queued -> completed          (simulated clock only, first poll after the full duration)

Two sources can move a job: the simulated clock recomputed on every poll and
the render worker's callbacks. Every write goes through `KVStorage.update`
under the job's key lock and obeys the same rules whichever source made it:
progress never goes down, a terminal job never changes again (late writes are
dropped and logged), and `version` counts accepted writes.

A job polls on the simulated clock while its `source` is "simulated". Jobs
start as "worker" in worker mode. A failed dispatch hands them back to the
clock, and so does a worker that stays silent for longer than the stall
timeout (the first poll after that point makes the switch).
"""
import logging
import math
from typing import Callable, Optional

from . import settings
from .errors import InvalidTransitionError, NotFoundError
from .kv_storage import KVStorage
from .models import Project, RenderJob, RenderJobRef, RenderQuality, RenderStatus
from .utils import new_job_id, now_ms

logger = logging.getLogger(__name__)

JOBS = "renderJobs"
PROJECTS = "projects"

SOURCE_SIMULATED = "simulated"
SOURCE_WORKER = "worker"

# below this the simulated job still counts as queued
QUEUED_BELOW = 10


def estimated_time(quality) -> int:
    return 30 if RenderQuality(quality) == RenderQuality.PREVIEW else 120


def simulated_progress(created_at: int, now: int, total_s: float) -> int:
    elapsed_s = max(0, now - created_at) / 1000.0
    if total_s <= 0:
        return 100
    return min(100, int(math.floor(elapsed_s / total_s * 100)))


def _status_for(progress: int) -> RenderStatus:
    if progress >= 100:
        return RenderStatus.COMPLETED
    if progress < QUEUED_BELOW:
        return RenderStatus.QUEUED
    return RenderStatus.PROCESSING


def advance(job: RenderJob, status: RenderStatus, progress: Optional[int] = None, **fields) -> Optional[RenderJob]:
    """
    Apply one write to a job. Returns the new job, or None when the write is
    dropped because the job is already terminal or nothing would change.
    """
    if job.status.is_terminal:
        logger.info(f"Ignoring {status.value} write to job {job.job_id}: already {job.status.value}")
        return None
    if status == RenderStatus.FAILED and job.status == RenderStatus.QUEUED:
        raise InvalidTransitionError(
            "Cannot fail a job that has not started", jobId=job.job_id, status=job.status.value
        )
    if status == RenderStatus.QUEUED and job.status != RenderStatus.QUEUED:
        status = job.status

    new_progress = job.progress if progress is None else max(job.progress, min(100, int(progress)))
    if status == RenderStatus.COMPLETED:
        new_progress = 100
    elif new_progress >= 100:
        # only a completion may reach 100
        new_progress = 99

    changes = {k: v for k, v in fields.items() if getattr(job, k) != v}
    if status == job.status and new_progress == job.progress and not changes:
        return None

    return job.model_copy(update={
        **changes,
        "status": status,
        "progress": new_progress,
        "version": job.version + 1,
        "updated_at": now_ms(),
    })


class RenderJobService:
    def __init__(self, store: KVStorage, mode: Optional[str] = None, simulated_duration_s: Optional[float] = None,
                 worker_stall_s: Optional[float] = None):
        self.store = store
        self._mode = mode
        self._duration = simulated_duration_s
        self._stall = worker_stall_s

    @property
    def mode(self) -> str:
        return self._mode or settings.RENDER_PROGRESS_MODE

    @property
    def simulated_duration_s(self) -> float:
        return self._duration if self._duration is not None else settings.RENDER_SIMULATED_DURATION_S

    @property
    def worker_stall_s(self) -> float:
        return self._stall if self._stall is not None else settings.RENDER_WORKER_STALL_S

    async def create(
        self,
        project_id: str,
        variant_id: str,
        quality=RenderQuality.PREVIEW,
        watermark: bool = True,
        project: Optional[Project] = None,
    ) -> RenderJob:
        if project is None:
            raw = await self.store.get(PROJECTS, project_id)
            if raw is None:
                raise NotFoundError("Project not found", projectId=project_id)
            project = Project.model_validate(raw)
        if project.find_variant(variant_id) is None:
            raise NotFoundError("Variant not found", variantId=variant_id)

        job = RenderJob(
            job_id=new_job_id(),
            project_id=project_id,
            variant_id=variant_id,
            quality=quality,
            watermark=watermark,
            status=RenderStatus.QUEUED,
            progress=0,
            message="Waiting for render worker",
            created_at=now_ms(),
            source=SOURCE_WORKER if self.mode == SOURCE_WORKER else SOURCE_SIMULATED,
        )
        await self.store.set(JOBS, job.job_id, job.dump())
        logger.info(f"Created render job {job.job_id} for variant {variant_id} ({job.quality.value}, {job.source})")
        return job

    async def get(self, job_id: str) -> RenderJob:
        raw = await self.store.get(JOBS, job_id)
        if raw is None:
            raise NotFoundError("Render job not found", jobId=job_id)
        return RenderJob.model_validate(raw)

    async def _write(self, job_id: str, change: Callable[[RenderJob], Optional[RenderJob]]) -> RenderJob:
        status_changed = []

        def _apply(raw):
            if raw is None:
                raise NotFoundError("Render job not found", jobId=job_id)
            current = RenderJob.model_validate(raw)
            updated = change(current)
            if updated is None:
                return None
            if updated.status != current.status:
                status_changed.append(updated.status)
            return updated.dump()

        stored = RenderJob.model_validate(await self.store.update(JOBS, job_id, _apply))
        if status_changed:
            await self._sync_project_ref(stored)
        return stored

    async def _sync_project_ref(self, job: RenderJob) -> None:
        def _apply(raw):
            if raw is None:
                return None
            refs = raw.get("renderJobs") or []
            for ref in refs:
                if ref.get("jobId") == job.job_id:
                    ref["status"] = job.status.value
                    return raw
            return None
        await self.store.update(PROJECTS, job.project_id, _apply)

    async def attach_to_project(self, job: RenderJob) -> None:
        ref = RenderJobRef(job_id=job.job_id, variant_id=job.variant_id, status=job.status).dump()

        def _apply(raw):
            if raw is None:
                return None
            raw.setdefault("renderJobs", []).append(ref)
            raw["updatedAt"] = now_ms()
            return raw
        await self.store.update(PROJECTS, job.project_id, _apply)

    async def poll(self, job_id: str, now: Optional[int] = None) -> RenderJob:
        job = await self.get(job_id)
        if job.status.is_terminal:
            return job
        now = now if now is not None else now_ms()
        if job.source != SOURCE_SIMULATED:
            silent_s = (now - (job.updated_at or job.created_at)) / 1000.0
            if silent_s <= self.worker_stall_s:
                return job
            logger.warning(f"No render worker callback for job {job_id} in {silent_s:.0f}s, simulating the rest")
            await self.hand_back_to_simulation(job_id, "render worker stalled")
        total = self.simulated_duration_s

        def _tick(current: RenderJob) -> Optional[RenderJob]:
            if current.source != SOURCE_SIMULATED:
                return None
            progress = max(current.progress, simulated_progress(current.created_at, now, total))
            status = _status_for(progress)
            if status == RenderStatus.COMPLETED:
                return advance(current, status, 100, message="Render complete",
                               output_url=f"/api/download/{current.job_id}")
            message = "Waiting for render worker" if status == RenderStatus.QUEUED else f"Rendering... {progress}%"
            return advance(current, status, progress, message=message)

        return await self._write(job_id, _tick)

    async def report_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> RenderJob:
        def _report(current: RenderJob) -> Optional[RenderJob]:
            return advance(current, RenderStatus.PROCESSING, progress,
                           message=message or f"Rendering... {progress}%", source=SOURCE_WORKER)
        job = await self._write(job_id, _report)
        logger.info(f"Job {job_id} progress {job.progress}% ({job.status.value})")
        return job

    async def complete(self, job_id: str, output_url: str, duration: Optional[float] = None,
                       file_size: Optional[int] = None) -> RenderJob:
        def _complete(current: RenderJob) -> Optional[RenderJob]:
            return advance(current, RenderStatus.COMPLETED, 100, message="Render complete",
                           output_url=output_url, duration=duration, file_size=file_size,
                           source=SOURCE_WORKER)
        job = await self._write(job_id, _complete)
        logger.info(f"Job {job_id} completed: {job.output_url}")
        return job

    async def fail(self, job_id: str, error: str) -> RenderJob:
        def _fail(current: RenderJob) -> Optional[RenderJob]:
            return advance(current, RenderStatus.FAILED, message="Render failed", error=error,
                           source=SOURCE_WORKER)
        job = await self._write(job_id, _fail)
        logger.warning(f"Job {job_id} failed: {error}")
        return job

    async def hand_back_to_simulation(self, job_id: str, reason: str) -> RenderJob:
        """Used when the worker could not take the job."""
        def _hand_back(current: RenderJob) -> Optional[RenderJob]:
            if current.source == SOURCE_SIMULATED:
                return None
            return advance(current, current.status, message=f"Simulated render ({reason})",
                           source=SOURCE_SIMULATED)
        return await self._write(job_id, _hand_back)


def dispatch_payload(job: RenderJob, project: Project) -> dict:
    """What the render worker needs to render one job."""
    variant = project.find_variant(job.variant_id)
    if variant is None:
        raise NotFoundError("Variant not found", variantId=job.variant_id)
    if project.brand_profile is None:
        raise NotFoundError("Project not found", projectId=project.project_id)
    brand = project.brand_profile
    return {
        "jobId": job.job_id,
        "projectId": project.project_id,
        "variantId": variant.variant_id,
        "aspectRatio": variant.aspect_ratio.value,
        "scenes": [s.dump() for s in variant.scenes],
        "music": variant.music.dump(),
        "watermark": job.watermark,
        "quality": job.quality.value,
        "brandProfile": {
            "brandName": brand.brand_name,
            "primaryColor": brand.primary_color,
            "secondaryColor": brand.secondary_color,
        },
    }
