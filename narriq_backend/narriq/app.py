import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Ensure .env is loaded before importing modules that read provider keys
from . import settings
from . import elevenlabs_client, llm, replicate_client, worker_client
from .analytics import platform_summary, project_summary
from .cleanup import create_scheduler
from .errors import NarriqError, NotFoundError, ValidationError
from .kv_storage import KVStorage
from .models import (
    GenerateRequest,
    Project,
    ProjectStatus,
    RenderRequest,
    SketchRequest,
    StepOutcomeKind,
    Variant,
    WorkerComplete,
    WorkerFailed,
    WorkerProgress,
)
from .render_jobs import RenderJobService, dispatch_payload, estimated_time
from .steps import register_pipeline
from .storyboard import sketch_to_storyboard
from .utils import iso_now, new_project_id, now_ms, variant_id_for
from .workflow import WorkflowEngine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SECONDS_PER_VARIANT = 30


def create_app(store: Optional[KVStorage] = None, engine: Optional[WorkflowEngine] = None) -> FastAPI:
    if store is None:
        store = engine.store if engine is not None else KVStorage.from_settings()
    if engine is None:
        engine = register_pipeline(WorkflowEngine(store))
    render_jobs = RenderJobService(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.has_all_keys()
        scheduler = None
        if settings.CLEANUP_ENABLED:
            scheduler = create_scheduler(store, engine)
            scheduler.start()
            logger.info("Cleanup scheduler started (hourly)")
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await engine.shutdown()

    app = FastAPI(title="Narriq API", version=settings.API_VERSION, lifespan=lifespan)
    app.state.store = store
    app.state.engine = engine
    app.state.render_jobs = render_jobs

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(NarriqError)
    async def narriq_error_handler(request: Request, exc: NarriqError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [{k: v for k, v in e.items() if k not in ("ctx", "url")} for e in exc.errors()]
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": jsonable_encoder(details)})

    async def pending_status(project_id: str, project: dict) -> str:
        if project.get("review") == "required":
            return "review_required"
        events = await engine.event_log(project_id)
        if any(e.get("outcome") == StepOutcomeKind.FAILED.value for e in events):
            return "stalled"
        if now_ms() - project.get("createdAt", now_ms()) > settings.STALL_TIMEOUT_S * 1000:
            return "stalled"
        return "processing"

    async def ready_project(project_id: str) -> dict:
        project = await store.get("projects", project_id)
        if project is None:
            raise NotFoundError("Project not found", projectId=project_id)
        if project.get("status") != ProjectStatus.READY.value:
            raise NotFoundError("Project not found", projectId=project_id,
                                status=await pending_status(project_id, project))
        return project

    @app.get("/api/health")
    async def health():
        missing = settings.missing_keys()
        logger.info(f"Health check: missing keys = {missing}")
        return {
            "status": "healthy",
            "service": "narriq-api",
            "version": settings.API_VERSION,
            "timestamp": iso_now(),
            "capabilities": {
                "quickcreate": True,
                "tts": True,
                "imageGeneration": True,
                "analytics": True,
                "contentModeration": True,
            },
            "providers": {
                "openai": llm.is_configured(),
                "replicate": replicate_client.is_configured(),
                "elevenlabs": elevenlabs_client.is_configured(),
                "renderWorker": worker_client.is_configured(),
                "imageProvider": settings.IMAGE_PROVIDER,
                "ttsProvider": settings.TTS_PROVIDER,
                "renderProgressMode": render_jobs.mode,
            },
            "steps": engine.topology(),
        }

    @app.post("/api/generate")
    async def generate(req: GenerateRequest):
        if not req.url and not req.google_maps_id:
            raise ValidationError("Either url or googleMapsId must be provided")

        project_id = new_project_id()
        url = req.url or f"https://maps.google.com/maps?cid={req.google_maps_id}"
        logger.info(f"Ad generation started for {url}: {project_id} {[r.value for r in req.aspect_ratios]}")

        skeleton = Project(
            project_id=project_id,
            url=url,
            variants=[Variant(variant_id=variant_id_for(project_id, r.value), aspect_ratio=r) for r in req.aspect_ratios],
            status=ProjectStatus.PENDING,
            created_at=now_ms(),
        )
        await store.set("projects", project_id, skeleton.dump())

        await engine.emit("ad.generation.started", {
            "projectId": project_id,
            "url": url,
            "aspectRatios": [r.value for r in req.aspect_ratios],
            "brandHints": req.brand_hints.dump() if req.brand_hints else None,
            "duration": req.duration,
        })

        variants = [
            {"variantId": v.variant_id, "aspectRatio": v.aspect_ratio.value, "status": v.status.value}
            for v in skeleton.variants
        ]
        return {
            "projectId": project_id,
            "status": "processing",
            "variants": variants,
            "estimatedTime": len(variants) * SECONDS_PER_VARIANT,
            "message": f"Generating {len(variants)} ad variant(s) for {url}",
        }

    @app.get("/api/project/{project_id}")
    async def get_project(project_id: str):
        project = await ready_project(project_id)
        analytics = await store.get("analytics", project_id) or {}
        return {**project, "projectId": project_id, "analytics": analytics.get("results", [])}

    @app.get("/api/project/{project_id}/events")
    async def get_project_events(project_id: str):
        project = await store.get("projects", project_id)
        events = await engine.event_log(project_id)
        if project is None and not events:
            raise NotFoundError("Project not found", projectId=project_id)
        if project is None:
            status = None
        elif project.get("status") == ProjectStatus.READY.value:
            status = "ready"
        else:
            status = await pending_status(project_id, project)
        return {
            "projectId": project_id,
            "status": status,
            "events": events,
            "deadLetters": await engine.dead_letters(project_id),
        }

    @app.post("/api/render")
    async def render(req: RenderRequest):
        logger.info(f"Render requested for {req.project_id}/{req.variant_id} ({req.quality.value})")
        project = Project.model_validate(await ready_project(req.project_id))
        job = await render_jobs.create(req.project_id, req.variant_id, req.quality, req.watermark, project=project)
        await render_jobs.attach_to_project(job)
        await engine.emit("render.requested", dispatch_payload(job, project))
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "message": "Render job queued successfully",
            "estimatedTime": estimated_time(job.quality),
        }

    @app.get("/api/render-status/{job_id}")
    async def render_status(job_id: str):
        job = await render_jobs.poll(job_id)
        body = {
            "jobId": job.job_id,
            "status": job.status.value,
            "progress": job.progress,
            "projectId": job.project_id,
            "variantId": job.variant_id,
            "quality": job.quality.value,
            "message": job.message,
            "outputUrl": job.output_url,
        }
        if job.error:
            body["error"] = job.error
        return body

    @app.get("/api/download/{job_id}")
    async def download(job_id: str):
        logger.info(f"Download requested for {job_id}")
        job = await render_jobs.get(job_id)
        raw = await store.get("projects", job.project_id)
        if raw is None:
            raise NotFoundError("Project not found", projectId=job.project_id)
        project = Project.model_validate(raw)
        variant = project.find_variant(job.variant_id)
        if variant is None:
            raise NotFoundError("Variant not found", variantId=job.variant_id)

        if job.source == "worker" and job.output_url:
            message = "Rendered video is available at outputUrl."
        else:
            message = "Video rendering is simulated. Scene images are returned as the preview."
        return {
            "jobId": job.job_id,
            "projectId": job.project_id,
            "variantId": job.variant_id,
            "aspectRatio": variant.aspect_ratio.value,
            "status": job.status.value,
            "type": "preview",
            "message": message,
            "images": [s.image_url for s in variant.scenes if s.image_url],
            "scenes": [s.dump() for s in variant.scenes],
            "brandName": project.brand_profile.brand_name if project.brand_profile else None,
            "outputUrl": job.output_url,
        }

    @app.post("/api/sketch-to-storyboard")
    async def sketch_storyboard(req: SketchRequest):
        logger.info(f"Converting sketch to storyboard ({len(req.image_data or '')} chars)")
        return await sketch_to_storyboard(req)

    @app.get("/api/analytics")
    async def analytics_overview():
        return await platform_summary(store)

    @app.get("/api/analytics/{project_id}")
    async def analytics_for_project(project_id: str):
        return await project_summary(store, project_id)

    @app.post("/api/worker/progress")
    async def worker_progress(req: WorkerProgress):
        job = await render_jobs.report_progress(req.job_id, req.progress, req.message)
        return job.dump()

    @app.post("/api/worker/complete")
    async def worker_complete(req: WorkerComplete):
        job = await render_jobs.complete(req.job_id, req.output_url, req.duration, req.file_size)
        return job.dump()

    @app.post("/api/worker/failed")
    async def worker_failed(req: WorkerFailed):
        job = await render_jobs.fail(req.job_id, req.error)
        return job.dump()

    return app


app = create_app()
