"""
FFmpeg render worker.

POST /render takes one job, answers 202 and renders in the background,
reporting progress, completion or failure to the Narriq API's worker
callbacks. Rendered files are served from /output.
"""
import asyncio
import logging
import os
import shutil
import subprocess
import tempfile
from typing import List, Optional, Set

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import ffmpeg

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

NARRIQ_API_URL = os.getenv("NARRIQ_API_URL", "http://localhost:8000").rstrip("/")
PUBLIC_URL = os.getenv("WORKER_PUBLIC_URL", "http://localhost:8001").rstrip("/")
WORK_DIR = os.getenv("WORK_DIR", os.path.join(tempfile.gettempdir(), "narriq-worker"))
OUTPUT_DIR = os.getenv("OUTPUT_DIR", os.path.join(tempfile.gettempdir(), "narriq-output"))
DOWNLOAD_TIMEOUT_S = 30
CALLBACK_TIMEOUT_S = 10


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RenderScene(_Camel):
    scene_number: int
    duration: float = Field(gt=0)
    text_overlay: Optional[str] = None
    image_url: Optional[str] = None


class RenderBrand(_Camel):
    brand_name: str = ""
    primary_color: str = "#2563eb"
    secondary_color: str = "#1e40af"


class RenderJobRequest(_Camel):
    job_id: str
    variant_id: str
    aspect_ratio: str = "16:9"
    scenes: List[RenderScene] = Field(min_length=1)
    watermark: bool = True
    quality: str = "preview"
    brand_profile: RenderBrand = Field(default_factory=RenderBrand)


app = FastAPI(title="Narriq Render Worker")
_tasks: Set[asyncio.Task] = set()


async def _report(path: str, body: dict) -> None:
    try:
        async with httpx.AsyncClient(timeout=CALLBACK_TIMEOUT_S) as client:
            r = await client.post(f"{NARRIQ_API_URL}{path}", json=body)
            r.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to report {path} for job {body.get('jobId')}: {e}")


async def report_progress(job_id: str, progress: int, message: str) -> None:
    await _report("/api/worker/progress", {"jobId": job_id, "progress": progress, "message": message})


async def report_completion(job_id: str, output_url: str, duration: float, file_size: int) -> None:
    await _report("/api/worker/complete", {
        "jobId": job_id, "outputUrl": output_url, "duration": duration, "fileSize": file_size,
    })


async def report_failure(job_id: str, error: str) -> None:
    await _report("/api/worker/failed", {"jobId": job_id, "error": error})


async def download_scene_images(scenes: List[RenderScene], job_dir: str) -> List[str]:
    paths = []
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_S, follow_redirects=True) as client:
        for i, scene in enumerate(scenes):
            path = os.path.join(job_dir, f"scene_{i}.png")
            if scene.image_url and scene.image_url.startswith("http"):
                try:
                    r = await client.get(scene.image_url)
                    r.raise_for_status()
                    with open(path, "wb") as f:
                        f.write(r.content)
                    paths.append(path)
                    continue
                except httpx.HTTPError as e:
                    logger.warning(f"Failed to download image for scene {i + 1}, using placeholder: {e}")
            ffmpeg.create_placeholder_image(path, i + 1)
            paths.append(path)
    return paths


async def render_job(job: RenderJobRequest) -> None:
    job_dir = os.path.join(WORK_DIR, job.job_id)
    os.makedirs(job_dir, exist_ok=True)
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    logger.info(f"Starting render job: {job.job_id}")
    try:
        await report_progress(job.job_id, 5, "Downloading assets...")
        image_paths = await download_scene_images(job.scenes, job_dir)

        await report_progress(job.job_id, 20, "Preparing composition...")
        resolution = ffmpeg.get_resolution(job.aspect_ratio, job.quality)
        filter_complex = ffmpeg.build_filter_complex(
            [s.model_dump(by_alias=True) for s in job.scenes], resolution, job.watermark
        )

        await report_progress(job.job_id, 30, "Rendering video...")
        filename = f"{job.job_id}_{job.quality}.mp4"
        output_path = os.path.join(OUTPUT_DIR, filename)
        args = ffmpeg.build_command(image_paths, filter_complex, output_path, job.quality)
        await asyncio.to_thread(ffmpeg.run, args)

        await report_progress(job.job_id, 95, "Finalizing...")
        file_size = os.path.getsize(output_path)
        duration = sum(s.duration for s in job.scenes)
        await report_completion(job.job_id, f"{PUBLIC_URL}/output/{filename}", duration, file_size)
        logger.info(f"Render complete: {job.job_id} ({file_size} bytes)")
    except Exception as e:
        logger.error(f"Render failed: {job.job_id}: {e}", exc_info=True)
        await report_failure(job.job_id, str(e))
    finally:
        shutil.rmtree(job_dir, ignore_errors=True)


@app.get("/health")
def health():
    try:
        ffmpeg_version = ffmpeg.ffmpeg_version()
        ffmpeg_ok = True
    except (OSError, RuntimeError, subprocess.TimeoutExpired) as e:
        ffmpeg_ok = False
        ffmpeg_version = f"Error: {str(e)}"

    return {
        "ok": True,
        "ffmpeg_available": ffmpeg_ok,
        "ffmpeg_version": ffmpeg_version,
        "work_dir": WORK_DIR,
        "active_jobs": len(_tasks),
    }


@app.post("/render", status_code=202)
async def render(job: RenderJobRequest):
    task = asyncio.create_task(render_job(job))
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return {"jobId": job.job_id, "status": "accepted"}


@app.get("/output/{filename}")
def output(filename: str):
    path = os.path.join(OUTPUT_DIR, os.path.basename(filename))
    if not os.path.isfile(path):
        raise HTTPException(404, "output not found")
    return FileResponse(path, media_type="video/mp4", filename=os.path.basename(path))
