import logging

import httpx

from . import settings
from .errors import CollaboratorError

logger = logging.getLogger(__name__)

PROVIDER = "render-worker"


def is_configured() -> bool:
    return bool(settings.RENDER_WORKER_URL)


async def dispatch_render(job: dict) -> dict:
    """POST a render job to the worker. The worker answers 202 and reports back via callbacks."""
    if not settings.RENDER_WORKER_URL:
        raise CollaboratorError(PROVIDER, "RENDER_WORKER_URL is not set")
    url = f"{settings.RENDER_WORKER_URL.rstrip('/')}/render"
    try:
        async with httpx.AsyncClient(timeout=settings.WORKER_DISPATCH_TIMEOUT_S) as client:
            r = await client.post(url, json=job)
            r.raise_for_status()
            logger.info(f"Dispatched job {job.get('jobId')} to render worker ({r.status_code})")
            return r.json() if r.content else {}
    except httpx.HTTPError as e:
        logger.error(f"Render worker dispatch failed for job {job.get('jobId')}: {e}")
        raise CollaboratorError(PROVIDER, f"dispatch failed: {e}", cause=e)
    except ValueError as e:
        raise CollaboratorError(PROVIDER, f"malformed response: {e}", cause=e)
