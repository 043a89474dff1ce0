from .. import worker_client
from ..errors import CollaboratorError
from ..models import RenderDispatch
from ..render_jobs import SOURCE_WORKER, RenderJobService

NAME = "render-dispatch"
DESCRIPTION = "Hands render jobs to the FFmpeg render worker"
SUBSCRIBES = ["render.enqueued", "render.requested"]
EMITS = []


async def handler(event: RenderDispatch, ctx):
    service = RenderJobService(ctx.store)
    if service.mode != SOURCE_WORKER or not worker_client.is_configured():
        ctx.logger.debug(f"Job {event.job_id} left to simulated progress (mode={service.mode})")
        return

    try:
        await worker_client.dispatch_render(event.dump())
    except CollaboratorError as e:
        ctx.use_fallback(f"dispatch of {event.job_id} failed: {e.message}")
        await service.hand_back_to_simulation(event.job_id, "render worker unavailable")
