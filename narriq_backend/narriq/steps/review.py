from ..models import ModerationDecision
from ..utils import now_ms

NAME = "content-review"
DESCRIPTION = "Holds flagged projects for human review instead of rendering them"
SUBSCRIBES = ["moderation.flagged"]
EMITS = ["review.required"]


async def handler(event: ModerationDecision, ctx):
    flagged = [r.variant_id for r in event.moderation_results if r.flagged]
    ctx.logger.warning(f"[{ctx.trace_id}] Project {event.project_id} needs review: {flagged}")

    await ctx.store.set("reviews", event.project_id, {
        "projectId": event.project_id,
        "flaggedVariants": flagged,
        "moderationResults": [r.dump() for r in event.moderation_results],
        "status": "pending",
        "createdAt": now_ms(),
    })

    def _mark(project):
        if project is None:
            return None
        project["review"] = "required"
        project["updatedAt"] = now_ms()
        return project
    await ctx.store.update("projects", event.project_id, _mark)

    await ctx.emit("review.required", {
        "projectId": event.project_id,
        "flaggedVariants": flagged,
        "moderationResults": [r.dump() for r in event.moderation_results],
    })
