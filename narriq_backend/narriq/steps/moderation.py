from .. import llm
from ..errors import CollaboratorError
from ..models import ModerationResult, ScriptsGenerated, VariantScript
from ..utils import iso_now

NAME = "content-moderation"
DESCRIPTION = "AI agent that moderates content for brand safety before rendering"
SUBSCRIBES = ["scripts.generated"]
EMITS = ["moderation.passed", "moderation.flagged"]


def moderation_text(script: VariantScript) -> str:
    return " ".join(f"{s.text_overlay or ''} {s.voiceover}".strip() for s in script.scenes)


async def handler(event: ScriptsGenerated, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Starting content moderation for {event.project_id} ({len(event.scripts)} scripts)")

    results = []
    for script in event.scripts:
        try:
            verdict = await llm.moderate_text(moderation_text(script))
            result = ModerationResult(variant_id=script.variant_id, **verdict)
            ctx.logger.info(f"Script {script.variant_id} moderated: flagged={result.flagged}")
        except CollaboratorError as e:
            ctx.use_fallback(f"moderation skipped for {script.variant_id}: {e.message}")
            result = ModerationResult(variant_id=script.variant_id, flagged=False, skipped=True)
        results.append(result)

    await ctx.store.set("moderation", event.project_id, {
        "projectId": event.project_id,
        "results": [r.dump() for r in results],
        "moderatedAt": iso_now(),
    })

    topic = "moderation.flagged" if any(r.flagged for r in results) else "moderation.passed"
    if topic == "moderation.flagged":
        ctx.logger.warning(f"Content flagged by moderation for {event.project_id}")
    await ctx.emit(topic, {**event.dump(), "moderationResults": [r.dump() for r in results]})
