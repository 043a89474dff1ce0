from pydantic import ValidationError as PydanticValidationError

from .. import llm
from ..errors import CollaboratorError
from ..models import AnalyticsRecord, ImagesGenerated, VariantScript
from ..utils import iso_now

NAME = "analytics-agent"
DESCRIPTION = "AI agent that predicts ad performance and provides optimization suggestions"
SUBSCRIBES = ["images.generated"]
EMITS = ["analytics.scored"]


def fallback_record(script: VariantScript) -> AnalyticsRecord:
    return AnalyticsRecord(
        variant_id=script.variant_id,
        aspect_ratio=script.aspect_ratio,
        overall_score=75,
        engagement_score=75,
        clarity_score=80,
        brand_alignment_score=70,
        cta_effectiveness_score=75,
        suggestions=["Unable to analyze - using default scores"],
        predicted_ctr="2.5%",
        fallback=True,
    )


async def handler(event: ImagesGenerated, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Starting analytics for {event.project_id} ({len(event.scripts)} variants)")

    results = []
    for script in event.scripts:
        try:
            raw = await llm.score_variant(event.brand_profile.dump(), [s.dump() for s in script.scenes])
            record = AnalyticsRecord.model_validate({
                **raw,
                "variantId": script.variant_id,
                "aspectRatio": script.aspect_ratio.value,
                "fallback": False,
            })
            ctx.logger.info(f"Variant {script.variant_id} analyzed: overall {record.overall_score}")
        except CollaboratorError as e:
            ctx.use_fallback(f"analytics for {script.variant_id}: {e.message}")
            record = fallback_record(script)
        except PydanticValidationError as e:
            ctx.use_fallback(f"analytics for {script.variant_id} were malformed: {e.error_count()} error(s)")
            record = fallback_record(script)
        results.append(record)

    await ctx.store.set("analytics", event.project_id, {
        "projectId": event.project_id,
        "results": [r.dump() for r in results],
        "analyzedAt": iso_now(),
    })

    await ctx.emit("analytics.scored", {**event.dump(), "analytics": [r.dump() for r in results]})
