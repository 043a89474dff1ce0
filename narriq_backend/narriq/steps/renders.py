from typing import List

from ..models import (
    Project,
    ProjectStatus,
    RenderJobRef,
    TtsCompleted,
    Variant,
    VariantStatus,
)
from ..render_jobs import RenderJobService, dispatch_payload
from ..utils import now_ms
from .images import placeholder_image

NAME = "enqueue-renders"
DESCRIPTION = "Enqueues watermarked preview render jobs for all variants"
SUBSCRIBES = ["tts.completed"]
EMITS = ["render.enqueued", "ad.generation.completed"]


def build_variants(event: TtsCompleted, ctx) -> List[Variant]:
    scripts = {s.variant_id: s for s in event.scripts}
    images = {v.variant_id: v for v in event.variants}
    audio = {t.variant_id: t.audio_key for t in event.tts_results}

    variants = []
    for variant_id in dict.fromkeys(list(images) + list(scripts)):
        script = scripts.get(variant_id)
        if script is None:
            ctx.use_fallback(f"no script for variant {variant_id}")
            variants.append(Variant(variant_id=variant_id, aspect_ratio=images[variant_id].aspect_ratio,
                                    status=VariantStatus.FAILED))
            continue
        generated = {s.scene_number: s for s in images[variant_id].scenes} if variant_id in images else {}
        scenes = []
        for scene in script.scenes:
            image = generated.get(scene.scene_number)
            scenes.append(scene.model_copy(update={
                "image_url": image.image_url if image else placeholder_image(script.aspect_ratio.value),
                "image_prompt": image.image_prompt if image else scene.image_prompt,
                "audio_key": audio.get(variant_id),
            }))
        variants.append(Variant(
            variant_id=variant_id,
            aspect_ratio=script.aspect_ratio,
            status=VariantStatus.READY,
            duration=script.duration,
            scenes=scenes,
            music=script.music,
        ))
    return variants


async def handler(event: TtsCompleted, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Enqueuing render jobs for {event.project_id}")
    service = RenderJobService(ctx.store)

    project = Project(
        project_id=event.project_id,
        url=event.url,
        brand_profile=event.brand_profile,
        variants=build_variants(event, ctx),
        status=ProjectStatus.READY,
        created_at=now_ms(),
        updated_at=now_ms(),
    )

    jobs = []
    for variant in project.variants:
        if variant.status != VariantStatus.READY:
            continue
        jobs.append(await service.create(event.project_id, variant.variant_id, project=project))
    project.render_jobs = [RenderJobRef(job_id=j.job_id, variant_id=j.variant_id, status=j.status) for j in jobs]

    final = project.dump()

    def _finalize(current):
        # the skeleton's createdAt drives cleanup; keep it
        if current and current.get("createdAt"):
            final["createdAt"] = current["createdAt"]
        return final
    await ctx.store.update("projects", event.project_id, _finalize)
    ctx.logger.info(f"Project {event.project_id} saved as ready with {len(jobs)} render job(s)")

    for job in jobs:
        await ctx.emit("render.enqueued", dispatch_payload(job, project))

    await ctx.emit("ad.generation.completed", {
        "projectId": event.project_id,
        "brandProfile": event.brand_profile.dump(),
        "variants": [
            {"variantId": v.variant_id, "aspectRatio": v.aspect_ratio.value, "status": v.status.value}
            for v in project.variants
        ],
        "renderJobs": [r.dump() for r in project.render_jobs],
        "analytics": [a.dump() for a in event.analytics],
    })
