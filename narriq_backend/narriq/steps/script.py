from typing import List

from pydantic import ValidationError as PydanticValidationError

from .. import llm
from ..errors import CollaboratorError
from ..models import BrandExtracted, BrandProfile, Music, Scene, VariantScript
from ..timeline import normalize_scenes
from ..utils import variant_id_for

NAME = "script-gen"
DESCRIPTION = "Generates 5-second ad scripts for variants using OpenAI"
SUBSCRIBES = ["brand.extracted"]
EMITS = ["scripts.generated"]


def fallback_scenes(brand: BrandProfile, duration: float = 5.0) -> List[Scene]:
    half = duration / 2
    return [
        Scene(
            scene_number=1,
            duration=half,
            visual_description=f"{brand.brand_name} logo reveal",
            text_overlay=brand.brand_name,
            voiceover=brand.tagline,
            transition="fade",
            camera_motion="zoom-in",
        ),
        Scene(
            scene_number=2,
            duration=duration - half,
            visual_description="Call to action",
            text_overlay=brand.call_to_action,
            voiceover=f"{brand.call_to_action} now!",
            transition="fade",
            camera_motion="zoom-out",
        ),
    ]


def _music(raw) -> Music:
    if isinstance(raw, dict):
        try:
            return Music.model_validate(raw)
        except PydanticValidationError:
            pass
    return Music()


async def handler(event: BrandExtracted, ctx):
    brand = event.brand_profile
    ctx.logger.info(f"[{ctx.trace_id}] Starting script generation for {event.project_id}: {[r.value for r in event.aspect_ratios]}")

    scripts = []
    for ratio in event.aspect_ratios:
        variant_id = variant_id_for(event.project_id, ratio.value)
        try:
            raw = await llm.generate_script(brand.dump(), ratio.value, event.duration)
            scenes = normalize_scenes(raw.get("scenes"), event.duration)
            music = _music(raw.get("music"))
            ctx.logger.info(f"Script generated for {variant_id}: {len(scenes)} scenes")
        except (CollaboratorError, ValueError) as e:
            ctx.use_fallback(f"script for {variant_id}: {e}")
            scenes = fallback_scenes(brand, event.duration)
            music = Music()
        scripts.append(VariantScript(
            variant_id=variant_id,
            aspect_ratio=ratio,
            duration=event.duration,
            scenes=scenes,
            music=music,
        ))

    await ctx.emit("scripts.generated", {
        "projectId": event.project_id,
        "url": event.url,
        "brandProfile": brand.dump(),
        "scripts": [s.dump() for s in scripts],
    })
