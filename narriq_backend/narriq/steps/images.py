from .. import llm, replicate_client, settings
from ..errors import CollaboratorError
from ..models import BrandProfile, ModerationDecision, SceneImage, VariantImages
from ..prompts import IMAGE_PROMPT_TEMPLATE, IMAGE_STYLE_GUIDE

NAME = "image-gen"
DESCRIPTION = "Generates images for each scene using DALL-E or Replicate"
SUBSCRIBES = ["moderation.passed"]
EMITS = ["images.generated"]

PLACEHOLDER_DIMENSIONS = {
    "16:9": "1920x1080",
    "9:16": "1080x1920",
    "1:1": "1080x1080",
}


def placeholder_image(aspect_ratio: str) -> str:
    dim = PLACEHOLDER_DIMENSIONS.get(aspect_ratio, "1920x1080")
    return f"https://placehold.co/{dim}/2563eb/ffffff?text=Scene+Preview"


def image_prompt(visual_description: str, brand: BrandProfile, aspect_ratio: str) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(
        description=visual_description,
        style=IMAGE_STYLE_GUIDE.get(brand.visual_style.value, "professional"),
        primary=brand.primary_color,
        secondary=brand.secondary_color,
        aspect_ratio=aspect_ratio,
    )


async def generate(prompt: str, aspect_ratio: str) -> str:
    if settings.IMAGE_PROVIDER == "replicate":
        return await replicate_client.create_and_wait_image(prompt, aspect_ratio)
    return await llm.generate_image(prompt, aspect_ratio)


async def handler(event: ModerationDecision, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Starting image generation for {event.project_id} via {settings.IMAGE_PROVIDER}")

    variants = []
    for script in event.scripts:
        ratio = script.aspect_ratio.value
        scene_images = []
        for scene in script.scenes:
            prompt = image_prompt(scene.visual_description, event.brand_profile, ratio)
            try:
                url = await generate(prompt, ratio)
                ctx.logger.info(f"Image generated for {script.variant_id} scene {scene.scene_number}")
            except CollaboratorError as e:
                ctx.use_fallback(f"image for {script.variant_id} scene {scene.scene_number}: {e.message}")
                url = placeholder_image(ratio)
            scene_images.append(SceneImage(scene_number=scene.scene_number, image_url=url, image_prompt=prompt))
        variants.append(VariantImages(variant_id=script.variant_id, aspect_ratio=script.aspect_ratio, scenes=scene_images))

    ctx.logger.info(f"All images generated for {event.project_id}: {sum(len(v.scenes) for v in variants)} total")
    await ctx.emit("images.generated", {**event.dump(), "variants": [v.dump() for v in variants]})
