from pydantic import ValidationError as PydanticValidationError

from .. import llm
from ..errors import CollaboratorError
from ..models import BrandHints, BrandProfile, ScrapedData, SiteScraped

NAME = "brand-extract"
DESCRIPTION = "Extracts brand identity from scraped website data using AI"
SUBSCRIBES = ["site.scraped"]
EMITS = ["brand.extracted"]


def fallback_profile(scraped: ScrapedData) -> BrandProfile:
    colors = scraped.colors
    return BrandProfile(
        brand_name=scraped.title.strip() or "Brand",
        tagline=scraped.description.strip()[:50].strip() or "Your trusted partner",
        audience="General consumers",
        industry="Business",
        key_messages=[scraped.headings[0] if scraped.headings else "Quality products and services"],
        primary_color=colors[0] if len(colors) > 0 else "#2563eb",
        secondary_color=colors[1] if len(colors) > 1 else "#1e40af",
        accent_color=colors[2] if len(colors) > 2 else "#f59e0b",
        call_to_action="Learn More",
    )


def merge_profile(raw: dict, fallback: BrandProfile) -> BrandProfile:
    """Collaborator output over the fallback; blanks keep the fallback value."""
    provided = {k: v for k, v in raw.items() if v not in (None, "", [])}
    return BrandProfile.model_validate({**fallback.dump(), **provided})


def apply_hints(profile: BrandProfile, hints: BrandHints) -> BrandProfile:
    data = profile.dump()
    if hints.tone:
        data["tone"] = hints.tone
    if hints.audience and hints.audience.strip():
        data["audience"] = hints.audience.strip()
    for field, color in zip(("primaryColor", "secondaryColor", "accentColor"), hints.colors or []):
        if color:
            data[field] = color
    return BrandProfile.model_validate(data)


async def handler(event: SiteScraped, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Starting brand extraction for {event.project_id}")
    scraped = event.scraped_data
    fallback = fallback_profile(scraped)

    try:
        raw = await llm.extract_brand_profile(event.url, scraped.dump())
        profile = merge_profile(raw, fallback)
        ctx.logger.info(f"Brand extraction completed for {event.project_id}: {profile.brand_name} ({profile.tone.value})")
    except CollaboratorError as e:
        ctx.use_fallback(f"brand extraction failed: {e.message}")
        profile = fallback
    except PydanticValidationError as e:
        ctx.use_fallback(f"brand profile from model was invalid: {e.error_count()} error(s)")
        profile = fallback

    if event.brand_hints:
        profile = apply_hints(profile, event.brand_hints)

    await ctx.emit("brand.extracted", {**event.dump(), "brandProfile": profile.dump()})
