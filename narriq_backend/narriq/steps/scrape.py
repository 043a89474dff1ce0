from .. import scraper
from ..errors import CollaboratorError
from ..models import AdGenerationStarted

NAME = "scrape-site"
DESCRIPTION = "Scrapes a website to extract content, images, and brand assets"
SUBSCRIBES = ["ad.generation.started"]
EMITS = ["site.scraped"]


async def handler(event: AdGenerationStarted, ctx):
    ctx.logger.info(f"[{ctx.trace_id}] Starting site scrape of {event.url} for {event.project_id}")
    try:
        scraped = await scraper.scrape(event.url)
    except CollaboratorError as e:
        ctx.use_fallback(f"scrape failed: {e.message}")
        scraped = scraper.fallback_scraped(event.url)

    await ctx.emit("site.scraped", {**event.dump(), "scrapedData": scraped.dump()})
