"""
Website scraping for the brand pipeline.

Fetches a page with httpx and pulls out the text, images, links, metadata,
colors and fonts the brand extractor works from. Parsing is a single pass of
the standard-library HTMLParser; no JS is executed.
"""
import logging
import re
from html.parser import HTMLParser
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse

import httpx

from . import settings
from .errors import CollaboratorError
from .models import ScrapedData, ScrapedImage, ScrapedMetadata

logger = logging.getLogger(__name__)

PROVIDER = "website"
USER_AGENT = "Mozilla/5.0 (compatible; NarriqBot/1.0; +https://narriq.ai)"

MAX_HEADINGS = 10
MAX_PARAGRAPHS = 10
MIN_PARAGRAPH_CHARS = 20
MAX_IMAGES = 20
MAX_LINKS = 20
MAX_COLORS = 10
MAX_FONTS = 5

_COLOR_RE = re.compile(r"#[0-9A-Fa-f]{6}\b|#[0-9A-Fa-f]{3}\b|rgb\([^)]+\)")
_FONT_RE = re.compile(r"font-family:\s*([^;}\"]+)", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")

# Elements whose text we collect, and elements whose text we never want.
_TEXT_TAGS = {"title", "h1", "h2", "h3", "p", "style"}
_SKIP_TAGS = {"script", "noscript", "template", "svg"}


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


class _PageParser(HTMLParser):
    def __init__(self, base_url: str):
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self.title = ""
        self.first_h1 = ""
        self.meta: Dict[str, str] = {}
        self.favicon: Optional[str] = None
        self.headings: List[str] = []
        self.paragraphs: List[str] = []
        self.images: List[ScrapedImage] = []
        self.links: List[str] = []
        self.style_text: List[str] = []
        # stack of (tag, collected text parts)
        self._open: List[tuple] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        a = {k.lower(): (v or "") for k, v in attrs}
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
            return
        if a.get("style"):
            self.style_text.append(a["style"])
        if tag == "meta":
            key = (a.get("property") or a.get("name") or "").lower()
            if key and "content" in a and key not in self.meta:
                self.meta[key] = a["content"].strip()
        elif tag == "link":
            rels = a.get("rel", "").lower().split()
            if "icon" in rels and a.get("href") and self.favicon is None:
                self.favicon = urljoin(self.base_url, a["href"])
        elif tag == "img":
            src = a.get("src", "").strip()
            if src and not src.startswith("data:"):
                self.images.append(ScrapedImage(src=urljoin(self.base_url, src), alt=a.get("alt") or None))
        elif tag == "a":
            href = a.get("href", "").strip()
            if href.startswith("http"):
                self.links.append(href)
        if tag in _TEXT_TAGS:
            self._open.append((tag, []))

    def handle_startendtag(self, tag, attrs):
        # <img/>, <meta/>, <link/> never carry text
        if tag in _TEXT_TAGS or tag in _SKIP_TAGS:
            return
        self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if not self._open or tag not in _TEXT_TAGS:
            return
        # close the innermost matching element, tolerating unclosed children
        for i in range(len(self._open) - 1, -1, -1):
            if self._open[i][0] == tag:
                _, parts = self._open.pop(i)
                del self._open[i:]
                self._finish(tag, "".join(parts))
                return

    def handle_data(self, data):
        if self._skip_depth:
            return
        for _, parts in self._open:
            parts.append(data)

    def _finish(self, tag: str, raw: str):
        if tag == "style":
            self.style_text.append(raw)
            return
        text = _clean(raw)
        if not text:
            return
        if tag == "title" and not self.title:
            self.title = text
        elif tag in ("h1", "h2", "h3"):
            if tag == "h1" and not self.first_h1:
                self.first_h1 = text
            self.headings.append(text)
        elif tag == "p" and len(text) > MIN_PARAGRAPH_CHARS:
            self.paragraphs.append(text)


def _unique(items: List[str], limit: int) -> List[str]:
    return list(dict.fromkeys(items))[:limit]


def parse_html(html: str, base_url: str) -> ScrapedData:
    parser = _PageParser(base_url)
    parser.feed(html)
    parser.close()

    styles = " ".join(parser.style_text)
    colors = _unique(_COLOR_RE.findall(styles), MAX_COLORS)
    fonts = _unique(
        [m.strip().replace("'", "").replace('"', "") for m in _FONT_RE.findall(styles)],
        MAX_FONTS,
    )
    meta = parser.meta

    return ScrapedData(
        title=parser.title or parser.first_h1,
        description=meta.get("description") or meta.get("og:description") or "",
        headings=parser.headings[:MAX_HEADINGS],
        paragraphs=parser.paragraphs[:MAX_PARAGRAPHS],
        images=parser.images[:MAX_IMAGES],
        links=parser.links[:MAX_LINKS],
        metadata=ScrapedMetadata(
            og_title=meta.get("og:title"),
            og_description=meta.get("og:description"),
            og_image=meta.get("og:image"),
            favicon=parser.favicon,
        ),
        colors=colors or ["#000000", "#ffffff"],
        fonts=fonts,
    )


def fallback_scraped(url: str) -> ScrapedData:
    host = urlparse(url).hostname or url
    if host.startswith("www."):
        host = host[4:]
    return ScrapedData(title=host)


async def fetch_html(url: str) -> str:
    try:
        async with httpx.AsyncClient(timeout=settings.SCRAPE_TIMEOUT_S, follow_redirects=True) as client:
            r = await client.get(url, headers={"User-Agent": USER_AGENT})
            r.raise_for_status()
            return r.text
    except httpx.HTTPError as e:
        logger.warning(f"Fetching {url} failed: {e}")
        raise CollaboratorError(PROVIDER, f"fetch of {url} failed: {e}", cause=e)


async def scrape(url: str) -> ScrapedData:
    html = await fetch_html(url)
    data = parse_html(html, url)
    logger.info(f"Scraped {url}: {len(data.images)} images, {len(data.paragraphs)} paragraphs")
    return data
