"""
Pydantic models for the ad generation pipeline.

Records are stored and served with camelCase field names; Python code uses
snake_case attributes. Every event topic has exactly one payload type, see
TOPIC_PAYLOADS at the bottom of the module.
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys, as stored and served."""
        return self.model_dump(by_alias=True, mode="json")


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    PLAYFUL = "playful"
    LUXURY = "luxury"
    TECHNICAL = "technical"
    FRIENDLY = "friendly"


class FontStyle(str, Enum):
    MODERN = "modern"
    CLASSIC = "classic"
    BOLD = "bold"
    ELEGANT = "elegant"
    MINIMAL = "minimal"


class VisualStyle(str, Enum):
    MINIMALIST = "minimalist"
    VIBRANT = "vibrant"
    CORPORATE = "corporate"
    ARTISTIC = "artistic"
    TECH = "tech"


class Transition(str, Enum):
    FADE = "fade"
    CUT = "cut"
    DISSOLVE = "dissolve"
    SLIDE = "slide"


class CameraMotion(str, Enum):
    ZOOM_IN = "zoom-in"
    ZOOM_OUT = "zoom-out"
    PAN_LEFT = "pan-left"
    PAN_RIGHT = "pan-right"
    STATIC = "static"


class ProjectStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"


class VariantStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class RenderStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.COMPLETED, RenderStatus.FAILED)


class RenderQuality(str, Enum):
    PREVIEW = "preview"
    HD = "hd"
    UHD = "4k"


class StepOutcomeKind(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    FAILED = "failed"


def _coerce_enum(enum_cls, default):
    """Build a before-validator that maps unknown values to a default member."""
    allowed = {m.value for m in enum_cls}

    def _coerce(value):
        if isinstance(value, enum_cls):
            return value
        if isinstance(value, str) and value.strip().lower() in allowed:
            return value.strip().lower()
        return default

    return _coerce


class ScrapedImage(CamelModel):
    src: str
    alt: Optional[str] = None


class ScrapedMetadata(CamelModel):
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    og_image: Optional[str] = None
    favicon: Optional[str] = None


class ScrapedData(CamelModel):
    title: str = ""
    description: str = ""
    headings: List[str] = Field(default_factory=list)
    paragraphs: List[str] = Field(default_factory=list)
    images: List[ScrapedImage] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    metadata: ScrapedMetadata = Field(default_factory=ScrapedMetadata)
    colors: List[str] = Field(default_factory=lambda: ["#000000", "#ffffff"])
    fonts: List[str] = Field(default_factory=list)


class BrandHints(CamelModel):
    tone: Optional[str] = None
    audience: Optional[str] = None
    colors: Optional[List[str]] = None


class BrandProfile(CamelModel):
    brand_name: str = Field(min_length=1)
    tagline: str = Field(min_length=1)
    tone: Tone = Tone.PROFESSIONAL
    audience: str = Field(min_length=1)
    industry: str = Field(min_length=1)
    key_messages: List[str] = Field(min_length=1)
    primary_color: str = "#2563eb"
    secondary_color: str = "#1e40af"
    accent_color: str = "#f59e0b"
    font_style: FontStyle = FontStyle.MODERN
    visual_style: VisualStyle = VisualStyle.MINIMALIST
    call_to_action: str = Field(min_length=1)

    @field_validator("tone", mode="before")
    @classmethod
    def coerce_tone(cls, value):
        return _coerce_enum(Tone, Tone.PROFESSIONAL)(value)

    @field_validator("font_style", mode="before")
    @classmethod
    def coerce_font_style(cls, value):
        return _coerce_enum(FontStyle, FontStyle.MODERN)(value)

    @field_validator("visual_style", mode="before")
    @classmethod
    def coerce_visual_style(cls, value):
        return _coerce_enum(VisualStyle, VisualStyle.MINIMALIST)(value)

    @field_validator("key_messages")
    @classmethod
    def drop_blank_messages(cls, value: List[str]) -> List[str]:
        cleaned = [m.strip() for m in value if isinstance(m, str) and m.strip()]
        if not cleaned:
            raise ValueError("keyMessages must contain at least one non-empty message")
        return cleaned


class RenderBrand(CamelModel):
    """The slice of a brand profile the render worker needs."""
    brand_name: str
    primary_color: str
    secondary_color: str


class Music(CamelModel):
    mood: str = "upbeat"
    tempo: str = "fast"


class Scene(CamelModel):
    scene_number: int = Field(ge=1)
    duration: float = Field(gt=0)
    visual_description: str
    text_overlay: Optional[str] = None
    voiceover: str = ""
    transition: Transition = Transition.FADE
    camera_motion: Optional[CameraMotion] = None
    image_url: Optional[str] = None
    image_prompt: Optional[str] = None
    audio_key: Optional[str] = None

    @field_validator("transition", mode="before")
    @classmethod
    def coerce_transition(cls, value):
        return _coerce_enum(Transition, Transition.FADE)(value)

    @field_validator("camera_motion", mode="before")
    @classmethod
    def coerce_camera_motion(cls, value):
        if value is None:
            return None
        return _coerce_enum(CameraMotion, CameraMotion.STATIC)(value)


def _check_scene_timeline(scenes: List[Scene], duration: float) -> None:
    numbers = [s.scene_number for s in scenes]
    if numbers != list(range(1, len(scenes) + 1)):
        raise ValueError("scene numbers must be 1-based and contiguous")
    total = sum(s.duration for s in scenes)
    if abs(total - duration) > 1e-6:
        raise ValueError(f"scene durations sum to {total}, expected {duration}")


class VariantScript(CamelModel):
    variant_id: str
    aspect_ratio: AspectRatio
    duration: float = 5.0
    scenes: List[Scene] = Field(min_length=1)
    music: Music = Field(default_factory=Music)

    @model_validator(mode="after")
    def check_timeline(self):
        _check_scene_timeline(self.scenes, self.duration)
        return self


class Variant(CamelModel):
    variant_id: str
    aspect_ratio: AspectRatio
    status: VariantStatus = VariantStatus.PENDING
    duration: float = 5.0
    scenes: List[Scene] = Field(default_factory=list)
    music: Music = Field(default_factory=Music)

    @model_validator(mode="after")
    def check_timeline(self):
        if self.scenes:
            _check_scene_timeline(self.scenes, self.duration)
        return self


class SceneImage(CamelModel):
    scene_number: int
    image_url: str
    image_prompt: str


class VariantImages(CamelModel):
    variant_id: str
    aspect_ratio: AspectRatio
    scenes: List[SceneImage]


class ModerationResult(CamelModel):
    variant_id: str
    flagged: bool = False
    categories: Dict[str, bool] = Field(default_factory=dict)
    scores: Dict[str, float] = Field(default_factory=dict)
    skipped: bool = False


def _score(value) -> int:
    try:
        return max(0, min(100, int(round(float(value)))))
    except (TypeError, ValueError):
        return 0


class AnalyticsRecord(CamelModel):
    variant_id: str
    aspect_ratio: AspectRatio
    engagement_score: int = Field(ge=0, le=100)
    clarity_score: int = Field(ge=0, le=100)
    brand_alignment_score: int = Field(ge=0, le=100)
    cta_effectiveness_score: int = Field(ge=0, le=100)
    overall_score: int = Field(ge=0, le=100)
    predicted_ctr: str = Field(default="2.5%", alias="predictedCTR")
    suggestions: List[str] = Field(default_factory=list)
    fallback: bool = False

    @field_validator(
        "engagement_score", "clarity_score", "brand_alignment_score",
        "cta_effectiveness_score", "overall_score", mode="before",
    )
    @classmethod
    def clamp_score(cls, value):
        return _score(value)

    @field_validator("predicted_ctr", mode="before")
    @classmethod
    def format_ctr(cls, value):
        if isinstance(value, (int, float)):
            return f"{value:.1f}%"
        return value


class TtsResult(CamelModel):
    variant_id: str
    audio_key: Optional[str] = None
    duration: float = 5.0
    provider: str
    error: Optional[str] = None


class RenderJobRef(CamelModel):
    job_id: str
    variant_id: str
    status: RenderStatus = RenderStatus.QUEUED


class Project(CamelModel):
    project_id: str
    url: str
    brand_profile: Optional[BrandProfile] = None
    variants: List[Variant] = Field(default_factory=list)
    render_jobs: List[RenderJobRef] = Field(default_factory=list)
    status: ProjectStatus = ProjectStatus.PENDING
    review: Optional[str] = None
    created_at: int
    updated_at: Optional[int] = None

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.variant_id == variant_id), None)


class RenderJob(CamelModel):
    job_id: str
    project_id: str
    variant_id: str
    quality: RenderQuality = RenderQuality.PREVIEW
    watermark: bool = True
    status: RenderStatus = RenderStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    message: Optional[str] = None
    created_at: int
    updated_at: Optional[int] = None
    output_url: Optional[str] = None
    error: Optional[str] = None
    duration: Optional[float] = None
    file_size: Optional[int] = None
    version: int = 0
    source: str = "simulated"


class StepOutcome(CamelModel):
    step: str
    topic: str
    outcome: StepOutcomeKind
    emitted: List[str] = Field(default_factory=list)
    detail: Optional[str] = None
    at: int


def _check_http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return value.strip()


class GenerateRequest(CamelModel):
    url: Optional[str] = None
    google_maps_id: Optional[str] = None
    aspect_ratios: List[AspectRatio] = Field(
        default_factory=lambda: [AspectRatio.LANDSCAPE], min_length=1, max_length=3
    )
    brand_hints: Optional[BrandHints] = None
    # Fixed 5 second videos
    duration: float = Field(default=5.0, ge=5, le=5)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_http_url(value)

    @field_validator("aspect_ratios")
    @classmethod
    def dedupe_aspect_ratios(cls, value: List[AspectRatio]) -> List[AspectRatio]:
        return list(dict.fromkeys(value))


class RenderRequest(CamelModel):
    project_id: str = Field(min_length=1)
    variant_id: str = Field(min_length=1)
    quality: RenderQuality = RenderQuality.PREVIEW
    watermark: bool = True


class SketchHints(CamelModel):
    brand_name: Optional[str] = None
    tone: Optional[str] = None
    duration: Optional[float] = None


class SketchRequest(CamelModel):
    image_data: Optional[str] = None
    project_id: Optional[str] = None
    hints: Optional[SketchHints] = None


class WorkerProgress(CamelModel):
    job_id: str
    progress: int = Field(ge=0, le=100)
    message: Optional[str] = None


class WorkerComplete(CamelModel):
    job_id: str
    output_url: str
    duration: Optional[float] = None
    file_size: Optional[int] = None


class WorkerFailed(CamelModel):
    job_id: str
    error: str


class AdGenerationStarted(CamelModel):
    project_id: str
    url: str
    aspect_ratios: List[AspectRatio] = Field(min_length=1, max_length=3)
    brand_hints: Optional[BrandHints] = None
    duration: float = 5.0


class SiteScraped(AdGenerationStarted):
    scraped_data: ScrapedData


class BrandExtracted(SiteScraped):
    brand_profile: BrandProfile


class ScriptsGenerated(CamelModel):
    project_id: str
    url: str
    brand_profile: BrandProfile
    scripts: List[VariantScript] = Field(min_length=1)


class ModerationDecision(ScriptsGenerated):
    moderation_results: List[ModerationResult]


class ImagesGenerated(ScriptsGenerated):
    variants: List[VariantImages]


class AnalyticsScored(ImagesGenerated):
    analytics: List[AnalyticsRecord]


class TtsCompleted(AnalyticsScored):
    tts_results: List[TtsResult]


class RenderDispatch(CamelModel):
    job_id: str
    project_id: str
    variant_id: str
    aspect_ratio: AspectRatio
    scenes: List[Scene]
    music: Music = Field(default_factory=Music)
    watermark: bool = True
    quality: RenderQuality = RenderQuality.PREVIEW
    brand_profile: RenderBrand


class VariantSummary(CamelModel):
    variant_id: str
    aspect_ratio: AspectRatio
    status: VariantStatus


class AdGenerationCompleted(CamelModel):
    project_id: str
    brand_profile: BrandProfile
    variants: List[VariantSummary]
    render_jobs: List[RenderJobRef]
    analytics: List[AnalyticsRecord] = Field(default_factory=list)


class ReviewRequired(CamelModel):
    project_id: str
    flagged_variants: List[str]
    moderation_results: List[ModerationResult]


class CleanupCompleted(CamelModel):
    cleaned_count: int
    project_ids: List[str] = Field(default_factory=list)
    timestamp: str


TOPIC_PAYLOADS: Dict[str, type] = {
    "ad.generation.started": AdGenerationStarted,
    "site.scraped": SiteScraped,
    "brand.extracted": BrandExtracted,
    "scripts.generated": ScriptsGenerated,
    "moderation.passed": ModerationDecision,
    "moderation.flagged": ModerationDecision,
    "images.generated": ImagesGenerated,
    "analytics.scored": AnalyticsScored,
    "tts.completed": TtsCompleted,
    "render.enqueued": RenderDispatch,
    "render.requested": RenderDispatch,
    "ad.generation.completed": AdGenerationCompleted,
    "review.required": ReviewRequired,
    "cleanup.completed": CleanupCompleted,
}
