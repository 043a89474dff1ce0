"""
Sketch to storyboard.

A hand-drawn sketch arrives as a data URL or bare base64. It is re-encoded as
a flattened PNG with Pillow before it goes to the vision model, so odd formats
and transparent canvases reach the model in one shape. Every failure path
answers with the default two-scene storyboard instead of an error.
"""
import base64
import binascii
import io
import logging
from typing import Any, Dict, Optional

from PIL import Image, UnidentifiedImageError

from . import llm
from .errors import CollaboratorError
from .models import SketchHints, SketchRequest
from .timeline import normalize_scenes

logger = logging.getLogger(__name__)

MIN_IMAGE_DATA_CHARS = 100
MAX_SIDE = 1024
DEFAULT_DURATION = 5.0


def fallback_storyboard(hints: Optional[SketchHints] = None) -> Dict[str, Any]:
    brand_name = (hints.brand_name if hints else None) or "Your Brand"
    return {
        "scenes": [
            {
                "sceneNumber": 1,
                "duration": 2.5,
                "visualDescription": "Opening scene with brand introduction",
                "textOverlay": brand_name,
                "cameraMotion": "zoom-in",
                "transition": "fade",
            },
            {
                "sceneNumber": 2,
                "duration": 2.5,
                "visualDescription": "Call to action with engaging visuals",
                "textOverlay": "Learn More",
                "cameraMotion": "static",
                "transition": "fade",
            },
        ],
        "totalDuration": 5,
        "mood": "professional",
        "suggestedMusic": "Upbeat corporate background music",
    }


def normalize_sketch(image_data: str) -> str:
    """Decode a data URL / base64 image and return it as a PNG data URL. Raises ValueError."""
    payload = image_data.split(",", 1)[1] if image_data.startswith("data:") else image_data
    try:
        raw = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"image data is not valid base64: {e}") from e

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                canvas = Image.new("RGB", rgba.size, (255, 255, 255))
                canvas.paste(rgba, mask=rgba.split()[-1])
            else:
                canvas = img.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, EOFError, SyntaxError) as e:
        # SyntaxError and EOFError are how some Pillow plugins report corrupt files
        raise ValueError(f"image data could not be decoded: {e}") from e

    canvas.thumbnail((MAX_SIDE, MAX_SIDE))
    buf = io.BytesIO()
    canvas.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _clean_storyboard(raw: Dict[str, Any], duration: float) -> Dict[str, Any]:
    total = raw.get("totalDuration")
    try:
        total = float(total) if total else duration
    except (TypeError, ValueError):
        total = duration
    scenes = normalize_scenes(raw.get("scenes"), total)
    return {
        "scenes": [s.model_dump(by_alias=True, mode="json", exclude_none=True) for s in scenes],
        "totalDuration": total,
        "mood": str(raw.get("mood") or "professional"),
        "suggestedMusic": str(raw.get("suggestedMusic") or "Upbeat corporate background music"),
    }


async def sketch_to_storyboard(req: SketchRequest) -> Dict[str, Any]:
    hints = req.hints or SketchHints()
    image_data = (req.image_data or "").strip()

    if len(image_data) < MIN_IMAGE_DATA_CHARS:
        logger.warning("No valid image data provided, returning fallback storyboard")
        return {
            "success": True,
            "storyboard": fallback_storyboard(hints),
            "fallback": True,
            "message": "No sketch detected, using default storyboard",
        }

    try:
        data_url = normalize_sketch(image_data)
        raw = await llm.sketch_storyboard(
            data_url,
            brand_name=hints.brand_name or "Your Brand",
            tone=hints.tone or "professional",
            duration=hints.duration or DEFAULT_DURATION,
        )
        storyboard = _clean_storyboard(raw, hints.duration or DEFAULT_DURATION)
    except (ValueError, CollaboratorError) as e:
        logger.error(f"Sketch to storyboard failed: {e}")
        return {
            "success": True,
            "storyboard": fallback_storyboard(hints),
            "fallback": True,
            "error": str(e),
        }

    logger.info(f"Storyboard generated with {len(storyboard['scenes'])} scenes")
    return {"success": True, "storyboard": storyboard, "projectId": req.project_id}
