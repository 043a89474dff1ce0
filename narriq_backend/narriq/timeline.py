import logging
from typing import Any, List

from pydantic import ValidationError as PydanticValidationError

from .models import Scene

logger = logging.getLogger(__name__)


def normalize_scenes(raw_scenes: Any, duration: float) -> List[Scene]:
    """
    Turn collaborator scene dicts into a valid timeline: scenes renumbered 1..n
    in list order and durations rescaled so they sum to `duration`. Scenes
    without a visual description are dropped. Raises ValueError when nothing
    usable is left.
    """
    if not isinstance(raw_scenes, list):
        raise ValueError("scenes must be a list")
    usable = [s for s in raw_scenes if isinstance(s, dict) and str(s.get("visualDescription") or "").strip()]
    if not usable:
        raise ValueError("no usable scenes")

    weights = []
    for s in usable:
        try:
            w = float(s.get("duration") or 0)
        except (TypeError, ValueError):
            w = 0.0
        weights.append(w if w > 0 else 0.0)
    if not all(w > 0 for w in weights):
        weights = [1.0] * len(usable)
    total = sum(weights)

    scenes = []
    assigned = 0.0
    for i, (s, w) in enumerate(zip(usable, weights)):
        if i == len(usable) - 1:
            # last scene absorbs the rounding so the sum is exact
            length = round(duration - assigned, 6)
        else:
            length = round(duration * w / total, 6)
            assigned += length
        data = {**s, "sceneNumber": i + 1, "duration": length}
        data["voiceover"] = str(data.get("voiceover") or "")
        try:
            scenes.append(Scene.model_validate(data))
        except PydanticValidationError as e:
            raise ValueError(f"scene {i + 1} is invalid: {e}") from e
    return scenes
