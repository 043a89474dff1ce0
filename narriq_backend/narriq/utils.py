import time
import uuid
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_project_id() -> str:
    return f"proj_{uuid.uuid4()}"


def new_job_id() -> str:
    return f"job_{uuid.uuid4()}"


def variant_id_for(project_id: str, aspect_ratio: str) -> str:
    # "16:9" -> "16x9"; ratios are unique per project so the id is too
    return f"{project_id}-{aspect_ratio.replace(':', 'x')}"


def audio_key_for(variant_id: str) -> str:
    return f"audio_{variant_id}"
