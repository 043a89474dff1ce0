import logging
import math
import os
import subprocess
from typing import Dict, List, Tuple

from PIL import Image, ImageDraw

logger = logging.getLogger(__name__)

FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FPS = 25
WATERMARK_TEXT = "NARRIQ PREVIEW"

RESOLUTIONS: Dict[str, Dict[str, Tuple[int, int]]] = {
    "16:9": {"preview": (1280, 720), "final": (1920, 1080)},
    "9:16": {"preview": (720, 1280), "final": (1080, 1920)},
    "1:1": {"preview": (720, 720), "final": (1080, 1080)},
}

PLACEHOLDER_COLORS = ["#2563eb", "#1e40af", "#3b82f6", "#60a5fa"]


def get_resolution(aspect_ratio: str, quality: str) -> Tuple[int, int]:
    tier = "preview" if quality == "preview" else "final"
    return RESOLUTIONS.get(aspect_ratio, RESOLUTIONS["16:9"])[tier]


def escape_drawtext(text: str) -> str:
    """
    Escape overlay text for `drawtext=text='...'` inside a filter graph.

    Three parsers read it in turn: the graph parser, which keeps the quoted
    part literal so a quote has to be closed, escaped and reopened; the option
    parser, where \\ ' and : are special; and drawtext's own expansion of
    \\ and %.
    """
    text = " ".join(text.splitlines())
    text = text.replace("\\", "\\\\").replace("%", "\\%")
    text = text.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")
    return text.replace("'", "'\\''")


def build_filter_complex(scenes: List[dict], resolution: Tuple[int, int], watermark: bool) -> str:
    width, height = resolution
    filters = []
    for i, scene in enumerate(scenes):
        duration = float(scene["duration"])
        frames = int(math.ceil(duration * FPS))
        parts = [
            f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
            f"loop=loop={frames}:size=1:start=0",
            f"setpts=N/{FPS}/TB",
            f"trim=duration={duration:g}",
        ]
        if scene.get("textOverlay"):
            parts.append(
                f"drawtext=text='{escape_drawtext(scene['textOverlay'])}':fontsize=64:fontcolor=white"
                f":borderw=3:bordercolor=black:x=(w-text_w)/2:y=h*0.8"
            )
        filters.append(",".join(parts) + f"[v{i}]")

    inputs = "".join(f"[v{i}]" for i in range(len(scenes)))
    filters.append(f"{inputs}concat=n={len(scenes)}:v=1:a=0[outv]")
    if watermark:
        filters.append(
            f"[outv]drawtext=text='{WATERMARK_TEXT}':fontsize=48:fontcolor=white@0.5"
            f":x=(w-text_w)/2:y=h-100[finalv]"
        )
    else:
        filters.append("[outv]copy[finalv]")
    return ";".join(filters)


def build_command(image_paths: List[str], filter_complex: str, output_path: str, quality: str) -> List[str]:
    args = [FFMPEG_PATH, "-y"]
    for path in image_paths:
        args += ["-loop", "1", "-i", path]
    args += ["-filter_complex", filter_complex, "-map", "[finalv]"]
    if quality == "preview":
        args += ["-c:v", "libx264", "-preset", "fast", "-crf", "28"]
    else:
        args += ["-c:v", "libx264", "-preset", "slow", "-crf", "18"]
    args += ["-pix_fmt", "yuv420p", "-movflags", "+faststart", output_path]
    return args


def run(args: List[str], timeout: float = 600) -> None:
    logger.info(f"Running FFmpeg command: {' '.join(args)}")
    proc = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
    if proc.returncode != 0:
        error_msg = proc.stderr.decode("utf-8", errors="ignore")
        logger.error(f"FFmpeg command failed with return code {proc.returncode}")
        raise RuntimeError(f"FFmpeg exited with code {proc.returncode}: {error_msg[-500:]}")


def create_placeholder_image(path: str, scene_number: int, size: Tuple[int, int] = (1920, 1080)) -> str:
    color = PLACEHOLDER_COLORS[scene_number % len(PLACEHOLDER_COLORS)]
    img = Image.new("RGB", size, color)
    draw = ImageDraw.Draw(img)
    draw.text((size[0] // 2 - 40, size[1] // 2), f"Scene {scene_number}", fill="white")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    img.save(path, format="PNG")
    return path


def ffmpeg_version() -> str:
    result = subprocess.run([FFMPEG_PATH, "-version"], capture_output=True, text=True, timeout=5)
    if result.returncode != 0:
        raise RuntimeError("ffmpeg -version failed")
    return result.stdout.split("\n")[0]
