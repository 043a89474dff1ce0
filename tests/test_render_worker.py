import os

import httpx
import pytest

from render_worker import app as worker
from render_worker import ffmpeg

JOB = {
    "jobId": "job_1",
    "variantId": "proj_1-9x16",
    "aspectRatio": "9:16",
    "quality": "preview",
    "watermark": True,
    "scenes": [
        {"sceneNumber": 1, "duration": 2.5, "textOverlay": "Acme's 50% sale: today"},
        {"sceneNumber": 2, "duration": 2.5, "textOverlay": None},
    ],
    "brandProfile": {"brandName": "Acme", "primaryColor": "#2563eb", "secondaryColor": "#1e40af"},
}


def client():
    transport = httpx.ASGITransport(app=worker.app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.parametrize("ratio,quality,size", [
    ("16:9", "preview", (1280, 720)),
    ("16:9", "hd", (1920, 1080)),
    ("9:16", "4k", (1080, 1920)),
    ("1:1", "preview", (720, 720)),
    ("4:3", "preview", (1280, 720)),
])
def test_resolution_per_ratio_and_quality(ratio, quality, size):
    assert ffmpeg.get_resolution(ratio, quality) == size


def _unquote_graph(value: str) -> str:
    out, quoted, chars = [], False, iter(value)
    for c in chars:
        if quoted:
            if c == "'":
                quoted = False
            else:
                out.append(c)
        elif c == "'":
            quoted = True
        elif c == "\\":
            out.append(next(chars))
        else:
            out.append(c)
    assert not quoted
    return "".join(out)


def _unescape(value: str) -> str:
    out, chars = [], iter(value)
    for c in chars:
        out.append(next(chars) if c == "\\" else c)
    return "".join(out)


def test_escape_drawtext():
    assert ffmpeg.escape_drawtext("Acme's 50%: now") == "Acme\\'\\''s 50\\\\%\\: now"


@pytest.mark.parametrize("text", ["Don't miss", "It's 100% off: today only", "back\\slash", "'quoted'"])
def test_escaped_overlay_reads_back_through_every_parser(text):
    graph_value = "'" + ffmpeg.escape_drawtext(text) + "'"
    assert _unescape(_unescape(_unquote_graph(graph_value))) == text


def test_filter_complex_concats_scenes_with_watermark():
    graph = ffmpeg.build_filter_complex(JOB["scenes"], (720, 1280), watermark=True)
    parts = graph.split(";")

    assert parts[0].startswith("[0:v]scale=720:1280")
    assert "trim=duration=2.5" in parts[0]
    assert "drawtext=text='Acme\\'\\''s 50\\\\% sale\\: today'" in parts[0]
    assert "drawtext" not in parts[1]
    assert parts[2] == "[v0][v1]concat=n=2:v=1:a=0[outv]"
    assert ffmpeg.WATERMARK_TEXT in parts[3]
    assert parts[3].endswith("[finalv]")


def test_filter_complex_without_watermark():
    graph = ffmpeg.build_filter_complex(JOB["scenes"], (720, 1280), watermark=False)
    assert ffmpeg.WATERMARK_TEXT not in graph
    assert graph.endswith("[outv]copy[finalv]")


def test_build_command_per_quality():
    preview = ffmpeg.build_command(["a.png", "b.png"], "graph", "out.mp4", "preview")
    assert preview[:2] == [ffmpeg.FFMPEG_PATH, "-y"]
    assert preview.count("-i") == 2
    assert preview[preview.index("-crf") + 1] == "28"
    assert preview[-1] == "out.mp4"

    final = ffmpeg.build_command(["a.png"], "graph", "out.mp4", "hd")
    assert final[final.index("-crf") + 1] == "18"
    assert final[final.index("-map") + 1] == "[finalv]"


def test_placeholder_image(tmp_path):
    path = ffmpeg.create_placeholder_image(str(tmp_path / "scene.png"), 2, size=(64, 36))
    from PIL import Image
    with Image.open(path) as img:
        assert img.size == (64, 36)


@pytest.mark.anyio
async def test_render_endpoint_accepts_job(monkeypatch):
    started = []

    async def fake_render(job):
        started.append(job.job_id)

    monkeypatch.setattr(worker, "render_job", fake_render)
    async with client() as c:
        r = await c.post("/render", json=JOB)
        bad = await c.post("/render", json={**JOB, "scenes": []})
        for task in list(worker._tasks):
            await task

    assert r.status_code == 202
    assert r.json() == {"jobId": "job_1", "status": "accepted"}
    assert started == ["job_1"]
    assert bad.status_code == 422


@pytest.mark.anyio
async def test_health_reports_ffmpeg(monkeypatch):
    monkeypatch.setattr(ffmpeg, "ffmpeg_version", lambda: "ffmpeg version 6.1")
    async with client() as c:
        r = await c.get("/health")
    assert r.json()["ffmpeg_available"] is True
    assert r.json()["ffmpeg_version"] == "ffmpeg version 6.1"

    def missing():
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(ffmpeg, "ffmpeg_version", missing)
    async with client() as c:
        r = await c.get("/health")
    assert r.json()["ffmpeg_available"] is False


@pytest.mark.anyio
async def test_render_job_reports_progress_and_completion(monkeypatch, tmp_path):
    reports = []

    async def fake_report(path, body):
        reports.append((path, body))

    def fake_run(args, timeout=600):
        assert args[args.index("-filter_complex") + 1].count("[v") >= 2
        with open(args[-1], "wb") as f:
            f.write(b"\x00" * 2048)

    monkeypatch.setattr(worker, "WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setattr(worker, "OUTPUT_DIR", str(tmp_path / "out"))
    monkeypatch.setattr(worker, "_report", fake_report)
    monkeypatch.setattr(ffmpeg, "run", fake_run)

    await worker.render_job(worker.RenderJobRequest.model_validate(JOB))

    paths = [p for p, _ in reports]
    assert paths == ["/api/worker/progress"] * 4 + ["/api/worker/complete"]
    assert [b["progress"] for p, b in reports if p == "/api/worker/progress"] == [5, 20, 30, 95]
    complete = reports[-1][1]
    assert complete["outputUrl"].endswith("/output/job_1_preview.mp4")
    assert complete["fileSize"] == 2048
    assert complete["duration"] == 5.0
    assert not os.path.exists(tmp_path / "work" / "job_1")

    async with client() as c:
        r = await c.get("/output/job_1_preview.mp4")
        missing = await c.get("/output/nope.mp4")
    assert r.status_code == 200
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_render_job_reports_failure(monkeypatch, tmp_path):
    reports = []

    async def fake_report(path, body):
        reports.append((path, body))

    def fake_run(args, timeout=600):
        raise RuntimeError("FFmpeg exited with code 1: bad filter")

    monkeypatch.setattr(worker, "WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setattr(worker, "OUTPUT_DIR", str(tmp_path / "out"))
    monkeypatch.setattr(worker, "_report", fake_report)
    monkeypatch.setattr(ffmpeg, "run", fake_run)

    await worker.render_job(worker.RenderJobRequest.model_validate(JOB))

    assert reports[-1] == ("/api/worker/failed", {"jobId": "job_1", "error": "FFmpeg exited with code 1: bad filter"})
