import httpx
import pytest

from narriq import llm
from narriq.steps import script


def client_for(app) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


async def generate(client, engine, **body):
    body.setdefault("url", "https://example.com")
    r = await client.post("/api/generate", json=body)
    assert r.status_code == 200, r.text
    await engine.drain()
    return r.json()


@pytest.mark.anyio
async def test_health_reports_providers_and_steps(app):
    async with client_for(app) as client:
        r = await client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["service"] == "narriq-api"
    assert body["providers"]["openai"] is False
    assert body["providers"]["renderProgressMode"] == "simulated"
    assert len(body["steps"]) == 10


@pytest.mark.anyio
async def test_generate_runs_the_whole_pipeline_offline(app, engine, fake_site):
    async with client_for(app) as client:
        r = await client.post("/api/generate", json={"url": "https://example.com", "aspectRatios": ["16:9"]})
        assert r.status_code == 200
        started = r.json()
        project_id = started["projectId"]
        assert started["status"] == "processing"
        assert started["estimatedTime"] == 30
        assert started["variants"] == [{"variantId": f"{project_id}-16x9", "aspectRatio": "16:9", "status": "pending"}]

        await engine.drain()
        r = await client.get(f"/api/project/{project_id}")

    assert fake_site == ["https://example.com"]
    assert r.status_code == 200
    project = r.json()
    assert project["status"] == "ready"
    assert project["brandProfile"]["brandName"] == "Example Domain"
    assert len(project["variants"]) == 1
    variant = project["variants"][0]
    assert variant["aspectRatio"] == "16:9"
    assert variant["status"] == "ready"
    assert [s["duration"] for s in variant["scenes"]] == [2.5, 2.5]
    assert all(s["imageUrl"].startswith("https://placehold.co/1920x1080") for s in variant["scenes"])
    assert len(project["renderJobs"]) == 1
    assert project["analytics"][0]["overallScore"] == 75


@pytest.mark.anyio
async def test_generate_one_variant_per_distinct_ratio(app, engine, fake_site):
    async with client_for(app) as client:
        body = await generate(client, engine, aspectRatios=["16:9", "9:16", "1:1"])
        dup = await generate(client, engine, aspectRatios=["1:1", "1:1"])
        project = (await client.get(f"/api/project/{body['projectId']}")).json()

    ids = [v["variantId"] for v in body["variants"]]
    assert len(ids) == 3
    assert len(set(ids)) == 3
    assert body["estimatedTime"] == 90
    assert sorted(v["aspectRatio"] for v in project["variants"]) == ["16:9", "1:1", "9:16"]
    assert len(project["renderJobs"]) == 3
    assert [v["aspectRatio"] for v in dup["variants"]] == ["1:1"]


@pytest.mark.anyio
async def test_generate_from_google_maps_id(app, engine, fake_site):
    async with client_for(app) as client:
        body = await generate(client, engine, url=None, googleMapsId="12345")
    assert fake_site == ["https://maps.google.com/maps?cid=12345"]
    assert body["status"] == "processing"


@pytest.mark.anyio
@pytest.mark.parametrize("body,error", [
    ({}, "Either url or googleMapsId must be provided"),
    ({"url": "ftp://example.com"}, "Invalid request"),
    ({"url": "https://example.com", "aspectRatios": ["4:3"]}, "Invalid request"),
    ({"url": "https://example.com", "aspectRatios": []}, "Invalid request"),
    ({"url": "https://example.com", "duration": 15}, "Invalid request"),
])
async def test_generate_rejects_bad_requests(app, body, error):
    async with client_for(app) as client:
        r = await client.post("/api/generate", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == error


@pytest.mark.anyio
async def test_pending_project_is_not_found_with_status(app, store):
    await store.set("projects", "proj_pending", {
        "projectId": "proj_pending", "url": "https://example.com", "status": "pending",
        "createdAt": 10 ** 13, "variants": [],
    })
    async with client_for(app) as client:
        r = await client.get("/api/project/proj_pending")
        missing = await client.get("/api/project/proj_missing")
    assert r.status_code == 404
    assert r.json() == {"error": "Project not found", "projectId": "proj_pending", "status": "processing"}
    assert missing.status_code == 404
    assert "status" not in missing.json()


@pytest.mark.anyio
async def test_failed_step_marks_project_stalled(app, engine, fake_site, monkeypatch):
    def broken(brand, duration=5.0):
        raise RuntimeError("template exploded")

    monkeypatch.setattr(script, "fallback_scenes", broken)
    async with client_for(app) as client:
        body = await generate(client, engine)
        r = await client.get(f"/api/project/{body['projectId']}")
        events = (await client.get(f"/api/project/{body['projectId']}/events")).json()

    assert r.status_code == 404
    assert r.json()["status"] == "stalled"
    assert events["status"] == "stalled"
    assert [d["step"] for d in events["deadLetters"]] == ["script-gen"]
    assert "template exploded" in events["deadLetters"][0]["error"]
    assert "content-moderation" not in [e["step"] for e in events["events"]]


@pytest.mark.anyio
async def test_flagged_project_waits_for_review(app, engine, fake_site, monkeypatch):
    async def flag_everything(text):
        return {"flagged": True, "categories": {"hate": True}, "scores": {"hate": 0.99}}

    monkeypatch.setattr(llm, "moderate_text", flag_everything)
    async with client_for(app) as client:
        body = await generate(client, engine)
        r = await client.get(f"/api/project/{body['projectId']}")
    assert r.status_code == 404
    assert r.json()["status"] == "review_required"


@pytest.mark.anyio
async def test_events_lists_step_outcomes(app, engine, fake_site):
    async with client_for(app) as client:
        body = await generate(client, engine)
        r = await client.get(f"/api/project/{body['projectId']}/events")
        missing = await client.get("/api/project/proj_missing/events")

    assert r.status_code == 200
    events = r.json()
    assert events["status"] == "ready"
    assert events["deadLetters"] == []
    outcomes = {e["step"]: e["outcome"] for e in events["events"]}
    assert outcomes["scrape-site"] == "success"
    assert outcomes["brand-extract"] == "fallback"
    assert outcomes["enqueue-renders"] == "success"
    assert outcomes["render-dispatch"] == "success"
    assert missing.status_code == 404


async def ready_project(client, engine):
    body = await generate(client, engine)
    return body["projectId"], body["variants"][0]["variantId"]


@pytest.mark.anyio
async def test_render_then_poll(app, engine, fake_site):
    async with client_for(app) as client:
        project_id, variant_id = await ready_project(client, engine)
        r = await client.post("/api/render", json={"projectId": project_id, "variantId": variant_id, "quality": "hd"})
        assert r.status_code == 200
        queued = r.json()
        await engine.drain()
        status = await client.get(f"/api/render-status/{queued['jobId']}")
        project = (await client.get(f"/api/project/{project_id}")).json()

    assert queued["status"] == "queued"
    assert queued["message"] == "Render job queued successfully"
    assert queued["estimatedTime"] == 120
    body = status.json()
    assert status.status_code == 200
    assert body["status"] in ("queued", "processing")
    assert 0 <= body["progress"] <= 100
    assert body["quality"] == "hd"
    assert queued["jobId"] in [j["jobId"] for j in project["renderJobs"]]


@pytest.mark.anyio
async def test_render_unknown_project_or_variant(app, engine, fake_site):
    async with client_for(app) as client:
        missing = await client.post("/api/render", json={"projectId": "proj_missing", "variantId": "v"})
        project_id, _ = await ready_project(client, engine)
        bad_variant = await client.post("/api/render", json={"projectId": project_id, "variantId": "v"})
        bad_quality = await client.post("/api/render", json={"projectId": project_id, "variantId": "v", "quality": "8k"})

    assert missing.status_code == 404
    assert missing.json()["error"] == "Project not found"
    assert bad_variant.status_code == 404
    assert bad_variant.json()["error"] == "Variant not found"
    assert bad_quality.status_code == 400


@pytest.mark.anyio
async def test_unknown_render_job(app):
    async with client_for(app) as client:
        status = await client.get("/api/render-status/job_missing")
        download = await client.get("/api/download/job_missing")
    assert status.status_code == 404
    assert status.json()["error"] == "Render job not found"
    assert download.status_code == 404


@pytest.mark.anyio
async def test_worker_callbacks_drive_the_job(app, engine, fake_site):
    async with client_for(app) as client:
        project_id, variant_id = await ready_project(client, engine)
        job_id = (await client.post("/api/render", json={"projectId": project_id, "variantId": variant_id})).json()["jobId"]

        too_early = await client.post("/api/worker/failed", json={"jobId": job_id, "error": "boom"})
        progress = await client.post("/api/worker/progress", json={"jobId": job_id, "progress": 40})
        done = await client.post("/api/worker/complete", json={
            "jobId": job_id, "outputUrl": "http://worker.test/output/out.mp4", "duration": 5, "fileSize": 1024,
        })
        late = await client.post("/api/worker/progress", json={"jobId": job_id, "progress": 60})
        status = (await client.get(f"/api/render-status/{job_id}")).json()
        download = (await client.get(f"/api/download/{job_id}")).json()
        unknown = await client.post("/api/worker/progress", json={"jobId": "job_missing", "progress": 10})

    assert too_early.status_code == 409
    assert progress.json()["status"] == "processing"
    assert progress.json()["progress"] == 40
    assert done.json()["status"] == "completed"
    assert late.json()["status"] == "completed"
    assert late.json()["progress"] == 100
    assert status["outputUrl"] == "http://worker.test/output/out.mp4"
    assert download["outputUrl"] == "http://worker.test/output/out.mp4"
    assert download["message"] == "Rendered video is available at outputUrl."
    assert unknown.status_code == 404


@pytest.mark.anyio
async def test_download_returns_scene_preview(app, engine, fake_site):
    async with client_for(app) as client:
        project_id, variant_id = await ready_project(client, engine)
        job_id = (await client.post("/api/render", json={"projectId": project_id, "variantId": variant_id})).json()["jobId"]
        r = await client.get(f"/api/download/{job_id}")

    body = r.json()
    assert r.status_code == 200
    assert body["type"] == "preview"
    assert body["brandName"] == "Example Domain"
    assert len(body["images"]) == 2
    assert len(body["scenes"]) == 2


@pytest.mark.anyio
async def test_sketch_endpoint_falls_back(app):
    async with client_for(app) as client:
        r = await client.post("/api/sketch-to-storyboard", json={"imageData": ""})
    assert r.status_code == 200
    assert r.json()["fallback"] is True
    assert len(r.json()["storyboard"]["scenes"]) == 2


@pytest.mark.anyio
async def test_sketch_endpoint_accepts_null_image_data(app):
    async with client_for(app) as client:
        r = await client.post("/api/sketch-to-storyboard", json={"imageData": None, "hints": {"brandName": "Acme"}})
    assert r.status_code == 200
    assert r.json()["fallback"] is True
    assert r.json()["storyboard"]["scenes"][0]["textOverlay"] == "Acme"


@pytest.mark.anyio
async def test_analytics_summaries(app, engine, fake_site):
    async with client_for(app) as client:
        empty = (await client.get("/api/analytics")).json()
        body = await generate(client, engine, aspectRatios=["16:9", "1:1"])
        overview = (await client.get("/api/analytics")).json()
        project = (await client.get(f"/api/analytics/{body['projectId']}")).json()
        missing = await client.get("/api/analytics/proj_missing")

    assert empty["platform"]["totalProjects"] == 0
    assert empty["platform"]["successRate"] == 0.0

    assert overview["platform"]["totalProjects"] == 1
    assert overview["platform"]["readyProjects"] == 1
    assert overview["platform"]["totalVariants"] == 2
    assert overview["platform"]["totalRenders"] == 2
    assert overview["platform"]["avgScore"] == 75.0
    assert len(overview["topVariants"]) == 2
    assert overview["recentEvents"]
    ats = [e["at"] for e in overview["recentEvents"]]
    assert ats == sorted(ats, reverse=True)

    assert project["averageScore"] == 75.0
    assert project["bestVariant"]["overallScore"] == 75
    assert len(project["results"]) == 2
    assert missing.status_code == 404
    assert missing.json()["error"] == "Analytics not found"
