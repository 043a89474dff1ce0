import json
from types import SimpleNamespace

import httpx
import pytest

from narriq import elevenlabs_client, llm, replicate_client, scraper, settings, worker_client
from narriq.errors import CollaboratorError


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(replicate_client, "asyncio", SimpleNamespace(sleep=_sleep))
    return sleeps


@pytest.mark.anyio
async def test_openai_calls_fail_fast_without_a_key():
    assert llm.is_configured() is False
    with pytest.raises(CollaboratorError) as exc:
        await llm.generate_script({"brandName": "Acme"}, "16:9", 5)
    assert exc.value.provider == "openai"
    assert exc.value.message == "openai: OPENAI_API_KEY is not set"


@pytest.mark.anyio
async def test_every_chat_call_checks_the_key_before_reading_its_input():
    for call in (
        llm.extract_brand_profile("https://example.com", {}),
        llm.score_variant({}, [{}]),
        llm.sketch_storyboard("data:image/png;base64,", "Acme", "bold", 5),
    ):
        with pytest.raises(CollaboratorError, match="OPENAI_API_KEY is not set"):
            await call


def test_replicate_selector_parsing():
    assert replicate_client._parse_selector("owner/model") == ("model", {"owner": "owner", "name": "model"})
    assert replicate_client._parse_selector("owner/model:abc123") == ("version", {"version": "abc123"})
    assert replicate_client._parse_selector("abc123") == ("version", {"version": "abc123"})


def test_replicate_input_uses_ratio_dimensions():
    body = replicate_client.build_input("a cat", "9:16")
    assert (body["width"], body["height"]) == (768, 1344)
    assert body["aspect_ratio"] == "9:16"


@pytest.mark.anyio
async def test_replicate_polls_until_succeeded(monkeypatch, route_httpx, no_sleep):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-token")
    monkeypatch.setattr(settings, "REPLICATE_MODEL_VERSION", "")
    statuses = iter(["starting", "processing", "succeeded"])
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        assert request.headers["Authorization"] == "Token r8-token"
        if request.method == "POST":
            assert json.loads(request.content)["input"]["prompt"] == "a cat"
            return httpx.Response(201, json={"id": "pred1", "status": "starting"})
        status = next(statuses)
        output = ["https://replicate.delivery/cat.webp"] if status == "succeeded" else None
        return httpx.Response(200, json={"id": "pred1", "status": status, "output": output})

    route_httpx(handler)
    url = await replicate_client.create_and_wait_image("a cat", "16:9")

    assert url == "https://replicate.delivery/cat.webp"
    assert requests[0] == ("POST", "/v1/models/black-forest-labs/flux-schnell/predictions")
    assert requests[1:] == [("GET", "/v1/predictions/pred1")] * 3
    assert len(no_sleep) == 2


@pytest.mark.anyio
async def test_replicate_failed_prediction_is_a_collaborator_error(monkeypatch, route_httpx, no_sleep):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-token")
    monkeypatch.setattr(settings, "REPLICATE_MODEL_VERSION", "abc123")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred1"})
        return httpx.Response(200, json={"status": "failed", "error": "NSFW"})

    route_httpx(handler)
    with pytest.raises(CollaboratorError) as exc:
        await replicate_client.create_and_wait_image("a cat")
    assert "NSFW" in exc.value.message


@pytest.mark.anyio
async def test_replicate_requires_a_token():
    with pytest.raises(CollaboratorError):
        await replicate_client.create_and_wait_image("a cat")


@pytest.mark.anyio
async def test_elevenlabs_retries_rate_limits(monkeypatch, route_httpx):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-key")
    sleeps = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(elevenlabs_client, "asyncio", SimpleNamespace(sleep=_sleep))
    responses = iter([httpx.Response(429), httpx.Response(429), httpx.Response(200, content=b"mp3")])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["xi-api-key"] == "xi-key"
        assert request.url.path == f"/v1/text-to-speech/{settings.DEFAULT_ELEVENLABS_VOICE_ID}"
        return next(responses)

    route_httpx(handler)
    assert await elevenlabs_client.tts_to_bytes("Hello") == b"mp3"
    assert sleeps == [1, 2]


@pytest.mark.anyio
async def test_elevenlabs_other_errors_are_not_retried(monkeypatch, route_httpx):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-key")
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401)

    route_httpx(handler)
    with pytest.raises(CollaboratorError) as exc:
        await elevenlabs_client.tts_to_bytes("Hello")
    assert exc.value.message == "elevenlabs: HTTP 401"
    assert len(calls) == 1


@pytest.mark.anyio
async def test_dispatch_posts_job_to_worker(monkeypatch, route_httpx):
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "http://worker.test/")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(202, json={"jobId": "job_1", "status": "accepted"})

    route_httpx(handler)
    assert await worker_client.dispatch_render({"jobId": "job_1"}) == {"jobId": "job_1", "status": "accepted"}
    assert seen == [("http://worker.test/render", {"jobId": "job_1"})]


@pytest.mark.anyio
async def test_dispatch_failure_is_a_collaborator_error(monkeypatch, route_httpx):
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "http://worker.test")
    route_httpx(lambda request: httpx.Response(503))
    with pytest.raises(CollaboratorError) as exc:
        await worker_client.dispatch_render({"jobId": "job_1"})
    assert exc.value.provider == "render-worker"


@pytest.mark.anyio
async def test_fetch_html_sends_user_agent(route_httpx):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["User-Agent"] == scraper.USER_AGENT
        return httpx.Response(200, text="<title>Hi</title>")

    route_httpx(handler)
    assert await scraper.fetch_html("https://example.com") == "<title>Hi</title>"


@pytest.mark.anyio
async def test_fetch_html_error_is_a_collaborator_error(route_httpx):
    route_httpx(lambda request: httpx.Response(404))
    with pytest.raises(CollaboratorError) as exc:
        await scraper.fetch_html("https://example.com/missing")
    assert exc.value.provider == "website"
