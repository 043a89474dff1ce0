import httpx
import pytest

from narriq import settings
from narriq.app import create_app
from narriq.kv_storage import KVStorage
from narriq.steps import register_pipeline
from narriq.workflow import WorkflowEngine

PROVIDER_KEYS = (
    "OPENAI_API_KEY",
    "REPLICATE_API_TOKEN",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
)

EXAMPLE_HTML = """<!doctype html>
<html>
<head>
    <title>Example Domain</title>
    <meta name="description" content="This domain is for use in illustrative examples in documents.">
    <meta property="og:title" content="Example">
    <link rel="icon" href="/favicon.ico">
    <style type="text/css">
    body { background-color: #f0f0f2; font-family: -apple-system, "Open Sans", sans-serif; }
    div { background-color: #fdfdff; border-radius: 0.5em; }
    a:link { color: #38488f; }
    </style>
</head>
<body>
<div>
    <h1>Example Domain</h1>
    <p>This domain is for use in illustrative examples in documents. You may use this
    domain in literature without prior coordination or asking for permission.</p>
    <p><a href="https://www.iana.org/domains/example">More information...</a></p>
    <img src="/logo.png" alt="Logo">
</div>
</body>
</html>
"""


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    """No provider keys and no worker: every collaborator call takes its fallback path."""
    for key in PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(settings, "IMAGE_PROVIDER", "openai")
    monkeypatch.setattr(settings, "TTS_PROVIDER", "openai")
    monkeypatch.setattr(settings, "RENDER_WORKER_URL", "")
    monkeypatch.setattr(settings, "RENDER_PROGRESS_MODE", "simulated")
    monkeypatch.setattr(settings, "RENDER_SIMULATED_DURATION_S", 30.0)
    monkeypatch.setattr(settings, "CLEANUP_ENABLED", False)


@pytest.fixture
def example_html():
    return EXAMPLE_HTML


@pytest.fixture
def fake_site(monkeypatch):
    """Serve EXAMPLE_HTML for every scraped URL."""
    from narriq import scraper

    fetched = []

    async def _fetch(url):
        fetched.append(url)
        return EXAMPLE_HTML

    monkeypatch.setattr(scraper, "fetch_html", _fetch)
    return fetched


@pytest.fixture
def store():
    return KVStorage()


@pytest.fixture
def engine(store):
    return register_pipeline(WorkflowEngine(store))


@pytest.fixture
def app(store, engine):
    return create_app(store=store, engine=engine)


@pytest.fixture
def route_httpx(monkeypatch):
    """Send every httpx.AsyncClient created by the code under test to `handler`."""
    original = httpx.AsyncClient

    def _route(handler):
        transport = httpx.MockTransport(handler)

        class _Client(original):
            def __init__(self, *args, **kwargs):
                kwargs["transport"] = transport
                super().__init__(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", _Client)

    return _route
