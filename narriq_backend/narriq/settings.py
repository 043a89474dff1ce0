import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "60"))
OPENAI_MAX_RETRIES = int(os.getenv("OPENAI_MAX_RETRIES", "3"))

REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

# Rachel - conversational
DEFAULT_ELEVENLABS_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

# "openai" (DALL-E) or "replicate"
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "openai").strip().lower()
# "elevenlabs" or "openai"; elevenlabs is only used when its key is present
TTS_PROVIDER = os.getenv("TTS_PROVIDER", "elevenlabs").strip().lower()

SCRAPE_TIMEOUT_S = float(os.getenv("SCRAPE_TIMEOUT_S", "30"))

# Optional: External render worker URL
RENDER_WORKER_URL = os.getenv("RENDER_WORKER_URL", "").strip()
WORKER_DISPATCH_TIMEOUT_S = float(os.getenv("WORKER_DISPATCH_TIMEOUT_S", "10"))

# "simulated" recomputes progress from elapsed time on every poll,
# "worker" trusts callbacks from the render worker only.
RENDER_PROGRESS_MODE = os.getenv(
    "RENDER_PROGRESS_MODE", "worker" if RENDER_WORKER_URL else "simulated"
).strip().lower()
RENDER_SIMULATED_DURATION_S = float(os.getenv("RENDER_SIMULATED_DURATION_S", "30"))
# a worker-driven job with no callback for this long goes back to the simulated clock
RENDER_WORKER_STALL_S = float(os.getenv("RENDER_WORKER_STALL_S", "300"))

PROJECT_MAX_AGE_HOURS = float(os.getenv("PROJECT_MAX_AGE_HOURS", "24"))
STALL_TIMEOUT_S = float(os.getenv("STALL_TIMEOUT_S", "300"))
CLEANUP_ENABLED = os.getenv("CLEANUP_ENABLED", "true").strip().lower() not in ("0", "false", "no")

KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").strip()
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "").strip()

API_VERSION = "1.0.0"

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


# Provider keys are read at call time so a key added to the environment
# (or removed in tests) takes effect without a reload.

def openai_api_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def replicate_api_token() -> str:
    return os.getenv("REPLICATE_API_TOKEN", "").strip()


def elevenlabs_api_key() -> str:
    return os.getenv("ELEVENLABS_API_KEY", "").strip()


def elevenlabs_voice_id() -> str:
    return os.getenv("ELEVENLABS_VOICE_ID", "").strip() or DEFAULT_ELEVENLABS_VOICE_ID


def missing_keys() -> list:
    missing = []
    if not openai_api_key(): missing.append("OPENAI_API_KEY")
    if not replicate_api_token(): missing.append("REPLICATE_API_TOKEN")
    if not elevenlabs_api_key(): missing.append("ELEVENLABS_API_KEY")
    return missing


def has_all_keys() -> bool:
    missing = missing_keys()
    if missing:
        logger.warning(f"Missing API keys (steps will use fallbacks): {', '.join(missing)}")
    return not missing
