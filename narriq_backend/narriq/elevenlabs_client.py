import httpx, asyncio, logging

from . import settings
from .errors import CollaboratorError

logger = logging.getLogger(__name__)

PROVIDER = "elevenlabs"


def is_configured() -> bool:
    return bool(settings.elevenlabs_api_key())


def _headers():
    api_key = settings.elevenlabs_api_key()
    if not api_key:
        raise CollaboratorError(PROVIDER, "ELEVENLABS_API_KEY is not set")
    return {
        "xi-api-key": api_key,
        "Accept": "audio/mpeg",
        "Content-Type": "application/json"
    }


async def tts_to_bytes(text: str, max_retries: int = 3) -> bytes:
    payload = {
        "text": text,
        "model_id": "eleven_multilingual_v2",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        "output_format": "mp3_22050_32"
    }
    headers = _headers()
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{settings.elevenlabs_voice_id()}"

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                r = await client.post(url, headers=headers, json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 and attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(wait_time)
                continue
            logger.error(f"ElevenLabs request failed with status {e.response.status_code}")
            raise CollaboratorError(PROVIDER, f"HTTP {e.response.status_code}", cause=e)
        except httpx.HTTPError as e:
            # Network errors and timeouts are not retried
            logger.error(f"ElevenLabs request failed: {str(e)}")
            raise CollaboratorError(PROVIDER, f"request failed: {e}", cause=e)
    raise CollaboratorError(PROVIDER, "rate limit exceeded")
