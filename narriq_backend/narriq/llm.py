import json
import logging
from typing import Any, Dict, List, Optional

from . import settings
from .errors import CollaboratorError
from .prompts import (
    ANALYTICS_SYSTEM_PROMPT,
    ANALYTICS_USER_TEMPLATE,
    BRAND_SYSTEM_PROMPT,
    BRAND_USER_TEMPLATE,
    SCRIPT_SYSTEM_PROMPT,
    SCRIPT_USER_TEMPLATE,
    STORYBOARD_SYSTEM_PROMPT,
    STORYBOARD_USER_TEMPLATE,
)

logger = logging.getLogger(__name__)

PROVIDER = "openai"

# dall-e-3 only offers these three sizes
DALLE_SIZES = {
    "16:9": "1792x1024",
    "9:16": "1024x1792",
    "1:1": "1024x1024",
}

_client = None
_client_key = None


def is_configured() -> bool:
    return bool(settings.openai_api_key())


def _get_client():
    global _client, _client_key
    api_key = settings.openai_api_key()
    if not api_key:
        raise CollaboratorError(PROVIDER, "OPENAI_API_KEY is not set")
    if _client is None or _client_key != api_key:
        from openai import AsyncOpenAI
        _client = AsyncOpenAI(
            api_key=api_key,
            timeout=settings.OPENAI_TIMEOUT_S,
            max_retries=settings.OPENAI_MAX_RETRIES,
        )
        _client_key = api_key
    return _client


async def chat_json(client, messages: List[Dict[str, Any]], temperature: float = 0.7, max_tokens: int = 2000) -> Dict[str, Any]:
    try:
        resp = await client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content or "{}"
        data = json.loads(content)
    except Exception as e:
        logger.error(f"OpenAI chat completion failed: {str(e)}")
        raise CollaboratorError(PROVIDER, f"chat completion failed: {e}", cause=e)
    if not isinstance(data, dict):
        raise CollaboratorError(PROVIDER, "chat completion did not return a JSON object")
    return data


async def extract_brand_profile(url: str, scraped: Dict[str, Any]) -> Dict[str, Any]:
    client = _get_client()
    logger.info(f"Calling OpenAI to extract brand profile for {url}")
    user = BRAND_USER_TEMPLATE.format(
        url=url,
        title=scraped.get("title", ""),
        description=scraped.get("description", ""),
        headings="\n".join(scraped.get("headings", [])),
        paragraphs="\n\n".join(scraped.get("paragraphs", [])[:5]),
        colors=", ".join(scraped.get("colors", [])),
        fonts=", ".join(scraped.get("fonts", [])),
    )
    return await chat_json(
        client,
        [{"role": "system", "content": BRAND_SYSTEM_PROMPT}, {"role": "user", "content": user}],
        temperature=0.7,
    )


async def generate_script(brand: Dict[str, Any], aspect_ratio: str, duration: float) -> Dict[str, Any]:
    client = _get_client()
    user = SCRIPT_USER_TEMPLATE.format(
        duration=duration,
        brand_name=brand["brandName"],
        tagline=brand["tagline"],
        tone=brand["tone"],
        audience=brand["audience"],
        call_to_action=brand["callToAction"],
        aspect_ratio=aspect_ratio,
    )
    return await chat_json(
        client,
        [{"role": "system", "content": SCRIPT_SYSTEM_PROMPT}, {"role": "user", "content": user}],
        temperature=0.8,
    )


async def score_variant(brand: Dict[str, Any], scenes: List[Dict[str, Any]]) -> Dict[str, Any]:
    client = _get_client()
    lines = "\n".join(
        f'Scene {s["sceneNumber"]}: "{s.get("textOverlay") or ""}" - {s["visualDescription"]}' for s in scenes
    )
    user = ANALYTICS_USER_TEMPLATE.format(
        brand_name=brand["brandName"],
        audience=brand["audience"],
        tone=brand["tone"],
        call_to_action=brand["callToAction"],
        scenes=lines,
    )
    return await chat_json(
        client,
        [{"role": "system", "content": ANALYTICS_SYSTEM_PROMPT}, {"role": "user", "content": user}],
        temperature=0.3,
    )


async def sketch_storyboard(image_data_url: str, brand_name: str, tone: str, duration: float) -> Dict[str, Any]:
    client = _get_client()
    user = STORYBOARD_USER_TEMPLATE.format(brand_name=brand_name, tone=tone, duration=duration)
    return await chat_json(
        client,
        [
            {"role": "system", "content": STORYBOARD_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_data_url}},
                    {"type": "text", "text": user},
                ],
            },
        ],
        temperature=0.5,
        max_tokens=1000,
    )


async def moderate_text(text: str) -> Dict[str, Any]:
    client = _get_client()
    try:
        resp = await client.moderations.create(input=text)
        result = resp.results[0]
    except Exception as e:
        logger.error(f"OpenAI moderation failed: {str(e)}")
        raise CollaboratorError(PROVIDER, f"moderation failed: {e}", cause=e)
    categories = result.categories.model_dump(by_alias=True)
    scores = result.category_scores.model_dump(by_alias=True)
    return {
        "flagged": bool(result.flagged),
        "categories": {k: bool(v) for k, v in categories.items() if v is not None},
        "scores": {k: float(v) for k, v in scores.items() if v is not None},
    }


async def generate_image(prompt: str, aspect_ratio: str) -> str:
    client = _get_client()
    try:
        resp = await client.images.generate(
            model="dall-e-3",
            prompt=prompt,
            n=1,
            size=DALLE_SIZES.get(aspect_ratio, "1024x1024"),
            quality="standard",
        )
        url = resp.data[0].url if resp.data else None
    except Exception as e:
        logger.error(f"DALL-E image generation failed: {str(e)}")
        raise CollaboratorError(PROVIDER, f"image generation failed: {e}", cause=e)
    if not url:
        raise CollaboratorError(PROVIDER, "image generation returned no URL")
    return url


async def synthesize_speech(text: str, voice: Optional[str] = "alloy") -> bytes:
    client = _get_client()
    try:
        resp = await client.audio.speech.create(
            model="tts-1",
            voice=voice,
            input=text,
            response_format="mp3",
        )
        return resp.content
    except Exception as e:
        logger.error(f"OpenAI speech failed: {str(e)}")
        raise CollaboratorError(PROVIDER, f"speech synthesis failed: {e}", cause=e)
