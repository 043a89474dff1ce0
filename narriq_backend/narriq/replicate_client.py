import time, httpx, asyncio, logging
from typing import Dict, Tuple

from . import settings
from .errors import CollaboratorError

logger = logging.getLogger(__name__)

PROVIDER = "replicate"
API_URL = "https://api.replicate.com/v1"

# width, height per aspect ratio; multiples of 64 for SDXL-style models
DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "16:9": (1344, 768),
    "9:16": (768, 1344),
    "1:1": (1024, 1024),
}

NEGATIVE_PROMPT = "blurry, low quality, distorted, ugly, bad anatomy"


def is_configured() -> bool:
    return bool(settings.replicate_api_token())


def _headers():
    token = settings.replicate_api_token()
    if not token:
        raise CollaboratorError(PROVIDER, "REPLICATE_API_TOKEN is not set")
    return {"Authorization": f"Token {token}"}


def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return settings.REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"


def _parse_selector(selector: str):
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        owner_name, _, version = selector.partition(":")
        if version:
            return "version", {"version": version}
        owner, name = owner_name.split("/", 1)
        return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}


def build_input(prompt: str, aspect_ratio: str) -> dict:
    width, height = DIMENSIONS.get(aspect_ratio, DIMENSIONS["16:9"])
    return {
        "prompt": prompt,
        "negative_prompt": NEGATIVE_PROMPT,
        "aspect_ratio": aspect_ratio,
        "width": width,
        "height": height,
        "num_outputs": 1,
    }


async def create_and_wait_image(prompt: str, aspect_ratio: str = "16:9") -> str:
    logger.info(f"Starting Replicate image generation ({aspect_ratio}) for prompt: {prompt[:100]}...")
    headers = _headers()

    async with httpx.AsyncClient(timeout=30) as client:
        selector = _model_selector()
        mode, data = _parse_selector(selector)
        body = {"input": build_input(prompt, aspect_ratio)}
        if mode == "version":
            body["version"] = data["version"]
            url = f"{API_URL}/predictions"
        else:
            url = f"{API_URL}/models/{data['owner']}/{data['name']}/predictions"
        logger.info(f"Using Replicate model {selector}: {url}")

        try:
            r = await client.post(url, headers={**headers, "Content-Type": "application/json"}, json=body)
            if r.status_code >= 400:
                logger.error(f"Replicate create failed {r.status_code}: {r.text}")
                raise CollaboratorError(PROVIDER, f"create failed {r.status_code}: {r.text}")
            pred = r.json()
            pred_id = pred["id"]
            logger.info(f"Replicate prediction created with ID: {pred_id}")

            start = time.time()
            while True:
                s = await client.get(f"{API_URL}/predictions/{pred_id}", headers=headers)
                if s.status_code >= 400:
                    logger.error(f"Replicate status failed {s.status_code}: {s.text}")
                    raise CollaboratorError(PROVIDER, f"status failed {s.status_code}: {s.text}")
                body = s.json()
                status = body.get("status")
                logger.debug(f"Replicate prediction {pred_id} status: {status}")

                if status in ("succeeded", "failed", "canceled"):
                    if status != "succeeded":
                        logger.error(f"Replicate failed: {status}. error={body.get('error')}")
                        raise CollaboratorError(PROVIDER, f"prediction {status}: {body.get('error')}")
                    output = body.get("output")
                    if isinstance(output, list) and output:
                        output = output[0]
                    if isinstance(output, str) and output:
                        logger.info(f"Replicate prediction succeeded, got output URL: {output}")
                        return output
                    raise CollaboratorError(PROVIDER, "prediction succeeded but returned no output URL")
                if time.time() - start > settings.REPLICATE_POLL_TIMEOUT_S:
                    logger.error(f"Replicate polling timeout for {pred_id}")
                    raise CollaboratorError(PROVIDER, f"polling timed out after {settings.REPLICATE_POLL_TIMEOUT_S}s")
                await asyncio.sleep(settings.REPLICATE_POLL_INTERVAL_MS / 1000.0)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Replicate request failed: {str(e)}")
            raise CollaboratorError(PROVIDER, f"request failed: {e}", cause=e)
