import base64

from .. import elevenlabs_client, llm, settings
from ..errors import CollaboratorError
from ..models import AnalyticsScored, TtsResult, VariantScript
from ..utils import audio_key_for, now_ms

NAME = "tts"
DESCRIPTION = "Generates voiceover audio for all variants"
SUBSCRIBES = ["analytics.scored"]
EMITS = ["tts.completed"]


def voiceover_text(script: VariantScript) -> str:
    return ". ".join(s.voiceover.strip() for s in script.scenes if s.voiceover.strip())


def estimate_duration(text: str) -> float:
    words = len(text.split())
    return max(5.0, words / 150 * 60)


def provider() -> str:
    if settings.TTS_PROVIDER == "elevenlabs" and elevenlabs_client.is_configured():
        return "elevenlabs"
    return "openai"


async def synthesize(text: str, name: str) -> bytes:
    if name == "elevenlabs":
        return await elevenlabs_client.tts_to_bytes(text)
    return await llm.synthesize_speech(text)


async def handler(event: AnalyticsScored, ctx):
    name = provider()
    ctx.logger.info(f"[{ctx.trace_id}] Starting TTS for {event.project_id} via {name}")

    results = []
    for script in event.scripts:
        text = voiceover_text(script)
        try:
            if not text:
                raise CollaboratorError(name, "script has no voiceover")
            audio = await synthesize(text, name)
            audio_key = audio_key_for(script.variant_id)
            await ctx.store.set("audio", audio_key, {
                "data": base64.b64encode(audio).decode("ascii"),
                "contentType": "audio/mpeg",
                "provider": name,
                "createdAt": now_ms(),
            })
            result = TtsResult(variant_id=script.variant_id, audio_key=audio_key,
                               duration=estimate_duration(text), provider=name)
            ctx.logger.info(f"TTS completed for {script.variant_id}: ~{result.duration:.1f}s")
        except CollaboratorError as e:
            ctx.use_fallback(f"tts for {script.variant_id}: {e.message}")
            result = TtsResult(variant_id=script.variant_id, audio_key=None, duration=5.0,
                               provider="failed", error="TTS generation failed")
        results.append(result)

    await ctx.emit("tts.completed", {**event.dump(), "ttsResults": [r.dump() for r in results]})
