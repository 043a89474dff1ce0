"""
Step handlers of the ad generation workflow, in chain order.

Each module declares NAME, DESCRIPTION, SUBSCRIBES, EMITS and an async
`handler(event, ctx)`.
"""
from . import (
    analytics_agent,
    brand,
    dispatch,
    images,
    moderation,
    renders,
    review,
    scrape,
    script,
    tts,
)

PIPELINE = [scrape, brand, script, moderation, review, images, analytics_agent, tts, renders, dispatch]


def register_pipeline(engine, steps=None):
    for module in steps or PIPELINE:
        engine.register_step(
            module.NAME,
            subscribes=module.SUBSCRIBES,
            emits=module.EMITS,
            handler=module.handler,
            description=module.DESCRIPTION,
        )
    return engine
