"""
Event bus that drives the ad generation workflow.

Steps register the topics they subscribe to and the topics they may emit.
`emit()` validates the payload against the topic's payload type, then starts
every subscribed handler as its own asyncio task and returns immediately:
delivery is at-least-once and fire-and-forget, with no ordering between
handlers of one topic and no retry at the bus level.

Every handler invocation leaves an observable trace in the state store:
  eventLog/<projectId>   list of StepOutcome (success | fallback | failed)
  deadLetters/<id>       the payload and error of an invocation that raised
so a pipeline that stops half way can be diagnosed from the status API.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError, WorkflowError
from .kv_storage import KVStorage
from .models import TOPIC_PAYLOADS, StepOutcome, StepOutcomeKind
from .utils import now_ms

logger = logging.getLogger(__name__)

EVENT_LOG_NAMESPACE = "eventLog"
DEAD_LETTER_NAMESPACE = "deadLetters"
EVENT_LOG_LIMIT = 200

Handler = Callable[[Any, "StepContext"], Awaitable[None]]


@dataclass
class Step:
    name: str
    subscribes: List[str]
    emits: List[str]
    handler: Handler
    description: str = ""


@dataclass
class StepContext:
    """What a handler gets besides its payload."""
    engine: "WorkflowEngine"
    step: Step
    topic: str
    trace_id: str
    emitted: List[str] = field(default_factory=list)
    fallbacks: List[str] = field(default_factory=list)

    @property
    def store(self) -> KVStorage:
        return self.engine.store

    @property
    def step_name(self) -> str:
        return self.step.name

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"narriq.steps.{self.step.name}")

    async def emit(self, topic: str, payload: Any) -> BaseModel:
        if topic not in self.step.emits:
            raise WorkflowError(f"Step {self.step.name} may not emit {topic}", step=self.step.name, topic=topic)
        event = await self.engine.emit(topic, payload, trace_id=self.trace_id)
        self.emitted.append(topic)
        return event

    def use_fallback(self, detail: str) -> None:
        """Mark this invocation as having substituted fallback content."""
        self.fallbacks.append(detail)
        self.logger.warning(f"[{self.trace_id}] fallback used: {detail}")


class WorkflowEngine:
    def __init__(self, store: KVStorage):
        self.store = store
        self._steps: Dict[str, Step] = {}
        self._subscriptions: Dict[str, List[Step]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def register_step(
        self,
        name: str,
        subscribes: List[str],
        emits: List[str],
        handler: Handler,
        description: str = "",
    ) -> Step:
        if name in self._steps:
            raise WorkflowError(f"Step {name} is already registered", step=name)
        for topic in list(subscribes) + list(emits):
            if topic not in TOPIC_PAYLOADS:
                raise WorkflowError(f"Unknown topic {topic} for step {name}", step=name, topic=topic)
        step = Step(name=name, subscribes=list(subscribes), emits=list(emits), handler=handler, description=description)
        self._steps[name] = step
        for topic in step.subscribes:
            self._subscriptions[topic].append(step)
        logger.info(f"Registered step {name}: {step.subscribes} -> {step.emits}")
        return step

    def subscribers(self, topic: str) -> List[str]:
        return [s.name for s in self._subscriptions.get(topic, [])]

    def topology(self) -> List[Dict[str, Any]]:
        return [
            {"name": s.name, "subscribes": s.subscribes, "emits": s.emits, "description": s.description}
            for s in self._steps.values()
        ]

    def validate(self, topic: str, payload: Any) -> BaseModel:
        payload_type = TOPIC_PAYLOADS.get(topic)
        if payload_type is None:
            raise WorkflowError(f"Unknown topic {topic}", topic=topic)
        data = payload.model_dump(by_alias=True, mode="json") if isinstance(payload, BaseModel) else payload
        try:
            return payload_type.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload for topic {topic}",
                topic=topic,
                details=e.errors(include_url=False, include_context=False, include_input=False),
            )

    async def emit(self, topic: str, payload: Any, trace_id: Optional[str] = None) -> BaseModel:
        """Validate and dispatch; does not wait for the handlers."""
        event = self.validate(topic, payload)
        trace_id = trace_id or uuid.uuid4().hex[:12]
        steps = self._subscriptions.get(topic, [])
        if not steps:
            logger.debug(f"[{trace_id}] No subscribers for {topic}")
            return event
        logger.info(f"[{trace_id}] Emitting {topic} to {[s.name for s in steps]}")
        for step in steps:
            task = asyncio.create_task(
                self._invoke(step, topic, event.model_copy(deep=True), trace_id),
                name=f"{step.name}:{trace_id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return event

    async def _invoke(self, step: Step, topic: str, event: BaseModel, trace_id: str) -> None:
        ctx = StepContext(engine=self, step=step, topic=topic, trace_id=trace_id)
        project_id = getattr(event, "project_id", None)
        try:
            await step.handler(event, ctx)
        except Exception as e:
            # Downstream steps never see this invocation; leave a trace instead.
            logger.error(f"[{trace_id}] Step {step.name} failed on {topic}: {e}", exc_info=True)
            await self._bookkeep(
                project_id,
                StepOutcome(step=step.name, topic=topic, outcome=StepOutcomeKind.FAILED,
                            emitted=ctx.emitted, detail=f"{type(e).__name__}: {e}", at=now_ms()),
                dead_letter={
                    "id": uuid.uuid4().hex,
                    "step": step.name,
                    "topic": topic,
                    "projectId": project_id,
                    "traceId": trace_id,
                    "payload": event.model_dump(by_alias=True, mode="json"),
                    "error": f"{type(e).__name__}: {e}",
                    "at": now_ms(),
                },
            )
            return

        kind = StepOutcomeKind.FALLBACK if ctx.fallbacks else StepOutcomeKind.SUCCESS
        await self._bookkeep(
            project_id,
            StepOutcome(step=step.name, topic=topic, outcome=kind, emitted=ctx.emitted,
                        detail="; ".join(ctx.fallbacks) or None, at=now_ms()),
        )

    async def _bookkeep(self, project_id: Optional[str], outcome: StepOutcome, dead_letter: Optional[dict] = None) -> None:
        try:
            if dead_letter is not None:
                await self.store.set(DEAD_LETTER_NAMESPACE, dead_letter["id"], dead_letter)
            if project_id:
                await self.store.append(EVENT_LOG_NAMESPACE, project_id, outcome.dump(), limit=EVENT_LOG_LIMIT)
        except Exception as e:
            logger.error(f"Could not record outcome of {outcome.step} for {project_id}: {e}", exc_info=True)

    async def event_log(self, project_id: str) -> List[dict]:
        return await self.store.get(EVENT_LOG_NAMESPACE, project_id) or []

    async def dead_letters(self, project_id: Optional[str] = None) -> List[dict]:
        letters = await self.store.list_group(DEAD_LETTER_NAMESPACE)
        if project_id is not None:
            letters = [d for d in letters if d.get("projectId") == project_id]
        return sorted(letters, key=lambda d: d.get("at", 0))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no handler is running, including ones started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
