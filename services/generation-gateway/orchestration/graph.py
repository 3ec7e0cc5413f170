import asyncio
import operator
from typing import Annotated, Any, Dict, List, Optional, TypedDict

import structlog
from core.exceptions import ConfigurationError, GatewayError, GenerationTimeoutError, ProviderError
from core.telemetry import tracer
from domain.interfaces import MediaProviderAdapter
from domain.models import (
    GenerationRequest,
    GenerationResult,
    JobHandle,
    MediaKind,
    MediaTarget,
    RawProviderResponse,
)
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel
from services.normalizer import ResponseNormalizer
from services.poller import AsyncJobPoller
from services.registry import ProviderRegistry

logger = structlog.get_logger()

# Only upstream trouble is worth a second backend; bad input or a reported failure is not
FALLBACK_ERRORS = (ProviderError, GenerationTimeoutError)


# --- 1. The State ---
class RouteState(TypedDict):
    operation: str  # generate | edit | upscale
    media_kind: MediaKind

    # Per-backend request (generate) or the shared target/options (edit, upscale)
    requests: Dict[str, GenerationRequest]
    target: Optional[MediaTarget]
    options: Optional[BaseModel]

    primary: str
    fallback: Optional[str]
    result_provider: str
    context: Dict[str, Any]

    raw: Optional[RawProviderResponse]
    result: Optional[GenerationResult]
    error: Optional[GatewayError]

    errors: Annotated[List[str], operator.add]
    attempted: Annotated[List[str], operator.add]


# --- 2. The Nodes ---


async def _attempt(state: RouteState, config: RunnableConfig, provider_id: str) -> Dict[str, Any]:
    registry: ProviderRegistry = config["configurable"]["registry"]
    poller: AsyncJobPoller = config["configurable"]["poller"]
    cancel_event: Optional[asyncio.Event] = config["configurable"].get("cancel_event")

    operation = state["operation"]
    kind = state["media_kind"]
    log = logger.bind(provider=provider_id, operation=operation)

    try:
        with tracer.start_as_current_span("route.attempt", attributes={"provider": provider_id, "operation": operation}):
            if operation == "generate":
                outcome = await registry.get(kind, provider_id).generate(state["requests"][provider_id])
            elif operation == "edit":
                outcome = await registry.edit(kind, provider_id, state["target"], state["context"]["prompt"], state["options"])
            else:
                outcome = await registry.upscale(kind, provider_id, state["target"], state["options"])

            if isinstance(outcome, JobHandle):
                policy = registry.poll_policy(outcome)
                raw = await poller.wait(outcome, policy.interval, policy.max_attempts, cancel_event)
            else:
                raw = outcome
    except GatewayError as e:
        log.warning("route_attempt_failed", error_type=e.__class__.__name__, error=e.message)
        return {"error": e, "errors": [e.message], "attempted": [provider_id]}

    context = state["context"]
    raw.operation = operation
    raw.prompt = context.get("prompt")
    raw.negative_prompt = context.get("negative_prompt")
    raw.requested = dict(context.get("requested") or {})
    return {"raw": raw, "error": None, "attempted": [provider_id]}


async def primary_node(state: RouteState, config: RunnableConfig):
    return await _attempt(state, config, state["primary"])


async def fallback_node(state: RouteState, config: RunnableConfig):
    return await _attempt(state, config, state["fallback"])


async def normalize_node(state: RouteState, config: RunnableConfig):
    normalizer: ResponseNormalizer = config["configurable"]["normalizer"]
    raw = state["raw"]
    try:
        result = normalizer.normalize(raw.provider, raw)
    except GatewayError as e:
        logger.error("normalization_failed", provider=raw.provider, error=e.message)
        return {"result": None, "error": e, "errors": [e.message]}

    result.provider = state["result_provider"]
    return {"result": result}


def failed_node(state: RouteState):
    logger.error("route_failed", attempted=state["attempted"], errors=state["errors"])
    return {}


# --- 3. The Edges ---


def after_attempt(state: RouteState):
    if state.get("error") is None and state.get("raw") is not None:
        return "normalize"

    fallback = state.get("fallback")
    if isinstance(state.get("error"), FALLBACK_ERRORS) and fallback and fallback not in state["attempted"]:
        logger.warning("fallback_triggered", primary=state["primary"], fallback=fallback, error=state["error"].message)
        return "fallback"

    return "failed"


def after_normalize(state: RouteState):
    return "done" if state.get("result") is not None else "failed"


# --- 4. The Graph Construction ---

workflow = StateGraph(RouteState)

workflow.add_node("primary", primary_node)
workflow.add_node("fallback", fallback_node)
workflow.add_node("normalize", normalize_node)
workflow.add_node("failed", failed_node)

workflow.add_edge(START, "primary")
workflow.add_conditional_edges(
    "primary", after_attempt, {"normalize": "normalize", "fallback": "fallback", "failed": "failed"}
)
workflow.add_conditional_edges("fallback", after_attempt, {"normalize": "normalize", "failed": "failed"})
workflow.add_conditional_edges("normalize", after_normalize, {"done": END, "failed": "failed"})
workflow.add_edge("failed", END)

fallback_graph = workflow.compile()


class FallbackRouter:
    """
    Runs one generation against at most two backends: the aggregator for the
    media kind when it serves the requested family, then the direct provider of
    that same family. The result is attributed to the family provider;
    metadata.route names the backend that actually produced it.
    """

    def __init__(self, registry: ProviderRegistry, poller: AsyncJobPoller, normalizer: ResponseNormalizer):
        self.registry = registry
        self.poller = poller
        self.normalizer = normalizer

    def plan(self, kind: MediaKind, request: GenerationRequest) -> Dict[str, Any]:
        adapter = self.registry.get(kind, request.provider)

        if adapter.capabilities.is_aggregator:
            family = self.registry.direct_for_model(kind, request.model or adapter.default_model)
            aggregator: Optional[MediaProviderAdapter] = adapter
        else:
            family = adapter
            if request.model and not family.handles_model(request.model):
                raise ConfigurationError(f"Model {request.model} is not served by provider {family.provider_id}")
            aggregator = self.registry.aggregator(kind)

        requests = {family.provider_id: request.model_copy(update={"provider": family.provider_id})}
        if aggregator is not None and family.aggregator_model and aggregator.handles_model(family.aggregator_model):
            requests[aggregator.provider_id] = request.model_copy(
                update={"provider": aggregator.provider_id, "model": family.aggregator_model}
            )
            primary, fallback = aggregator.provider_id, family.provider_id
        else:
            primary, fallback = family.provider_id, None

        return {"requests": requests, "primary": primary, "fallback": fallback, "result_provider": family.provider_id}

    async def _run(self, state: Dict[str, Any], cancel_event: Optional[asyncio.Event]) -> GenerationResult:
        initial_state = RouteState(
            raw=None,
            result=None,
            error=None,
            errors=[],
            attempted=[],
            **state,
        )
        config = {
            "configurable": {
                "registry": self.registry,
                "poller": self.poller,
                "normalizer": self.normalizer,
                "cancel_event": cancel_event,
            }
        }
        final = await fallback_graph.ainvoke(initial_state, config=config)  # type: ignore

        if final.get("result") is not None:
            return final["result"]
        raise final["error"]

    async def route(
        self, kind: MediaKind, request: GenerationRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> GenerationResult:
        plan = self.plan(kind, request)
        logger.info("route_planned", kind=kind.value, primary=plan["primary"], fallback=plan["fallback"])
        return await self._run(
            {
                "operation": "generate",
                "media_kind": kind,
                "target": None,
                "options": None,
                "context": {
                    "prompt": request.prompt,
                    "negative_prompt": request.negative_prompt,
                    "requested": request.requested_settings(),
                },
                **plan,
            },
            cancel_event,
        )

    async def route_edit(
        self,
        kind: MediaKind,
        backend: str,
        target: MediaTarget,
        prompt: str,
        options: BaseModel,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        """Edits run only on the backend that produced the target; its references mean nothing elsewhere."""
        adapter = self.registry.get(kind, backend)
        family = self.registry.family_of(adapter, target.model)
        requested = options.model_dump(exclude_none=True, exclude={"prompt", "provider", "mask_image"})
        return await self._run(
            {
                "operation": "edit",
                "media_kind": kind,
                "requests": {},
                "target": target,
                "options": options,
                "primary": backend,
                "fallback": None,
                "result_provider": family.provider_id,
                "context": {
                    "prompt": prompt,
                    "negative_prompt": getattr(options, "negative_prompt", None),
                    "requested": requested,
                },
            },
            cancel_event,
        )

    async def route_upscale(
        self,
        provider_id: str,
        target: MediaTarget,
        prompt: str,
        options: BaseModel,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        return await self._run(
            {
                "operation": "upscale",
                "media_kind": MediaKind.IMAGE,
                "requests": {},
                "target": target,
                "options": options,
                "primary": provider_id,
                "fallback": None,
                "result_provider": provider_id,
                "context": {"prompt": prompt, "requested": options.model_dump(exclude_none=True, exclude={"provider"})},
            },
            cancel_event,
        )
