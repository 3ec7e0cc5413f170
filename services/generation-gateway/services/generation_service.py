import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from connections.media_source import MediaSourceReader
from core.exceptions import ConfigurationError, GatewayError, GenerationNotFoundError
from core.logging import bind_generation
from domain.interfaces import GenerationRepository
from domain.models import (
    Capabilities,
    GenerationQuery,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    ImageEditRequest,
    ImageGenerationRequest,
    MediaKind,
    MediaTarget,
    Page,
    ProcessImageOptions,
    UpscaleOptions,
    VideoEditRequest,
    VideoGenerationRequest,
)
from orchestration.graph import FallbackRouter
from services.image_processing import ProcessedImage, process_image_bytes
from services.registry import ProviderRegistry

logger = structlog.get_logger()


def default_model(registry: ProviderRegistry, kind: MediaKind, request: GenerationRequest) -> str:
    """Model to record for a request that never reached a provider."""
    if request.model:
        return request.model
    try:
        return registry.get(kind, request.provider).default_model
    except ConfigurationError:
        return request.provider


def target_of(source: GenerationResult) -> MediaTarget:
    meta = source.metadata
    return MediaTarget(
        source_url=source.image_url or source.video_url,
        provider_ref=source.provider_ref,
        model=source.model,
        width=meta.get("width"),
        height=meta.get("height"),
        duration=meta.get("duration"),
        resolution=meta.get("resolution"),
    )


class GenerationService:
    """
    Runs generations through the router and owns the record lifecycle:
    every run ends in exactly one upserted record, completed or failed.
    """

    media_kind: MediaKind

    def __init__(self, registry: ProviderRegistry, router: FallbackRouter, repository: GenerationRepository):
        self.registry = registry
        self.router = router
        self.repository = repository

    async def _persisted(
        self,
        run: Callable[[], Awaitable[GenerationResult]],
        failure: GenerationResult,
        overrides: Dict[str, Any],
    ) -> GenerationResult:
        started = time.monotonic()
        # The record id is fixed up front so every log line of the run can carry it
        generation_id = overrides.get("id") or failure.id

        def finish(result: GenerationResult, **extra: Any) -> GenerationResult:
            return result.model_copy(
                update={
                    **overrides,
                    **extra,
                    "id": generation_id,
                    "metadata": {**result.metadata, **overrides.get("metadata", {})},
                    "processing_time": round(time.monotonic() - started, 3),
                }
            )

        tokens = bind_generation(generation_id, failure.metadata.get("operation"))
        try:
            try:
                result = await run()
            except Exception as e:
                error = e.message if isinstance(e, GatewayError) else str(e) or type(e).__name__
                await self.repository.upsert(finish(failure, status=GenerationStatus.FAILED, error=error))
                logger.warning("generation_failed", provider=failure.provider, error=error)
                raise

            stored = await self.repository.upsert(finish(result))
            logger.info(
                "generation_persisted",
                provider=stored.provider,
                model=stored.model,
                status=stored.status.value,
                cost=stored.cost,
            )
            return stored
        finally:
            structlog.contextvars.reset_contextvars(**tokens)

    def _owner_fields(
        self, request: GenerationRequest, user_id: Optional[str], generation_id: Optional[str]
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "user_id": user_id,
            "tags": list(request.tags),
            "category": request.category,
            "is_public": request.is_public,
        }
        if generation_id:
            fields["id"] = generation_id
        return fields

    async def _generate(
        self,
        request: GenerationRequest,
        user_id: Optional[str],
        cancel_event: Optional[asyncio.Event],
        generation_id: Optional[str],
    ) -> GenerationResult:
        overrides = self._owner_fields(request, user_id, generation_id)
        failure = GenerationResult(
            media_kind=self.media_kind,
            status=GenerationStatus.FAILED,
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            provider=request.provider,
            model=default_model(self.registry, self.media_kind, request),
            metadata={"operation": "generate"},
        )
        return await self._persisted(
            lambda: self.router.route(self.media_kind, request, cancel_event), failure, overrides
        )

    async def _require(self, generation_id: str) -> GenerationResult:
        source = await self.repository.get(generation_id)
        if source is None or source.media_kind != self.media_kind:
            raise GenerationNotFoundError(f"{self.media_kind.value.capitalize()} generation not found: {generation_id}")
        return source

    async def _edit(
        self,
        generation_id: str,
        backend: Optional[str],
        prompt: str,
        options: Any,
        user_id: Optional[str],
        cancel_event: Optional[asyncio.Event],
    ) -> GenerationResult:
        source = await self._require(generation_id)
        backend = backend or source.metadata.get("route") or source.provider
        overrides = {
            "user_id": user_id or source.user_id,
            "tags": list(source.tags),
            "category": source.category,
            "is_public": source.is_public,
            "metadata": {"source_id": source.id},
        }
        failure = GenerationResult(
            media_kind=self.media_kind,
            status=GenerationStatus.FAILED,
            prompt=prompt,
            provider=source.provider,
            model=source.model,
            metadata={"operation": "edit", "source_id": source.id, "route": backend},
        )
        return await self._persisted(
            lambda: self.router.route_edit(self.media_kind, backend, target_of(source), prompt, options, cancel_event),
            failure,
            overrides,
        )

    # --- Shared record operations ---

    async def get_generation(self, generation_id: str) -> GenerationResult:
        return await self._require(generation_id)

    async def get_generations(self, query: GenerationQuery) -> Page[GenerationResult]:
        return await self.repository.list(query.model_copy(update={"media_kind": self.media_kind}))

    async def delete_generation(self, generation_id: str) -> None:
        await self._require(generation_id)
        await self.repository.delete(generation_id)
        logger.info("generation_deleted", generation_id=generation_id)

    async def toggle_favorite(self, generation_id: str) -> bool:
        await self._require(generation_id)
        favorite = await self.repository.toggle_favorite(generation_id)
        if favorite is None:
            raise GenerationNotFoundError(f"Generation not found: {generation_id}")
        return favorite

    def get_capabilities(self, provider: str) -> Capabilities:
        return self.registry.capabilities(self.media_kind, provider)


class ImageGenerationService(GenerationService):
    media_kind = MediaKind.IMAGE

    def __init__(
        self,
        registry: ProviderRegistry,
        router: FallbackRouter,
        repository: GenerationRepository,
        media: MediaSourceReader,
    ):
        super().__init__(registry, router, repository)
        self.media = media

    async def generate_image(
        self,
        request: ImageGenerationRequest,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        generation_id: Optional[str] = None,
    ) -> GenerationResult:
        return await self._generate(request, user_id, cancel_event, generation_id)

    async def edit_image(
        self,
        generation_id: str,
        edit: ImageEditRequest,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        return await self._edit(generation_id, edit.provider, edit.prompt, edit, user_id, cancel_event)

    async def upscale_image(
        self,
        generation_id: str,
        options: UpscaleOptions,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        source = await self._require(generation_id)
        provider = options.provider or source.metadata.get("route") or source.provider
        overrides = {
            "user_id": user_id or source.user_id,
            "tags": list(source.tags),
            "category": source.category,
            "is_public": source.is_public,
            "metadata": {"source_id": source.id},
        }
        failure = GenerationResult(
            media_kind=MediaKind.IMAGE,
            status=GenerationStatus.FAILED,
            prompt=source.prompt,
            provider=provider,
            model=options.model or source.model,
            metadata={"operation": "upscale", "source_id": source.id},
        )
        return await self._persisted(
            lambda: self.router.route_upscale(provider, target_of(source), source.prompt, options, cancel_event),
            failure,
            overrides,
        )

    async def process_image(self, generation_id: str, options: ProcessImageOptions) -> ProcessedImage:
        """Resizes/re-encodes a stored image. The result is returned, not persisted."""
        source = await self._require(generation_id)
        data = await self.media.read(target_of(source).source_url or "")

        # Pillow work is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, process_image_bytes, data, options)


class VideoGenerationService(GenerationService):
    media_kind = MediaKind.VIDEO

    async def generate_video(
        self,
        request: VideoGenerationRequest,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        generation_id: Optional[str] = None,
    ) -> GenerationResult:
        return await self._generate(request, user_id, cancel_event, generation_id)

    async def edit_video(
        self,
        generation_id: str,
        edit: VideoEditRequest,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        return await self._edit(generation_id, None, edit.prompt, edit, user_id, cancel_event)

    def _aggregator(self):
        aggregator = self.registry.aggregator(MediaKind.VIDEO)
        if aggregator is None:
            raise ConfigurationError("No video aggregator is configured")
        return aggregator

    async def upload_video(self, source: str) -> Dict[str, Any]:
        return await self._aggregator().upload_video(source)

    async def get_available_models(self) -> List[Dict[str, Any]]:
        if self.registry.aggregator(MediaKind.VIDEO) is not None:
            return await self._aggregator().list_models()

        return [
            {"id": model, "name": model, "type": "video", "provider": provider}
            for provider in self.registry.providers(MediaKind.VIDEO)
            for model in self.registry.capabilities(MediaKind.VIDEO, provider).models
        ]
