from functools import lru_cache
from typing import Dict, List, Optional

import asyncpg
import httpx
import structlog

# Implementations
from connections.banana import BananaAdapter
from connections.chat_providers import AnthropicChatProvider, GoogleChatProvider, OpenAIChatProvider
from connections.direct_video import Sora2Adapter, Veo3Adapter
from connections.kie import KieAdapter
from connections.kling import KlingAdapter
from connections.media_source import MediaSourceReader
from connections.midjourney import MidjourneyAdapter
from connections.openai_images import DallE3Adapter
from connections.stability import StableDiffusionAdapter
from connections.voice_providers import ElevenLabsSynthesizer, GoogleSpeechRecognizer
from core.config import ProductionSettings, settings
from core.exceptions import ConfigurationError
from domain.interfaces import ChatProvider, GenerationRepository, MediaProviderAdapter
from domain.models import MediaKind, PollPolicy
from orchestration.graph import FallbackRouter
from repository.in_memory_repository import InMemoryGenerationRepository
from repository.postgres_repository import PostgresGenerationRepository
from services.chat_service import ChatService
from services.generation_service import ImageGenerationService, VideoGenerationService
from services.normalizer import ResponseNormalizer
from services.poller import AsyncJobPoller
from services.registry import ProviderRegistry
from services.voice_service import VoiceService

logger = structlog.get_logger()

_pool: Optional[asyncpg.Pool] = None
_repository: Optional[GenerationRepository] = None


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """
    Dependency Factory: One pooled client shared by every provider.
    Per-request timeouts are set by each adapter.
    """
    return httpx.AsyncClient()


@lru_cache()
def get_media_reader() -> MediaSourceReader:
    return MediaSourceReader(get_http_client(), settings.LOCAL_MEDIA_ROOT)


def _video_poll_policy(provider_id: str) -> PollPolicy:
    if provider_id in settings.PREMIUM_VIDEO_PROVIDERS:
        return PollPolicy(settings.PREMIUM_VIDEO_POLL_INTERVAL, settings.PREMIUM_VIDEO_POLL_MAX_ATTEMPTS)
    return PollPolicy(settings.VIDEO_POLL_INTERVAL, settings.VIDEO_POLL_MAX_ATTEMPTS)


def build_adapters() -> List[MediaProviderAdapter]:
    client = get_http_client()
    media = get_media_reader()
    image_timeout = settings.IMAGE_REQUEST_TIMEOUT
    video_timeout = settings.VIDEO_REQUEST_TIMEOUT
    image_policy = PollPolicy(settings.IMAGE_POLL_INTERVAL, settings.IMAGE_POLL_MAX_ATTEMPTS)

    return [
        # Images
        DallE3Adapter(client, settings.OPENAI_API_KEY, settings.OPENAI_API_URL, image_timeout, media),
        MidjourneyAdapter(client, settings.MIDJOURNEY_API_KEY, settings.MIDJOURNEY_API_URL, image_timeout, media),
        StableDiffusionAdapter(
            client, settings.STABLE_DIFFUSION_API_KEY, settings.STABLE_DIFFUSION_API_URL, image_timeout, media
        ),
        BananaAdapter(client, settings.BANANA_API_KEY, settings.BANANA_API_URL, image_timeout, media, image_policy),
        # Videos
        KieAdapter(client, settings.KIE_API_KEY, settings.KIE_API_URL, video_timeout, media, _video_poll_policy("kie")),
        Veo3Adapter(
            client, settings.VEO3_API_KEY, settings.VEO3_API_URL, video_timeout, media, _video_poll_policy("veo3")
        ),
        Sora2Adapter(
            client, settings.SORA2_API_KEY, settings.SORA2_API_URL, video_timeout, media, _video_poll_policy("sora2")
        ),
        KlingAdapter(
            client, settings.KLING_API_KEY, settings.KLING_API_URL, video_timeout, media, _video_poll_policy("kling")
        ),
    ]


def configured_aggregator(adapters: List[MediaProviderAdapter], kind: MediaKind, provider_id: str) -> str:
    """
    An aggregator without an API key is left out of routing, so requests go
    straight to the direct providers instead of failing on a missing key.
    """
    if not provider_id:
        return ""
    for adapter in adapters:
        if adapter.media_kind == kind and adapter.provider_id == provider_id and not adapter.api_key:
            logger.warning("aggregator_disabled", media_kind=kind.value, provider=provider_id, reason="no API key")
            return ""
    return provider_id


@lru_cache()
def get_registry() -> ProviderRegistry:
    adapters = build_adapters()
    return ProviderRegistry(
        adapters,
        aggregators={
            MediaKind.IMAGE: configured_aggregator(adapters, MediaKind.IMAGE, settings.IMAGE_AGGREGATOR),
            MediaKind.VIDEO: configured_aggregator(adapters, MediaKind.VIDEO, settings.VIDEO_AGGREGATOR),
        },
    )


@lru_cache()
def get_router() -> FallbackRouter:
    registry = get_registry()
    return FallbackRouter(
        registry,
        AsyncJobPoller(registry, max_consecutive_errors=settings.POLL_MAX_CONSECUTIVE_ERRORS),
        ResponseNormalizer(),
    )


async def init_repository() -> GenerationRepository:
    """
    Builds the persistence backend once per process.
    Production connects to Postgres and ensures the schema; local runs keep everything in memory.
    """
    global _pool, _repository
    if _repository is not None:
        return _repository

    if isinstance(settings, ProductionSettings):
        _pool = await asyncpg.create_pool(settings.DB_DSN)
        repository = PostgresGenerationRepository(_pool)
        await repository.init_schema()
        _repository = repository
    else:
        _repository = InMemoryGenerationRepository()

    logger.info("repository_ready", backend=_repository.__class__.__name__)
    return _repository


def get_repository() -> GenerationRepository:
    if _repository is None:
        raise ConfigurationError("Repository is not initialized; call init_repository() at startup")
    return _repository


async def close_resources() -> None:
    global _pool, _repository
    if _pool is not None:
        await _pool.close()
        _pool = None
    _repository = None
    await get_http_client().aclose()

    # Everything below holds the closed client or repository
    for factory in (
        get_http_client,
        get_media_reader,
        get_registry,
        get_router,
        get_image_service,
        get_video_service,
        get_chat_service,
        get_voice_service,
    ):
        factory.cache_clear()


@lru_cache()
def get_image_service() -> ImageGenerationService:
    return ImageGenerationService(get_registry(), get_router(), get_repository(), get_media_reader())


@lru_cache()
def get_video_service() -> VideoGenerationService:
    return VideoGenerationService(get_registry(), get_router(), get_repository())


@lru_cache()
def get_chat_service() -> ChatService:
    client = get_http_client()
    timeout = settings.CHAT_REQUEST_TIMEOUT
    providers: Dict[str, ChatProvider] = {
        "openai": OpenAIChatProvider(client, settings.OPENAI_API_KEY, settings.OPENAI_API_URL, timeout),
        "anthropic": AnthropicChatProvider(
            client, settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_API_URL, settings.ANTHROPIC_API_VERSION, timeout
        ),
        "google": GoogleChatProvider(client, settings.GOOGLE_AI_API_KEY, settings.GOOGLE_AI_API_URL, timeout),
    }
    return ChatService(providers)


@lru_cache()
def get_voice_service() -> VoiceService:
    client = get_http_client()
    timeout = settings.CHAT_REQUEST_TIMEOUT
    return VoiceService(
        ElevenLabsSynthesizer(client, settings.ELEVENLABS_API_KEY, settings.ELEVENLABS_API_URL, timeout),
        GoogleSpeechRecognizer(client, settings.GOOGLE_SPEECH_API_KEY, settings.GOOGLE_SPEECH_API_URL, timeout),
    )
