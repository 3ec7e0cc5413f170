import base64
import io
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from connections.kie import KieAdapter
from connections.kling import KlingAdapter
from connections.midjourney import MidjourneyAdapter
from connections.openai_images import DallE3Adapter
from connections.stability import StableDiffusionAdapter
from core.exceptions import ConfigurationError, GenerationNotFoundError, ProviderError
from domain.models import (
    GenerationQuery,
    GenerationResult,
    GenerationStatus,
    ImageEditRequest,
    ImageGenerationRequest,
    MediaKind,
    ProcessImageOptions,
    UpscaleOptions,
)
from orchestration.graph import FallbackRouter
from repository.in_memory_repository import InMemoryGenerationRepository
from services.generation_service import ImageGenerationService, VideoGenerationService
from services.normalizer import ResponseNormalizer
from services.poller import AsyncJobPoller
from services.registry import ProviderRegistry

OPENAI = "https://openai.test"
STABILITY = "https://stability.test"


def _png(width: int, height: int) -> str:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, "PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _stored(provider: str, **overrides) -> GenerationResult:
    fields = dict(
        media_kind=MediaKind.IMAGE,
        status=GenerationStatus.COMPLETED,
        image_url=_png(64, 32),
        prompt="a lighthouse",
        provider=provider,
        model={"dall-e-3": "dall-e-3", "midjourney": "midjourney-v6"}.get(provider, "stable-diffusion-xl"),
        user_id="user-1",
        tags=["coast"],
        metadata={"operation": "generate", "route": provider, "width": 64, "height": 32},
    )
    fields.update(overrides)
    return GenerationResult(**fields)


@pytest.fixture
def repository():
    return InMemoryGenerationRepository()


@pytest.fixture
def registry(client):
    return ProviderRegistry(
        [
            DallE3Adapter(client, "sk-test", OPENAI),
            MidjourneyAdapter(client, "mj-key", "https://mj.test"),
            StableDiffusionAdapter(client, "sd-key", STABILITY),
        ]
    )


@pytest.fixture
def service(registry, repository):
    router = FallbackRouter(registry, AsyncJobPoller(registry), ResponseNormalizer())
    return ImageGenerationService(registry, router, repository, registry.get(MediaKind.IMAGE, "dall-e-3").media)


@pytest.mark.asyncio
async def test_generate_persists_the_completed_record(service, repository, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (200, {"data": [{"url": "https://img/1.png"}]}))
    request = ImageGenerationRequest(prompt="a fox", provider="dall-e-3", tags=["animals"], is_public=True)

    result = await service.generate_image(request, user_id="user-9")

    stored = await repository.get(result.id)
    assert stored is not None
    assert stored.status == GenerationStatus.COMPLETED
    assert stored.image_url == "https://img/1.png"
    assert stored.user_id == "user-9"
    assert stored.tags == ["animals"]
    assert stored.is_public is True
    assert stored.cost == 0.04
    assert stored.processing_time is not None


@pytest.mark.asyncio
async def test_generate_uses_the_given_generation_id(service, repository, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (200, {"data": [{"url": "https://img/1.png"}]}))

    result = await service.generate_image(
        ImageGenerationRequest(prompt="a fox", provider="dall-e-3"), generation_id="job-123"
    )

    assert result.id == "job-123"
    assert (await repository.get("job-123")).image_url == "https://img/1.png"


@pytest.mark.asyncio
async def test_failed_generation_is_recorded_then_raised(service, repository, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (500, {"error": "overloaded"}))

    with pytest.raises(ProviderError):
        await service.generate_image(ImageGenerationRequest(prompt="a fox", provider="dall-e-3"), user_id="user-9")

    page = await repository.list(GenerationQuery(user_id="user-9"))
    assert page.pagination.total == 1
    failed = page.data[0]
    assert failed.status == GenerationStatus.FAILED
    assert failed.provider == "dall-e-3"
    assert "HTTP 500" in failed.error


@pytest.mark.asyncio
async def test_malformed_provider_body_is_recorded_as_a_provider_failure(service, repository, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (200, {"data": ["https://img/1.png"]}))

    with pytest.raises(ProviderError) as exc:
        await service.generate_image(ImageGenerationRequest(prompt="a fox", provider="dall-e-3"))

    assert exc.value.provider == "dall-e-3"
    assert [r.status for r in repository.generations.values()] == [GenerationStatus.FAILED]


@pytest.mark.asyncio
async def test_unexpected_error_still_leaves_a_failed_record(service, repository, monkeypatch):
    monkeypatch.setattr(service.router, "route", AsyncMock(side_effect=RuntimeError("boom")))

    with pytest.raises(RuntimeError):
        await service.generate_image(ImageGenerationRequest(prompt="a fox", provider="dall-e-3"), generation_id="gen-7")

    failed = await repository.get("gen-7")
    assert failed.status == GenerationStatus.FAILED
    assert failed.error == "boom"


@pytest.mark.asyncio
async def test_edit_creates_a_linked_record(service, repository, transport):
    source = _stored("dall-e-3")
    repository.seed(source)
    transport.on("POST", f"{OPENAI}/v1/images/edits", (200, {"data": [{"url": "https://img/edited.png"}]}))

    edited = await service.edit_image(source.id, ImageEditRequest(prompt="add snow", size="1024x1024"))

    assert edited.id != source.id
    assert edited.image_url == "https://img/edited.png"
    assert edited.metadata["source_id"] == source.id
    assert edited.metadata["operation"] == "edit"
    assert edited.user_id == "user-1"
    assert edited.tags == ["coast"]
    assert (await repository.get(source.id)).image_url == source.image_url


@pytest.mark.asyncio
async def test_edit_on_a_provider_without_editing_fails_and_is_recorded(service, repository, transport):
    source = _stored("midjourney")
    repository.seed(source)

    with pytest.raises(ConfigurationError):
        await service.edit_image(source.id, ImageEditRequest(prompt="add snow"))

    failed = [r for r in repository.generations.values() if r.status == GenerationStatus.FAILED]
    assert len(failed) == 1
    assert failed[0].metadata["source_id"] == source.id
    assert transport.calls == []


@pytest.mark.asyncio
async def test_edit_of_unknown_generation(service):
    with pytest.raises(GenerationNotFoundError):
        await service.edit_image("missing", ImageEditRequest(prompt="add snow"))


@pytest.mark.asyncio
async def test_upscale_records_operation_and_source(service, repository, transport):
    source = _stored("stable-diffusion")
    repository.seed(source)
    transport.on("POST", f"{STABILITY}/v1/generation/stable-diffusion/upscale", (200, {"artifacts": [{"base64": "aGk="}]}))

    upscaled = await service.upscale_image(source.id, UpscaleOptions())

    assert upscaled.metadata["operation"] == "upscale"
    assert upscaled.metadata["source_id"] == source.id
    assert upscaled.metadata["creativity"] == 0.3
    assert upscaled.cost == pytest.approx(0.08)


@pytest.mark.asyncio
async def test_favorite_and_delete(service, repository):
    source = _stored("dall-e-3")
    repository.seed(source)

    assert await service.toggle_favorite(source.id) is True
    assert await service.toggle_favorite(source.id) is False

    await service.delete_generation(source.id)
    with pytest.raises(GenerationNotFoundError):
        await service.get_generation(source.id)


@pytest.mark.asyncio
async def test_listing_only_returns_this_media_kind(service, repository):
    repository.seed(
        _stored("dall-e-3"),
        _stored("dall-e-3"),
        _stored("kling", media_kind=MediaKind.VIDEO, image_url=None, video_url="https://v.mp4", model="kling-v1"),
    )

    page = await service.get_generations(GenerationQuery(limit=1))

    assert page.pagination.total == 2
    assert page.pagination.total_pages == 2
    assert len(page.data) == 1


@pytest.mark.asyncio
async def test_process_image_resizes_and_reencodes(service, repository):
    source = _stored("dall-e-3")
    repository.seed(source)

    processed = await service.process_image(source.id, ProcessImageOptions(width=32, format="jpeg", fit="fill"))

    assert processed.url.startswith("data:image/jpeg;base64,")
    assert (processed.width, processed.height) == (32, 16)
    assert processed.format == "jpeg"


@pytest.mark.asyncio
async def test_video_models_fall_back_to_declared_capabilities(client, repository):
    registry = ProviderRegistry([KlingAdapter(client, "kling-key", "https://kling.test")])
    router = FallbackRouter(registry, AsyncJobPoller(registry), ResponseNormalizer())
    service = VideoGenerationService(registry, router, repository)

    models = await service.get_available_models()

    assert {m["id"] for m in models} == {"kling-v1", "kling-v1-6"}
    with pytest.raises(ConfigurationError):
        await service.upload_video("data:video/mp4;base64,aGk=")


@pytest.mark.asyncio
async def test_video_models_come_from_the_aggregator(client, transport, repository):
    transport.on("GET", "https://kie.test/v1/models", (200, {"models": [{"id": "veo3"}]}))
    registry = ProviderRegistry(
        [KieAdapter(client, "kie-key", "https://kie.test")], aggregators={MediaKind.VIDEO: "kie"}
    )
    router = FallbackRouter(registry, AsyncJobPoller(registry), ResponseNormalizer())

    models = await VideoGenerationService(registry, router, repository).get_available_models()

    assert models == [{"id": "veo3"}]
