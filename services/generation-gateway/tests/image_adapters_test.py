import httpx
import pytest

from connections.banana import BananaAdapter
from connections.midjourney import MidjourneyAdapter
from connections.openai_images import DallE3Adapter
from connections.stability import StableDiffusionAdapter
from core.exceptions import ConfigurationError, ProviderError, ValidationException
from domain.models import (
    ImageEditRequest,
    ImageGenerationRequest,
    ImageSettings,
    JobHandle,
    JobState,
    MediaKind,
    MediaTarget,
    UpscaleOptions,
)

OPENAI = "https://openai.test"
STABILITY = "https://stability.test"
BANANA = "https://banana.test"
MIDJOURNEY = "https://mj.test"
SOURCE = MediaTarget(source_url="data:image/png;base64,aGVsbG8=", width=1024, height=1024)


def _request(provider: str, **settings) -> ImageGenerationRequest:
    return ImageGenerationRequest(prompt="a red fox", provider=provider, settings=ImageSettings(**settings))


@pytest.mark.asyncio
async def test_dalle_generate_sends_size_and_quality(client, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (200, {"data": [{"url": "https://img/1.png"}]}))
    adapter = DallE3Adapter(client, "sk-test", OPENAI)

    raw = await adapter.generate(_request("dall-e-3", width=1792, height=1024, quality="hd"))

    sent = transport.json_body()
    assert sent["size"] == "1792x1024"
    assert sent["quality"] == "hd"
    assert sent["n"] == 1
    assert transport.calls[0].headers["Authorization"] == "Bearer sk-test"
    assert raw.params == {"model": "dall-e-3", "width": 1792, "height": 1024, "quality": "hd", "style": "vivid", "samples": 1}


@pytest.mark.asyncio
async def test_dalle_rejects_size_before_calling_upstream(client, transport):
    adapter = DallE3Adapter(client, "sk-test", OPENAI)

    with pytest.raises(ValidationException):
        await adapter.generate(_request("dall-e-3", width=512, height=512))
    assert transport.calls == []


@pytest.mark.asyncio
async def test_missing_api_key_is_a_configuration_error(client, transport):
    adapter = DallE3Adapter(client, "", OPENAI)

    with pytest.raises(ConfigurationError):
        await adapter.generate(_request("dall-e-3"))
    assert transport.calls == []


@pytest.mark.asyncio
async def test_upstream_rejection_becomes_provider_error(client, transport):
    transport.on("POST", f"{OPENAI}/v1/images/generations", (500, {"error": "boom"}))
    adapter = DallE3Adapter(client, "sk-test", OPENAI)

    with pytest.raises(ProviderError) as exc:
        await adapter.generate(_request("dall-e-3"))
    assert exc.value.status_code == 500
    assert exc.value.provider == "dall-e-3"


@pytest.mark.asyncio
async def test_network_failure_becomes_provider_error(transport):
    def unreachable(request: httpx.Request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
    adapter = DallE3Adapter(client, "sk-test", OPENAI)

    with pytest.raises(ProviderError) as exc:
        await adapter.generate(_request("dall-e-3"))
    assert "connection refused" in exc.value.message


@pytest.mark.asyncio
async def test_dalle_edit_uploads_source_as_multipart(client, transport):
    transport.on("POST", f"{OPENAI}/v1/images/edits", (200, {"data": [{"url": "https://img/edit.png"}]}))
    adapter = DallE3Adapter(client, "sk-test", OPENAI)

    raw = await adapter.edit(SOURCE, "add a hat", ImageEditRequest(prompt="add a hat"))

    request = transport.calls[0]
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    assert b"hello" in request.content
    assert b"add a hat" in request.content
    assert raw.params["width"] == 1024


@pytest.mark.asyncio
async def test_midjourney_without_images_is_a_provider_error(client, transport):
    transport.on("POST", f"{MIDJOURNEY}/v1/imagine", (200, {"status": "queued"}))
    adapter = MidjourneyAdapter(client, "mj-key", MIDJOURNEY)

    with pytest.raises(ProviderError):
        await adapter.generate(_request("midjourney"))


@pytest.mark.asyncio
async def test_stability_treats_style_as_preset(client, transport):
    transport.on(
        "POST",
        f"{STABILITY}/v1/generation/stable-diffusion/text-to-image",
        (200, {"artifacts": [{"base64": "aGVsbG8=", "seed": 1}]}),
    )
    adapter = StableDiffusionAdapter(client, "sd-key", STABILITY)

    raw = await adapter.generate(_request("stable-diffusion", style="anime", steps=30))

    sent = transport.json_body()
    assert sent["style_preset"] == "anime"
    assert sent["steps"] == 30
    assert transport.calls[0].headers["Accept"] == "application/json"
    assert raw.params["style"] == "anime"


@pytest.mark.asyncio
async def test_stability_upscale_defaults(client, transport):
    transport.on("POST", f"{STABILITY}/v1/generation/stable-diffusion/upscale", (200, {"artifacts": [{"base64": "aGk="}]}))
    adapter = StableDiffusionAdapter(client, "sd-key", STABILITY)

    raw = await adapter.upscale(SOURCE, UpscaleOptions())

    sent = transport.json_body()
    assert (sent["width"], sent["height"], sent["creativity"]) == (2048, 2048, 0.3)
    assert sent["image"] == "aGVsbG8="
    assert raw.params["creativity"] == 0.3


@pytest.mark.asyncio
async def test_banana_generate_returns_a_job(client, transport):
    transport.on("POST", f"{BANANA}/start/v1", (200, {"callID": "call-7"}))
    transport.on("GET", f"{BANANA}/status/v1/call-7", (200, {"status": "running"}))
    adapter = BananaAdapter(client, "banana-key", BANANA)

    handle = await adapter.generate(_request("banana", width=512, height=512))

    assert isinstance(handle, JobHandle)
    assert handle.task_id == "call-7"
    assert handle.media_kind == MediaKind.IMAGE
    assert transport.json_body()["inputs"]["width"] == 512

    status = await adapter.fetch_status(handle)
    assert status.state == JobState.PROCESSING


@pytest.mark.asyncio
async def test_banana_upscale_uses_upscale_model(client, transport):
    transport.on("POST", f"{BANANA}/start/v1", (200, {"call_id": "call-8"}))
    adapter = BananaAdapter(client, "banana-key", BANANA)

    handle = await adapter.upscale(SOURCE, UpscaleOptions(creativity=0.5))

    assert transport.json_body()["model"] == "banana-upscale-v1"
    assert handle.params["creativity"] == 0.5
    assert handle.params["width"] == 2048


@pytest.mark.asyncio
async def test_stability_upscale_clamps_dimensions(client, transport):
    transport.on("POST", f"{STABILITY}/v1/generation/stable-diffusion/upscale", (200, {"artifacts": [{"base64": "aGk="}]}))
    adapter = StableDiffusionAdapter(client, "sd-key", STABILITY)

    raw = await adapter.upscale(SOURCE, UpscaleOptions(width=100000, height=100))

    sent = transport.json_body()
    assert (sent["width"], sent["height"]) == (2048, 256)
    assert (raw.params["width"], raw.params["height"]) == (2048, 256)


@pytest.mark.asyncio
async def test_banana_upscale_clamps_dimensions(client, transport):
    transport.on("POST", f"{BANANA}/start/v1", (200, {"callID": "call-9"}))
    adapter = BananaAdapter(client, "banana-key", BANANA)

    handle = await adapter.upscale(SOURCE, UpscaleOptions(width=100000))

    assert transport.json_body()["inputs"]["width"] == 2048
    assert handle.params["width"] == 2048
