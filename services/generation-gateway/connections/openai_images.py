from typing import Tuple

from connections.http import HTTPProviderAdapter, only_set
from connections.media_source import sniff_media_type
from core.exceptions import ValidationException
from domain.models import (
    Capabilities,
    ImageEditRequest,
    ImageGenerationRequest,
    MediaKind,
    MediaTarget,
    RawProviderResponse,
)


def parse_size(size: str) -> Tuple[int, int]:
    try:
        width, height = size.lower().split("x", 1)
        return int(width), int(height)
    except ValueError:
        raise ValidationException(f"Malformed size: {size!r}, expected WIDTHxHEIGHT")


class DallE3Adapter(HTTPProviderAdapter):
    """OpenAI image generation. Synchronous; returns hosted URLs."""

    provider_id = "dall-e-3"
    media_kind = MediaKind.IMAGE
    default_model = "dall-e-3"
    capabilities = Capabilities(
        media_kind=MediaKind.IMAGE,
        models=["dall-e-3"],
        max_resolution="1792x1024",
        supported_sizes=["1024x1024", "1792x1024", "1024x1792"],
        qualities=["standard", "hd"],
        styles=["vivid", "natural"],
        supports_editing=True,
        supports_upscaling=False,
        bounds={"samples": (1, 1)},
    )

    DEFAULTS = {"width": 1024, "height": 1024, "quality": "standard", "style": "vivid", "samples": 1}

    async def generate(self, request: ImageGenerationRequest) -> RawProviderResponse:
        model = self.resolve_model(request.model)
        settings = {**self.DEFAULTS, **only_set(request.settings.model_dump())}
        settings["size"] = f"{settings['width']}x{settings['height']}"
        settings = self.bounded(settings)

        body = await self.request_json(
            "POST",
            "/v1/images/generations",
            json={
                "model": model,
                "prompt": request.prompt,
                "n": settings["samples"],
                "size": settings["size"],
                "quality": settings["quality"],
                "style": settings["style"],
                "response_format": "url",
            },
        )
        params = {key: settings[key] for key in ("width", "height", "quality", "style", "samples")}
        return RawProviderResponse(provider=self.provider_id, payload=body, model=model, params={"model": model, **params})

    async def edit(self, target: MediaTarget, prompt: str, options: ImageEditRequest) -> RawProviderResponse:
        size = options.size or f"{options.width or target.width or 1024}x{options.height or target.height or 1024}"
        settings = self.bounded({"size": size, "samples": options.samples or 1})
        width, height = parse_size(settings["size"])

        source = await self.source_bytes(target)
        files = {"image": ("image.png", source, sniff_media_type(source, "image/png"))}
        if options.mask_image:
            mask = await self.media.read(options.mask_image)
            files["mask"] = ("mask.png", mask, sniff_media_type(mask, "image/png"))

        body = await self.request_json(
            "POST",
            "/v1/images/edits",
            files=files,
            data={"prompt": prompt, "n": str(settings["samples"]), "size": settings["size"], "model": self.default_model},
        )
        return RawProviderResponse(
            provider=self.provider_id,
            payload=body,
            model=self.default_model,
            params={"model": self.default_model, "width": width, "height": height, "samples": settings["samples"]},
        )
