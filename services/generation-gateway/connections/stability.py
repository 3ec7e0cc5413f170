from typing import Any, Dict

from connections.http import HTTPProviderAdapter, only_set
from domain.models import (
    Capabilities,
    ImageEditRequest,
    ImageGenerationRequest,
    MediaKind,
    MediaTarget,
    RawProviderResponse,
    UpscaleOptions,
)
from services.settings_policy import IMAGE_BOUNDS

ENDPOINT = "/v1/generation/stable-diffusion"


class StableDiffusionAdapter(HTTPProviderAdapter):
    """
    Stability AI. Synchronous; artifacts come back base64 encoded and
    are turned into data URIs during normalization.
    """

    provider_id = "stable-diffusion"
    media_kind = MediaKind.IMAGE
    default_model = "stable-diffusion-xl"
    capabilities = Capabilities(
        media_kind=MediaKind.IMAGE,
        models=["stable-diffusion-xl", "stable-diffusion-2.1"],
        max_resolution="2048x2048",
        supported_sizes=["256x256", "512x512", "768x768", "1024x1024", "1536x1536", "2048x2048"],
        qualities=["standard"],
        styles=["anime", "photographic", "digital-art", "comic-book", "fantasy-art"],
        supports_editing=True,
        supports_upscaling=True,
        bounds=IMAGE_BOUNDS,
    )

    DEFAULTS = {"width": 1024, "height": 1024, "samples": 1, "steps": 20, "cfg_scale": 7.5, "sampler": "K_DPMPP_2M"}
    EDIT_IMAGE_STRENGTH = 0.75
    UPSCALE_DEFAULTS = {"width": 2048, "height": 2048, "creativity": 0.3, "sampler": "K_DPMPP_2M"}

    def auth_headers(self) -> Dict[str, str]:
        return {**super().auth_headers(), "Accept": "application/json"}

    def _response(self, body: Dict[str, Any], model: str, settings: Dict[str, Any], *keys: str) -> RawProviderResponse:
        params = only_set({"model": model, **{key: settings.get(key) for key in keys}})
        return RawProviderResponse(provider=self.provider_id, payload=body, model=model, params=params)

    async def generate(self, request: ImageGenerationRequest) -> RawProviderResponse:
        model = self.resolve_model(request.model)
        requested = only_set(request.settings.model_dump())
        # Stability only knows presets; a plain style is treated as one
        preset = requested.pop("style_preset", None) or requested.pop("style", None)
        requested.pop("style", None)
        settings = self.bounded({**self.DEFAULTS, **requested, "style": preset})

        body = await self.request_json(
            "POST",
            f"{ENDPOINT}/text-to-image",
            json={
                "prompt": request.prompt,
                "negative_prompt": request.negative_prompt or "",
                "width": settings["width"],
                "height": settings["height"],
                "samples": settings["samples"],
                "steps": settings["steps"],
                "cfg_scale": settings["cfg_scale"],
                "sampler": settings["sampler"],
                "seed": settings.get("seed"),
                "style_preset": settings.get("style"),
            },
        )
        return self._response(
            body, model, settings, "width", "height", "samples", "steps", "cfg_scale", "sampler", "seed", "style"
        )

    async def edit(self, target: MediaTarget, prompt: str, options: ImageEditRequest) -> RawProviderResponse:
        model = self.resolve_model(target.model)
        requested = only_set(
            options.model_dump(include={"width", "height", "samples", "steps", "cfg_scale", "sampler", "seed"})
        )
        settings = self.bounded({**self.DEFAULTS, **requested})

        body = await self.request_json(
            "POST",
            f"{ENDPOINT}/image-to-image",
            json={
                "prompt": prompt,
                "negative_prompt": options.negative_prompt or "",
                "init_image": await self.target_base64(target),
                "init_image_mode": "image_strength",
                "image_strength": self.EDIT_IMAGE_STRENGTH,
                "width": settings["width"],
                "height": settings["height"],
                "samples": settings["samples"],
                "steps": settings["steps"],
                "cfg_scale": settings["cfg_scale"],
                "sampler": settings["sampler"],
                "seed": settings.get("seed"),
                "mask_image": await self.source_base64(options.mask_image),
            },
        )
        return self._response(body, model, settings, "width", "height", "samples", "steps", "cfg_scale", "sampler", "seed")

    async def upscale(self, target: MediaTarget, options: UpscaleOptions) -> RawProviderResponse:
        model = self.resolve_model(target.model)
        requested = only_set(options.model_dump(include={"width", "height", "creativity", "sampler"}))
        settings = self.bounded({**self.UPSCALE_DEFAULTS, **requested})

        body = await self.request_json(
            "POST",
            f"{ENDPOINT}/upscale",
            json={
                "image": await self.target_base64(target),
                "width": settings["width"],
                "height": settings["height"],
                "creativity": settings["creativity"],
                "sampler": settings["sampler"],
            },
        )
        return self._response(body, model, settings, "width", "height", "creativity", "sampler")
