from connections.http import HTTPProviderAdapter, only_set
from core.exceptions import ProviderError
from domain.models import Capabilities, ImageGenerationRequest, MediaKind, RawProviderResponse
from services.settings_policy import IMAGE_BOUNDS


class MidjourneyAdapter(HTTPProviderAdapter):
    """Midjourney through a third-party imagine API. Synchronous, generation only."""

    provider_id = "midjourney"
    media_kind = MediaKind.IMAGE
    default_model = "midjourney-v6"
    capabilities = Capabilities(
        media_kind=MediaKind.IMAGE,
        models=["midjourney-v6"],
        max_resolution="2048x2048",
        supported_sizes=["256x256", "512x512", "1024x1024", "1792x1024", "1024x1792", "2048x2048"],
        qualities=["standard", "hd"],
        styles=["vivid", "natural", "anime", "realistic"],
        supports_editing=False,
        supports_upscaling=False,
        bounds=IMAGE_BOUNDS,
    )

    DEFAULTS = {
        "width": 1024,
        "height": 1024,
        "quality": "standard",
        "steps": 20,
        "cfg_scale": 7.5,
        "style": "vivid",
        "samples": 1,
    }

    async def generate(self, request: ImageGenerationRequest) -> RawProviderResponse:
        model = self.resolve_model(request.model)
        settings = self.bounded({**self.DEFAULTS, **only_set(request.settings.model_dump())})

        body = await self.request_json(
            "POST",
            "/v1/imagine",
            json={
                "prompt": request.prompt,
                "negative_prompt": request.negative_prompt or "",
                "width": settings["width"],
                "height": settings["height"],
                "quality": settings["quality"],
                "steps": settings["steps"],
                "cfg_scale": settings["cfg_scale"],
                "style": settings["style"],
                "n": settings["samples"],
                "seed": settings.get("seed"),
            },
        )
        if not isinstance(body.get("images"), list):
            raise ProviderError(self.provider_id, "response carried no images")

        params = {
            key: settings.get(key)
            for key in ("width", "height", "quality", "steps", "cfg_scale", "style", "samples", "seed")
        }
        return RawProviderResponse(
            provider=self.provider_id, payload=body, model=model, params=only_set({"model": model, **params})
        )
