from typing import Any, Dict

from connections.http import HTTPProviderAdapter, only_set
from domain.models import (
    Capabilities,
    ImageEditRequest,
    ImageGenerationRequest,
    JobHandle,
    MediaKind,
    MediaTarget,
    PollStatus,
    UpscaleOptions,
)
from services.settings_policy import IMAGE_BOUNDS


class BananaAdapter(HTTPProviderAdapter):
    """
    Banana serverless inference. Every call is asynchronous: /start/v1 hands back a
    callID which is resolved through /status/v1/{callID}.
    """

    provider_id = "banana"
    media_kind = MediaKind.IMAGE
    default_model = "banana-image-v1"
    edit_model = "banana-image-edit-v1"
    upscale_model = "banana-upscale-v1"
    capabilities = Capabilities(
        media_kind=MediaKind.IMAGE,
        models=["banana-image-v1", "banana-image-edit-v1", "banana-upscale-v1"],
        max_resolution="2048x2048",
        supported_sizes=["256x256", "512x512", "768x768", "1024x1024", "1536x1536", "2048x2048"],
        qualities=["standard"],
        styles=["realistic", "artistic", "anime", "3d-render"],
        supports_editing=True,
        supports_upscaling=True,
        is_async=True,
        bounds=IMAGE_BOUNDS,
    )

    DEFAULTS = {"width": 1024, "height": 1024, "steps": 20, "cfg_scale": 7.5, "samples": 1}
    UPSCALE_DEFAULTS = {"width": 2048, "height": 2048, "creativity": 0.3}

    async def _start(self, model: str, inputs: Dict[str, Any], params: Dict[str, Any]) -> JobHandle:
        body = await self.request_json("POST", "/start/v1", json={"model": model, "inputs": inputs})
        return self.job(self.task_id_from(body, "callID", "call_id", "id"), model, only_set({"model": model, **params}))

    async def generate(self, request: ImageGenerationRequest) -> JobHandle:
        model = self.resolve_model(request.model)
        settings = self.bounded({**self.DEFAULTS, **only_set(request.settings.model_dump())})
        return await self._start(
            model,
            {
                "prompt": request.prompt,
                "negative_prompt": request.negative_prompt or "",
                "width": settings["width"],
                "height": settings["height"],
                "num_inference_steps": settings["steps"],
                "guidance_scale": settings["cfg_scale"],
                "seed": settings.get("seed"),
                "num_images": settings["samples"],
            },
            {key: settings.get(key) for key in ("width", "height", "steps", "cfg_scale", "samples", "seed", "style")},
        )

    async def edit(self, target: MediaTarget, prompt: str, options: ImageEditRequest) -> JobHandle:
        requested = only_set(options.model_dump(include={"width", "height", "steps", "cfg_scale", "seed"}))
        settings = self.bounded({**self.DEFAULTS, **requested})
        return await self._start(
            self.edit_model,
            {
                "prompt": prompt,
                "negative_prompt": options.negative_prompt or "",
                "image": await self.target_base64(target),
                "mask_image": await self.source_base64(options.mask_image),
                "width": settings["width"],
                "height": settings["height"],
                "num_inference_steps": settings["steps"],
                "guidance_scale": settings["cfg_scale"],
                "seed": settings.get("seed"),
            },
            {key: settings.get(key) for key in ("width", "height", "steps", "cfg_scale", "seed")},
        )

    async def upscale(self, target: MediaTarget, options: UpscaleOptions) -> JobHandle:
        requested = only_set(options.model_dump(include={"width", "height", "creativity"}))
        settings = self.bounded({**self.UPSCALE_DEFAULTS, **requested})
        model = options.model if options.model in self.capabilities.models else self.upscale_model
        return await self._start(
            model,
            {
                "image": await self.target_base64(target),
                "width": settings["width"],
                "height": settings["height"],
                "creativity": settings["creativity"],
            },
            settings,
        )

    async def fetch_status(self, handle: JobHandle) -> PollStatus:
        body = await self.request_json("GET", f"/status/v1/{handle.task_id}")
        return self.poll_status(body)
