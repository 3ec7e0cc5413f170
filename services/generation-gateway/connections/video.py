from typing import Any, Dict, Optional

from connections.http import HTTPProviderAdapter, only_set
from core.exceptions import ValidationException
from domain.models import (
    JobHandle,
    MediaKind,
    MediaTarget,
    PollPolicy,
    PollStatus,
    VideoEditRequest,
    VideoGenerationRequest,
)

# Settings that travel with a video job for pricing and echoing
VIDEO_PARAM_KEYS = ("duration", "resolution", "style", "aspect_ratio", "motion_strength", "seed")


class VideoProviderAdapter(HTTPProviderAdapter):
    """
    Shared submit/poll flow for the asynchronous video APIs.
    Subclasses name their endpoints and defaults; those that can edit
    override edit() and delegate to submit_edit().
    """

    media_kind = MediaKind.VIDEO
    poll_policy = PollPolicy(interval=10.0, max_attempts=180)

    generate_path: str
    status_path: str
    edit_path: Optional[str] = None
    sends_model = False
    sends_motion_strength = True

    DEFAULTS: Dict[str, Any] = {}
    EDIT_DEFAULTS = {"strength": 0.7, "guidance_scale": 7.5}

    def video_settings(self, request: VideoGenerationRequest) -> Dict[str, Any]:
        return self.bounded({**self.DEFAULTS, **only_set(request.settings.model_dump())})

    def job_params(self, model: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        return only_set({"model": model, **{key: settings.get(key) for key in VIDEO_PARAM_KEYS}})

    def generation_payload(self, request: VideoGenerationRequest, model: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        wire_settings = {
            "duration": settings.get("duration"),
            "resolution": settings.get("resolution"),
            "style": settings.get("style"),
            "aspect_ratio": settings.get("aspect_ratio"),
            "seed": settings.get("seed"),
        }
        if self.sends_motion_strength:
            wire_settings["motion_strength"] = settings.get("motion_strength")

        payload = {"prompt": request.prompt, "negative_prompt": request.negative_prompt, "settings": wire_settings}
        if self.sends_model:
            payload["model"] = model
        return payload

    async def generate(self, request: VideoGenerationRequest) -> JobHandle:
        model = self.resolve_model(request.model)
        settings = self.video_settings(request)
        body = await self.request_json("POST", self.generate_path, json=self.generation_payload(request, model, settings))
        return self.job(self.task_id_from(body, "id", "task_id"), model, self.job_params(model, settings))

    async def submit_edit(self, target: MediaTarget, prompt: str, options: VideoEditRequest) -> JobHandle:
        if not target.provider_ref:
            raise ValidationException(f"{self.provider_id}: the target video has no provider reference to edit")

        edit_options = {**self.EDIT_DEFAULTS, **only_set(options.model_dump(include={"strength", "guidance_scale", "seed"}))}
        body = await self.request_json(
            "POST",
            self.edit_path,
            json={"video_id": target.provider_ref, "prompt": prompt, "options": {"seed": None, **edit_options}},
        )
        model = self.resolve_model(target.model)
        params = only_set({"model": model, "duration": target.duration, "resolution": target.resolution, **edit_options})
        return self.job(self.task_id_from(body, "id", "task_id"), model, params)

    async def fetch_status(self, handle: JobHandle) -> PollStatus:
        body = await self.request_json("GET", self.status_path.format(task_id=handle.task_id))
        return self.poll_status(body)
