from typing import Any, Dict

from connections.video import VideoProviderAdapter
from domain.models import Capabilities, JobHandle, MediaKind, PollStatus, VideoGenerationRequest
from services.settings_policy import video_bounds

MODES = {"720p": "std", "1080p": "pro"}
DURATIONS = (5, 10)


class KlingAdapter(VideoProviderAdapter):
    """
    Kuaishou Kling text-to-video.
    Responses are wrapped as {"code", "message", "data": {"task_id", "task_status", "task_result"}}.
    Kling only renders 5s or 10s clips; other durations are snapped to the nearest one.
    """

    provider_id = "kling"
    default_model = "kling-v1"
    capabilities = Capabilities(
        media_kind=MediaKind.VIDEO,
        models=["kling-v1", "kling-v1-6"],
        max_duration=10,
        supported_resolutions=["720p", "1080p"],
        supported_aspect_ratios=["16:9", "9:16", "1:1"],
        is_async=True,
        max_prompt_length=2500,
        bounds=video_bounds(10),
    )

    generate_path = "/v1/videos/text2video"
    status_path = "/v1/videos/text2video/{task_id}"

    DEFAULTS = {"duration": 5, "resolution": "720p", "aspect_ratio": "16:9"}

    def video_settings(self, request: VideoGenerationRequest) -> Dict[str, Any]:
        settings = super().video_settings(request)
        settings["duration"] = min(DURATIONS, key=lambda allowed: abs(allowed - settings["duration"]))
        return settings

    def generation_payload(self, request: VideoGenerationRequest, model: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "model_name": model,
            "prompt": request.prompt,
            "negative_prompt": request.negative_prompt or "",
            "mode": MODES[settings["resolution"]],
            "aspect_ratio": settings["aspect_ratio"],
            "duration": str(settings["duration"]),
        }
        if settings.get("motion_strength") is not None:
            payload["cfg_scale"] = settings["motion_strength"]
        return payload

    async def fetch_status(self, handle: JobHandle) -> PollStatus:
        body = await self.request_json("GET", self.status_path.format(task_id=handle.task_id))
        return self.poll_status(body, status_key="task_status")
