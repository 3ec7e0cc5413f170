import time
from typing import Any, Dict, List

import structlog
from connections.media_source import sniff_media_type
from connections.video import VideoProviderAdapter
from core.exceptions import ProviderError
from domain.models import Capabilities, JobHandle, MediaKind, MediaTarget, VideoEditRequest
from services.settings_policy import video_bounds

logger = structlog.get_logger()


class KieAdapter(VideoProviderAdapter):
    """
    KIE aggregator. Fronts several video model families behind one API;
    the family is picked by the `model` field of each request.
    """

    provider_id = "kie"
    default_model = "veo3"
    capabilities = Capabilities(
        media_kind=MediaKind.VIDEO,
        models=["veo3", "sora2"],
        max_duration=120,
        supported_resolutions=["720p", "1080p", "4k"],
        supported_aspect_ratios=["16:9", "9:16", "1:1", "4:3", "3:2"],
        styles=["realistic", "cinematic", "documentary", "animation"],
        supports_editing=True,
        is_async=True,
        is_aggregator=True,
        bounds=video_bounds(120),
    )

    generate_path = "/v1/video/generate"
    edit_path = "/v1/video/edit"
    status_path = "/v1/video/tasks/{task_id}"
    sends_model = True

    DEFAULTS = {
        "duration": 10,
        "resolution": "1080p",
        "style": "cinematic",
        "aspect_ratio": "16:9",
        "motion_strength": 0.9,
    }

    async def edit(self, target: MediaTarget, prompt: str, options: VideoEditRequest) -> JobHandle:
        return await self.submit_edit(target, prompt, options)

    async def upload_video(self, source: str) -> Dict[str, Any]:
        """Ingests an existing video so it can be edited later. Returns KIE's upload record."""
        content = await self.media.read(source)
        mime = sniff_media_type(content, "video/mp4")
        filename = f"video-{int(time.time() * 1000)}.{mime.split('/')[1]}"
        body = await self.request_json("POST", "/v1/video/upload", files={"video": (filename, content, mime)})
        logger.info("video_uploaded", provider=self.provider_id, size=len(content), upload_id=body.get("id"))
        return body

    async def list_models(self) -> List[Dict[str, Any]]:
        body = await self.request_json("GET", "/v1/models")
        models = body.get("models", [])
        if not isinstance(models, list):
            raise ProviderError(self.provider_id, "model listing was not a list")
        return models
