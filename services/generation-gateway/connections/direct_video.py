from connections.video import VideoProviderAdapter
from domain.models import Capabilities, JobHandle, MediaKind, MediaTarget, PollPolicy, VideoEditRequest
from services.settings_policy import video_bounds


class Veo3Adapter(VideoProviderAdapter):
    provider_id = "veo3"
    default_model = "veo3"
    aggregator_model = "veo3"
    capabilities = Capabilities(
        media_kind=MediaKind.VIDEO,
        models=["veo3", "veo3-v1"],
        max_duration=60,
        supported_resolutions=["720p", "1080p", "4k"],
        supported_aspect_ratios=["16:9", "9:16", "1:1", "4:3"],
        styles=["cinematic", "documentary", "animation", "artistic"],
        supports_editing=True,
        max_prompt_length=2000,
        is_async=True,
        bounds=video_bounds(60),
    )

    generate_path = "/v1/generate"
    edit_path = "/v1/edit"
    status_path = "/v1/generations/{task_id}"

    DEFAULTS = {
        "duration": 15,
        "resolution": "1080p",
        "style": "cinematic",
        "aspect_ratio": "16:9",
        "motion_strength": 0.9,
    }

    async def edit(self, target: MediaTarget, prompt: str, options: VideoEditRequest) -> JobHandle:
        return await self.submit_edit(target, prompt, options)


class Sora2Adapter(VideoProviderAdapter):
    """Sora 2. Completed tasks report the video under output.video_url."""

    provider_id = "sora2"
    default_model = "sora2"
    aggregator_model = "sora2"
    poll_policy = PollPolicy(interval=15.0, max_attempts=240)
    capabilities = Capabilities(
        media_kind=MediaKind.VIDEO,
        models=["sora2", "sora-2"],
        max_duration=120,
        supported_resolutions=["720p", "1080p", "4k"],
        supported_aspect_ratios=["16:9", "9:16", "1:1", "4:3", "3:2"],
        styles=["realistic", "cinematic", "documentary", "animation"],
        supports_editing=True,
        is_async=True,
        bounds=video_bounds(120),
    )

    generate_path = "/v1/videos/generations"
    edit_path = "/v1/videos/edits"
    status_path = "/v1/videos/generations/{task_id}"
    sends_motion_strength = False

    DEFAULTS = {"duration": 30, "resolution": "1080p", "style": "realistic", "aspect_ratio": "16:9"}

    async def edit(self, target: MediaTarget, prompt: str, options: VideoEditRequest) -> JobHandle:
        return await self.submit_edit(target, prompt, options)
