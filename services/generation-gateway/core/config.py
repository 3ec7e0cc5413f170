import os
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Generation Gateway"
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"
    TELEMETRY_ENABLED: bool = False

    # Chat providers
    OPENAI_API_KEY: str = ""
    OPENAI_API_URL: str = "https://api.openai.com"
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_API_URL: str = "https://api.anthropic.com"
    ANTHROPIC_API_VERSION: str = "2023-06-01"
    GOOGLE_AI_API_KEY: str = ""
    GOOGLE_AI_API_URL: str = "https://generativelanguage.googleapis.com"

    # Image providers (DALL-E shares the OpenAI key)
    MIDJOURNEY_API_KEY: str = ""
    MIDJOURNEY_API_URL: str = "https://api.midjourney.com"
    STABLE_DIFFUSION_API_KEY: str = ""
    STABLE_DIFFUSION_API_URL: str = "https://api.stability.ai"
    BANANA_API_KEY: str = ""
    BANANA_API_URL: str = "https://api.banana.dev"

    # Video providers
    KIE_API_KEY: str = ""
    KIE_API_URL: str = "https://api.kie.ai"
    VEO3_API_KEY: str = ""
    VEO3_API_URL: str = "https://api.veo3.ai"
    SORA2_API_KEY: str = ""
    SORA2_API_URL: str = "https://api.sora2.ai"
    KLING_API_KEY: str = ""
    KLING_API_URL: str = "https://api.klingai.com"

    # Voice providers
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_API_URL: str = "https://api.elevenlabs.io"
    GOOGLE_SPEECH_API_KEY: str = ""
    GOOGLE_SPEECH_API_URL: str = "https://speech.googleapis.com"

    # Request timeouts (seconds)
    IMAGE_REQUEST_TIMEOUT: float = 120.0
    VIDEO_REQUEST_TIMEOUT: float = 300.0
    CHAT_REQUEST_TIMEOUT: float = 60.0

    # Polling (seconds / attempts)
    IMAGE_POLL_INTERVAL: float = 5.0
    IMAGE_POLL_MAX_ATTEMPTS: int = 60
    VIDEO_POLL_INTERVAL: float = 10.0
    VIDEO_POLL_MAX_ATTEMPTS: int = 180
    PREMIUM_VIDEO_POLL_INTERVAL: float = 15.0
    PREMIUM_VIDEO_POLL_MAX_ATTEMPTS: int = 240
    PREMIUM_VIDEO_PROVIDERS: List[str] = ["sora2"]
    POLL_MAX_CONSECUTIVE_ERRORS: int = 3

    # Background jobs (production broker only)
    JOB_QUEUE_NAME: str = "generation-jobs"
    JOB_RESULT_TTL: int = 3600

    # Empty string disables the aggregator path for that media kind
    VIDEO_AGGREGATOR: str = "kie"
    IMAGE_AGGREGATOR: str = ""

    # Edit/upscale sources given as local paths must live under this directory
    LOCAL_MEDIA_ROOT: Path = Field(default=Path("local_storage"))

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class LocalSettings(Settings):
    ENV: str = "dev"
    API_BASE_URL: str = "http://localhost:8000"


class ProductionSettings(Settings):
    ENV: str = "production"
    REDIS_URL: str = Field(..., validation_alias="REDIS_URL")
    DB_DSN: str = Field(..., validation_alias="DB_DSN")


# Factory to choose the right config
def get_settings() -> Settings:
    env = os.getenv("ENV", "local")
    if env == "production":
        return ProductionSettings()  # type: ignore
    return LocalSettings()


settings = get_settings()
